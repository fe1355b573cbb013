from datetime import datetime
from extensions import db

NOTE_TYPES = ["GENERAL", "ACADEMIC", "FINANCIAL", "VISA", "FOLLOW_UP", "OTHER"]


class Note(db.Model):
    __tablename__ = "notes"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    author_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    type = db.Column(db.String(16), default="GENERAL", nullable=False)
    content = db.Column(db.Text, nullable=False)
    is_private = db.Column(db.Boolean, default=False, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    author = db.relationship("User", lazy="joined")

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "author_id": self.author_id,
            "author_name": (self.author.name or self.author.username) if self.author else None,
            "type": self.type,
            "content": self.content,
            "is_private": self.is_private,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
