# models/message.py
from datetime import datetime
from extensions import db

MESSAGE_TYPES = ["text", "system", "notification"]


class Message(db.Model):
    __tablename__ = "messages"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    sender_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    receiver_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    message = db.Column(db.Text, nullable=False)
    message_type = db.Column(db.String(16), default="text", nullable=False)
    is_read = db.Column(db.Boolean, default=False, nullable=False, index=True)
    read_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    sender = db.relationship("User", foreign_keys=[sender_id], lazy="joined")

    __table_args__ = (
        db.Index("idx_msg_thread", "student_id", "sender_id", "receiver_id"),
    )

    def to_dict(self):
        s = self.sender
        return {
            "id": self.id,
            "student_id": self.student_id,
            "sender_id": self.sender_id,
            "sender_name": (s.name or s.username) if s else None,
            "receiver_id": self.receiver_id,
            "message": self.message,
            "message_type": self.message_type,
            "is_read": self.is_read,
            "read_at": self.read_at.isoformat() if self.read_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
