from datetime import datetime
from extensions import db

ACTIVITY_TYPES = [
    "PHASE_CHANGE",
    "PHASE_REOPEN",
    "PHASE_UPDATE",
    "DOCUMENT_UPLOAD",
    "DOCUMENT_UPDATED",
    "DOCUMENT_DELETED",
    "APPLICATION_UPDATE",
    "NOTE_ADDED",
    "TASK_COMPLETED",
    "STUDENT_CREATED",
    "STUDENT_PAUSED",
    "STUDENT_RESUMED",
]


class Activity(db.Model):
    __tablename__ = "activities"
    id = db.Column(db.Integer, primary_key=True)
    type = db.Column(db.String(32), nullable=False, index=True)
    description = db.Column(db.Text, nullable=False)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    user_id = db.Column(db.Integer, db.ForeignKey("users.id"), index=True)
    meta = db.Column("metadata", db.JSON)
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    @classmethod
    def log(cls, type_, description, student_id, user_id=None, **meta):
        """Add an activity row to the session; the caller commits."""
        row = cls(type=type_, description=description, student_id=student_id,
                  user_id=user_id, meta=meta or None)
        db.session.add(row)
        return row

    def to_dict(self):
        return {
            "id": self.id,
            "type": self.type,
            "description": self.description,
            "student_id": self.student_id,
            "user_id": self.user_id,
            "metadata": self.meta or {},
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
