from datetime import datetime
from extensions import db

REMINDER_STATUSES = ["pending", "triggered", "cancelled"]


class Reminder(db.Model):
    __tablename__ = "reminders"
    id = db.Column(db.Integer, primary_key=True)
    counselor_id = db.Column(db.Integer, db.ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id", ondelete="CASCADE"), nullable=False, index=True)
    title = db.Column(db.String(200))
    message = db.Column(db.Text, nullable=False)
    remind_at = db.Column(db.DateTime, nullable=False)
    status = db.Column(db.String(12), default="pending", nullable=False)
    triggered_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = db.relationship("Student", lazy="joined")

    __table_args__ = (
        db.Index("idx_reminder_due", "status", "remind_at"),
    )

    def to_dict(self):
        st = self.student
        return {
            "id": self.id,
            "counselor_id": self.counselor_id,
            "student_id": self.student_id,
            "student": {"id": st.id, "name": st.full_name, "email": st.email} if st else None,
            "title": self.title,
            "message": self.message,
            "remind_at": self.remind_at.isoformat() if self.remind_at else None,
            "status": self.status,
            "triggered_at": self.triggered_at.isoformat() if self.triggered_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
