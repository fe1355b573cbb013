# models/task.py
from datetime import datetime
from extensions import db

TASK_TYPES = [
    "DOCUMENT_COLLECTION",
    "APPLICATION_DEADLINE",
    "INTERVIEW_PREPARATION",
    "VISA_PROCESS",
    "GENERAL",
    "DOCUMENT",
    "APPLICATION",
    "INTERVIEW",
    "FOLLOW_UP",
    "OTHER",
]

TASK_PRIORITIES = ["HIGH", "MEDIUM", "LOW", "URGENT"]


class Task(db.Model):
    __tablename__ = "tasks"
    id = db.Column(db.Integer, primary_key=True)
    counselor_id = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    # NULL for a general counselor task
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), index=True)
    title = db.Column(db.String(200), nullable=False)
    description = db.Column(db.Text)
    type = db.Column(db.String(32), default="GENERAL", nullable=False)
    priority = db.Column(db.String(10), default="MEDIUM", nullable=False)
    due_date = db.Column(db.DateTime, nullable=False, index=True)
    reminder = db.Column(db.Boolean, default=False, nullable=False)
    completed = db.Column(db.Boolean, default=False, nullable=False, index=True)
    completed_at = db.Column(db.DateTime)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    student = db.relationship("Student", lazy="joined")

    def mark(self, completed):
        self.completed = bool(completed)
        self.completed_at = datetime.utcnow() if self.completed else None

    def to_dict(self):
        st = self.student
        return {
            "id": self.id,
            "counselor_id": self.counselor_id,
            "student_id": self.student_id,
            "student": {"id": st.id, "name": st.full_name} if st else None,
            "title": self.title,
            "description": self.description,
            "type": self.type,
            "priority": self.priority,
            "due_date": self.due_date.isoformat() if self.due_date else None,
            "reminder": self.reminder,
            "completed": self.completed,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
