# models/application.py
from datetime import datetime
from extensions import db

APPLICATION_STATUSES = [
    "PENDING",
    "SUBMITTED",
    "UNDER_REVIEW",
    "ACCEPTED",
    "REJECTED",
    "DEFERRED",
    "WAITLISTED",
    "CONDITIONAL_OFFER",
]

COURSE_LEVELS = ["UNDERGRADUATE", "POSTGRADUATE", "PHD", "DIPLOMA", "CERTIFICATE"]

VISA_STATUSES = ["NOT_STARTED", "IN_PROGRESS", "SUBMITTED", "APPROVED", "REJECTED"]


def _money(v):
    return float(v) if v is not None else None


def _ts(v):
    return v.isoformat() if v else None


class Application(db.Model):
    __tablename__ = "applications"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    university_id = db.Column(db.Integer, db.ForeignKey("universities.id"), nullable=False, index=True)

    course_name = db.Column(db.String(200), nullable=False)
    course_level = db.Column(db.String(16), nullable=False)
    intake_term = db.Column(db.String(40), nullable=False, index=True)
    application_deadline = db.Column(db.Date, nullable=False, index=True)
    status = db.Column(db.String(20), default="PENDING", nullable=False, index=True)

    application_fee = db.Column(db.Numeric(10, 2))
    application_fee_paid = db.Column(db.Boolean, default=False, nullable=False)
    application_fee_paid_at = db.Column(db.DateTime)

    priority = db.Column(db.Integer, default=1, nullable=False)  # 1 = highest
    is_primary_choice = db.Column(db.Boolean, default=False, nullable=False)
    is_backup_choice = db.Column(db.Boolean, default=False, nullable=False)

    applied_at = db.Column(db.DateTime)
    decision_at = db.Column(db.DateTime)
    offer_letter_received = db.Column(db.Boolean, default=False, nullable=False)
    offer_letter_at = db.Column(db.DateTime)
    scholarship_offered = db.Column(db.Boolean, default=False, nullable=False)
    scholarship_amount = db.Column(db.Numeric(10, 2))
    scholarship_type = db.Column(db.String(80))

    visa_required = db.Column(db.Boolean, default=True, nullable=False)
    visa_status = db.Column(db.String(16), default="NOT_STARTED", nullable=False)

    rejection_reason = db.Column(db.Text)
    deferral_reason = db.Column(db.Text)
    conditions = db.Column(db.Text)
    tracking_number = db.Column(db.String(80))
    counselor_notes = db.Column(db.Text)
    student_notes = db.Column(db.Text)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    university = db.relationship("University", lazy="joined")

    __table_args__ = (
        db.Index("idx_app_student_status", "student_id", "status"),
    )

    def to_dict(self):
        uni = self.university
        return {
            "id": self.id,
            "student_id": self.student_id,
            "university_id": self.university_id,
            "university": uni.brief() if uni else None,
            "course_name": self.course_name,
            "course_level": self.course_level,
            "intake_term": self.intake_term,
            "application_deadline": self.application_deadline.isoformat() if self.application_deadline else None,
            "status": self.status,
            "application_fee": _money(self.application_fee),
            "application_fee_paid": self.application_fee_paid,
            "application_fee_paid_at": _ts(self.application_fee_paid_at),
            "priority": self.priority,
            "is_primary_choice": self.is_primary_choice,
            "is_backup_choice": self.is_backup_choice,
            "applied_at": _ts(self.applied_at),
            "decision_at": _ts(self.decision_at),
            "offer_letter_received": self.offer_letter_received,
            "offer_letter_at": _ts(self.offer_letter_at),
            "scholarship_offered": self.scholarship_offered,
            "scholarship_amount": _money(self.scholarship_amount),
            "scholarship_type": self.scholarship_type,
            "visa_required": self.visa_required,
            "visa_status": self.visa_status,
            "rejection_reason": self.rejection_reason,
            "deferral_reason": self.deferral_reason,
            "conditions": self.conditions,
            "tracking_number": self.tracking_number,
            "counselor_notes": self.counselor_notes,
            "student_notes": self.student_notes,
            "created_at": _ts(self.created_at),
            "updated_at": _ts(self.updated_at),
        }
