# models/student.py
from datetime import datetime
from extensions import db

STUDENT_STATUSES = ["ACTIVE", "DEFERRED", "REJECTED", "COMPLETED"]


def _date(v):
    return v.isoformat() if v else None


class Student(db.Model):
    __tablename__ = "students"
    id = db.Column(db.Integer, primary_key=True)

    # === profile ===
    first_name = db.Column(db.String(80), nullable=False)
    last_name = db.Column(db.String(80), nullable=False)
    email = db.Column(db.String(120), unique=True, nullable=False, index=True)
    phone = db.Column(db.String(32))
    date_of_birth = db.Column(db.Date)
    nationality = db.Column(db.String(64))
    passport_number = db.Column(db.String(64))
    address = db.Column(db.Text)

    # === pipeline ===
    current_phase = db.Column(db.String(64), default="DOCUMENT_COLLECTION", nullable=False, index=True)
    status = db.Column(db.String(16), default="ACTIVE", nullable=False, index=True)
    deferral_reason = db.Column(db.Text)
    rejection_reason = db.Column(db.Text)
    next_intake_date = db.Column(db.Date)
    application_deadline = db.Column(db.Date)

    # === preferences ===
    preferred_university = db.Column(db.String(160))
    preferred_course = db.Column(db.String(160))
    year_of_study = db.Column(db.Integer)
    completion_year = db.Column(db.Integer)
    target_countries = db.Column(db.String(255))   # comma separated
    parents_annual_income = db.Column(db.Integer)

    # free text only; structured pipeline data lives in its own tables
    notes = db.Column(db.Text)

    # === ownership ===
    counselor_id = db.Column(db.Integer, db.ForeignKey("users.id"), index=True)
    marketing_owner_id = db.Column(db.Integer, db.ForeignKey("users.id"), index=True)

    # === pause ===
    is_paused = db.Column(db.Boolean, default=False, nullable=False)
    pause_reason = db.Column(db.Text)
    paused_at = db.Column(db.DateTime)
    paused_by = db.Column(db.Integer, db.ForeignKey("users.id"))

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    counselor = db.relationship("User", foreign_keys=[counselor_id])
    marketing_owner = db.relationship("User", foreign_keys=[marketing_owner_id])

    country_profiles = db.relationship(
        "CountryProfile", backref="student", lazy="select", cascade="all, delete-orphan"
    )
    applications = db.relationship(
        "Application", backref="student", lazy="select", cascade="all, delete-orphan"
    )
    documents = db.relationship(
        "Document", backref="student", lazy="select", cascade="all, delete-orphan"
    )

    @property
    def full_name(self):
        return f"{self.first_name} {self.last_name}".strip()

    @property
    def target_country_list(self):
        if not self.target_countries:
            return []
        return [c.strip() for c in self.target_countries.split(",") if c.strip()]

    def to_dict(self, brief=False):
        data = {
            "id": self.id,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "email": self.email,
            "phone": self.phone,
            "current_phase": self.current_phase,
            "status": self.status,
            "target_countries": self.target_country_list,
            "counselor_id": self.counselor_id,
            "is_paused": self.is_paused,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
        if brief:
            return data
        data.update({
            "date_of_birth": _date(self.date_of_birth),
            "nationality": self.nationality,
            "passport_number": self.passport_number,
            "address": self.address,
            "deferral_reason": self.deferral_reason,
            "rejection_reason": self.rejection_reason,
            "next_intake_date": _date(self.next_intake_date),
            "application_deadline": _date(self.application_deadline),
            "preferred_university": self.preferred_university,
            "preferred_course": self.preferred_course,
            "year_of_study": self.year_of_study,
            "completion_year": self.completion_year,
            "parents_annual_income": self.parents_annual_income,
            "notes": self.notes,
            "marketing_owner_id": self.marketing_owner_id,
            "pause_reason": self.pause_reason,
            "paused_at": self.paused_at.isoformat() if self.paused_at else None,
            "paused_by": self.paused_by,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        })
        return data
