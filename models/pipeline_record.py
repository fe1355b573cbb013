# models/pipeline_record.py
# Structured records written while a student moves through the phases.
# Scope is (student_id, country); country NULL means the global pipeline.
from datetime import datetime
from extensions import db


class UniversitySelection(db.Model):
    __tablename__ = "university_selections"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    country = db.Column(db.String(100), index=True)
    kind = db.Column(db.String(16), nullable=False, index=True)
    university_id = db.Column(db.Integer, db.ForeignKey("universities.id"), nullable=False)
    is_fallback = db.Column(db.Boolean, default=False, nullable=False)
    selected_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    selected_at = db.Column(db.DateTime, default=datetime.utcnow)

    university = db.relationship("University", lazy="joined")

    __table_args__ = (
        db.Index("idx_selection_scope", "student_id", "country", "kind"),
    )

    def to_dict(self):
        uni = self.university
        return {
            "id": self.id,
            "kind": self.kind,
            "country": self.country,
            "university": uni.brief() if uni else {"id": self.university_id},
            "is_fallback": self.is_fallback,
            "selected_at": self.selected_at.isoformat() if self.selected_at else None,
        }


class PhaseDecision(db.Model):
    __tablename__ = "phase_decisions"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    country = db.Column(db.String(100), index=True)
    phase = db.Column(db.String(64), nullable=False)
    kind = db.Column(db.String(20), nullable=False, index=True)
    value = db.Column(db.String(20), nullable=False)
    remarks = db.Column(db.Text)
    decided_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    decided_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "country": self.country,
            "phase": self.phase,
            "kind": self.kind,
            "value": self.value,
            "remarks": self.remarks,
            "decided_at": self.decided_at.isoformat() if self.decided_at else None,
        }


class PaymentRecord(db.Model):
    __tablename__ = "payment_records"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    country = db.Column(db.String(100), index=True)
    phase = db.Column(db.String(64), nullable=False, index=True)
    amount = db.Column(db.Numeric(12, 2))
    payment_type = db.Column(db.String(16))
    recorded_by = db.Column(db.Integer, db.ForeignKey("users.id"))
    recorded_at = db.Column(db.DateTime, default=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "country": self.country,
            "phase": self.phase,
            "amount": float(self.amount) if self.amount is not None else None,
            "payment_type": self.payment_type,
            "recorded_at": self.recorded_at.isoformat() if self.recorded_at else None,
        }
