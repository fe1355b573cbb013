# models/country_profile.py
from datetime import datetime
from extensions import db

DEFAULT_MAX_REOPEN = 2


class CountryProfile(db.Model):
    """One student's progress in one destination country."""
    __tablename__ = "country_profiles"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    country = db.Column(db.String(100), nullable=False, index=True)

    current_phase = db.Column(db.String(64), default="DOCUMENT_COLLECTION", nullable=False)
    visa_required = db.Column(db.Boolean, default=True, nullable=False)
    visa_status = db.Column(db.String(16), default="NOT_STARTED", nullable=False)
    preferred_country = db.Column(db.Boolean, default=False, nullable=False)
    country_ranking = db.Column(db.Integer)
    notes = db.Column(db.Text)

    last_updated = db.Column(db.DateTime, default=datetime.utcnow)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("student_id", "country", name="uq_student_country"),
    )

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "country": self.country,
            "current_phase": self.current_phase,
            "visa_required": self.visa_required,
            "visa_status": self.visa_status,
            "preferred_country": self.preferred_country,
            "country_ranking": self.country_ranking,
            "notes": self.notes,
            "last_updated": self.last_updated.isoformat() if self.last_updated else None,
        }


class PhaseMetadata(db.Model):
    """Status and remaining reopens of one phase for a student in a country."""
    __tablename__ = "phase_metadata"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    country = db.Column(db.String(100), nullable=False, index=True)
    phase_name = db.Column(db.String(64), nullable=False, index=True)
    status = db.Column(db.String(16), default="Pending", nullable=False, index=True)
    reopen_count = db.Column(db.Integer, default=0, nullable=False)
    max_reopen_allowed = db.Column(db.Integer, default=DEFAULT_MAX_REOPEN, nullable=False)
    final_edit_allowed = db.Column(db.Boolean, default=True, nullable=False)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    __table_args__ = (
        db.UniqueConstraint("student_id", "country", "phase_name", name="uq_student_country_phase"),
    )

    @property
    def edits_left(self):
        return max(0, (self.max_reopen_allowed or 0) + 1 - (self.reopen_count or 0))

    @property
    def is_locked(self):
        return self.status == "Locked" or not self.final_edit_allowed

    def to_dict(self):
        return {
            "phase_name": self.phase_name,
            "status": self.status,
            "reopen_count": self.reopen_count,
            "max_reopen_allowed": self.max_reopen_allowed,
            "final_edit_allowed": self.final_edit_allowed,
            "edits_left": self.edits_left,
        }


class PhaseEvent(db.Model):
    """Append-only phase history (change / reopen / decision)."""
    __tablename__ = "phase_events"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    country = db.Column(db.String(100), index=True)  # NULL = global phase
    kind = db.Column(db.String(16), nullable=False)   # CHANGE | REOPEN | UPDATE
    from_phase = db.Column(db.String(64))
    to_phase = db.Column(db.String(64), nullable=False)
    remarks = db.Column(db.Text)
    actor_id = db.Column(db.Integer, db.ForeignKey("users.id"))
    created_at = db.Column(db.DateTime, default=datetime.utcnow, index=True)

    def to_dict(self):
        return {
            "id": self.id,
            "country": self.country,
            "kind": self.kind,
            "from_phase": self.from_phase,
            "to_phase": self.to_phase,
            "remarks": self.remarks,
            "actor_id": self.actor_id,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
