from datetime import datetime
from extensions import db


class Country(db.Model):
    __tablename__ = "countries"
    id = db.Column(db.Integer, primary_key=True)
    name = db.Column(db.String(100), unique=True, nullable=False)
    code = db.Column(db.String(3), unique=True, nullable=False)
    region = db.Column(db.String(50))
    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "name": self.name,
            "code": self.code,
            "region": self.region,
            "is_active": self.is_active,
        }


class CountryProcess(db.Model):
    """
    Per-country application process.

    ``steps`` is the ordered phase list for the country:
      [{"key": "OFFER_RECEIVED", "label": "Offer Received",
        "required_documents": ["I_20_FORM"]}, ...]
    ``required_documents`` on a step is optional; when absent the
    built-in requirement tables apply.
    """
    __tablename__ = "country_processes"
    id = db.Column(db.Integer, primary_key=True)
    country = db.Column(db.String(100), unique=True, nullable=False, index=True)
    country_code = db.Column(db.String(3), unique=True, nullable=False)

    steps = db.Column(db.JSON, nullable=False, default=list)
    required_documents = db.Column(db.JSON, default=list)
    intake_terms = db.Column(db.JSON, default=list)
    visa_requirements = db.Column(db.JSON, default=dict)
    language_requirements = db.Column(db.JSON, default=dict)
    financial_requirements = db.Column(db.JSON, default=dict)
    application_fees = db.Column(db.JSON, default=dict)
    processing_time = db.Column(db.JSON, default=dict)
    special_notes = db.Column(db.Text)

    is_active = db.Column(db.Boolean, default=True, nullable=False, index=True)
    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    def to_dict(self):
        return {
            "id": self.id,
            "country": self.country,
            "country_code": self.country_code,
            "steps": self.steps or [],
            "required_documents": self.required_documents or [],
            "intake_terms": self.intake_terms or [],
            "visa_requirements": self.visa_requirements or {},
            "language_requirements": self.language_requirements or {},
            "financial_requirements": self.financial_requirements or {},
            "application_fees": self.application_fees or {},
            "processing_time": self.processing_time or {},
            "special_notes": self.special_notes,
            "is_active": self.is_active,
        }
