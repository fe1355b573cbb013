# models/document.py
from datetime import datetime
from extensions import db

DOCUMENT_TYPES = [
    "PASSPORT",
    "ACADEMIC_TRANSCRIPT",
    "RECOMMENDATION_LETTER",
    "STATEMENT_OF_PURPOSE",
    "ENGLISH_TEST_SCORE",
    "CV_RESUME",
    "FINANCIAL_STATEMENT",
    "BIRTH_CERTIFICATE",
    "MEDICAL_CERTIFICATE",
    "POLICE_CLEARANCE",
    "BANK_STATEMENT",
    "SPONSOR_LETTER",
    "ID_CARD",
    "ENROLLMENT_LETTER",
    "OFFER_LETTER",
    # country specific
    "I_20_FORM",
    "SEVIS_FEE_RECEIPT",
    "DS_160_CONFIRMATION",
    "VISA_APPOINTMENT_CONFIRMATION",
    "BANK_STATEMENTS",
    "SPONSOR_AFFIDAVIT",
    "INCOME_PROOF",
    "TB_TEST_CERTIFICATE",
    "TUITION_FEE_RECEIPT",
    "BLOCKED_ACCOUNT_PROOF",
    "HEALTH_INSURANCE",
    "APS_CERTIFICATE",
    "VISA_APPLICATION",
    "BIOMETRICS",
    "LOA",
    "GIC_CERTIFICATE",
    "MEDICAL_EXAM",
    "OSHC",
    "ECOE",
    "FINANCIAL_PROOF",
    "MEDICAL_INSURANCE",
    "CAMPUS_FRANCE_REGISTRATION",
    "INTERVIEW_ACKNOWLEDGEMENT",
    "OFII_FORM",
    "UNIVERSITALY_RECEIPT",
    "ACCOMMODATION_PROOF",
    "IPA_LETTER",
    "MEDICAL_REPORT",
    "STUDENT_VISA_APPROVAL",
    "MEDICAL_TEST",
    "EMIRATES_ID_APPLICATION",
    "OTHER",
]

DOCUMENT_STATUSES = ["PENDING", "APPROVED", "REJECTED", "EXPIRED", "UNDER_REVIEW"]

# statuses that satisfy a phase requirement
COUNTABLE_STATUSES = ("PENDING", "APPROVED")

DOCUMENT_PRIORITIES = ["LOW", "MEDIUM", "HIGH", "CRITICAL"]


def _date(v):
    return v.isoformat() if v else None


class Document(db.Model):
    __tablename__ = "documents"
    id = db.Column(db.Integer, primary_key=True)
    student_id = db.Column(db.Integer, db.ForeignKey("students.id"), nullable=False, index=True)
    type = db.Column(db.String(40), nullable=False, index=True)
    name = db.Column(db.String(255), nullable=False)
    path = db.Column(db.String(500), nullable=False)  # relative to UPLOAD_FOLDER
    description = db.Column(db.Text)
    status = db.Column(db.String(16), default="PENDING", nullable=False, index=True)
    uploaded_by = db.Column(db.Integer, db.ForeignKey("users.id"), nullable=False, index=True)
    mime_type = db.Column(db.String(120))
    size = db.Column(db.Integer)

    version = db.Column(db.Integer, default=1, nullable=False)
    is_latest = db.Column(db.Boolean, default=True, nullable=False, index=True)

    expiry_date = db.Column(db.Date, index=True)
    issue_date = db.Column(db.Date)
    issuing_authority = db.Column(db.String(160))
    document_number = db.Column(db.String(80))
    country_of_issue = db.Column(db.String(80))
    remarks = db.Column(db.Text)
    is_required = db.Column(db.Boolean, default=True, nullable=False)
    priority = db.Column(db.String(10), default="MEDIUM", nullable=False)

    created_at = db.Column(db.DateTime, default=datetime.utcnow)
    updated_at = db.Column(db.DateTime, default=datetime.utcnow, onupdate=datetime.utcnow)

    @property
    def is_expired(self):
        return bool(self.expiry_date and self.expiry_date < datetime.utcnow().date())

    def to_dict(self):
        return {
            "id": self.id,
            "student_id": self.student_id,
            "type": self.type,
            "name": self.name,
            "description": self.description,
            "status": self.status,
            "uploaded_by": self.uploaded_by,
            "mime_type": self.mime_type,
            "size": self.size,
            "version": self.version,
            "is_latest": self.is_latest,
            "expiry_date": _date(self.expiry_date),
            "issue_date": _date(self.issue_date),
            "issuing_authority": self.issuing_authority,
            "document_number": self.document_number,
            "country_of_issue": self.country_of_issue,
            "remarks": self.remarks,
            "is_required": self.is_required,
            "priority": self.priority,
            "is_expired": self.is_expired,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "updated_at": self.updated_at.isoformat() if self.updated_at else None,
        }
