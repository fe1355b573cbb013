# routes/applications.py
import logging
from datetime import datetime
from decimal import Decimal, InvalidOperation

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required
from sqlalchemy import func

from extensions import db
from models.activity import Activity
from models.application import APPLICATION_STATUSES, COURSE_LEVELS, VISA_STATUSES, Application
from models.student import Student
from models.university import University
from routes.auth import current_user_id
from services.access import get_student, scope_students
from services.cache import invalidate_counselor
from services.errors import CRMError, NotFound
from services.parsing import paginate, parse_bool, parse_date, parse_int

logger = logging.getLogger(__name__)

applications_bp = Blueprint("applications", __name__, url_prefix="/api")

TEXT_FIELDS = [
    "course_name", "intake_term", "scholarship_type", "rejection_reason", "deferral_reason",
    "conditions", "tracking_number", "counselor_notes", "student_notes",
]
BOOL_FIELDS = [
    "is_primary_choice", "is_backup_choice", "offer_letter_received",
    "scholarship_offered", "visa_required", "application_fee_paid",
]
MONEY_FIELDS = ["application_fee", "scholarship_amount"]


def _money(v, field):
    if v in (None, ""):
        return None
    try:
        d = Decimal(str(v))
    except InvalidOperation:
        raise CRMError(f"{field} must be a number")
    if d < 0:
        raise CRMError(f"{field} must not be negative")
    return d


def _apply(app_obj, data):
    now = datetime.utcnow()
    for f in TEXT_FIELDS:
        if f in data:
            v = data[f]
            setattr(app_obj, f, v.strip() if isinstance(v, str) else v)
    for f in MONEY_FIELDS:
        if f in data:
            setattr(app_obj, f, _money(data[f], f))
    for f in BOOL_FIELDS:
        if f in data:
            setattr(app_obj, f, parse_bool(data[f], False))
    if "course_level" in data:
        level = (data["course_level"] or "").upper()
        if level not in COURSE_LEVELS:
            raise CRMError(f"course_level must be one of {', '.join(COURSE_LEVELS)}")
        app_obj.course_level = level
    if "application_deadline" in data:
        app_obj.application_deadline = parse_date(data["application_deadline"], "application_deadline")
    if "priority" in data:
        p = parse_int(data["priority"], "priority", 1)
        if p < 1:
            raise CRMError("priority must be >= 1")
        app_obj.priority = p
    if "visa_status" in data:
        vs = (data["visa_status"] or "").upper()
        if vs not in VISA_STATUSES:
            raise CRMError(f"visa_status must be one of {', '.join(VISA_STATUSES)}")
        app_obj.visa_status = vs
    if "status" in data:
        status = (data["status"] or "").upper()
        if status not in APPLICATION_STATUSES:
            raise CRMError(f"status must be one of {', '.join(APPLICATION_STATUSES)}")
        app_obj.status = status
        if status == "SUBMITTED" and not app_obj.applied_at:
            app_obj.applied_at = now
        if status in ("ACCEPTED", "REJECTED", "CONDITIONAL_OFFER", "WAITLISTED", "DEFERRED"):
            app_obj.decision_at = app_obj.decision_at or now

    if app_obj.offer_letter_received and not app_obj.offer_letter_at:
        app_obj.offer_letter_at = now
    if app_obj.application_fee_paid and not app_obj.application_fee_paid_at:
        app_obj.application_fee_paid_at = now
    if app_obj.is_primary_choice and app_obj.is_backup_choice:
        raise CRMError("An application cannot be both primary and backup choice")


def _check_required(app_obj):
    missing = [f for f in ("course_name", "course_level", "intake_term", "application_deadline")
               if not getattr(app_obj, f)]
    if missing:
        raise CRMError(f"Missing required fields: {', '.join(missing)}")


def _university(uid):
    uni = db.session.get(University, uid) if uid else None
    if not uni:
        raise CRMError("university_id is invalid")
    if not uni.active:
        raise CRMError(f"University {uni.name} is inactive")
    return uni


def _load(app_id):
    app_obj = db.session.get(Application, app_id)
    if not app_obj:
        raise NotFound("Application not found")
    get_student(app_obj.student_id)  # access check
    return app_obj


# ==== list / statistics ====

def _scoped_query():
    visible = scope_students(db.session.query(Student.id))
    q = Application.query.filter(Application.student_id.in_(visible))
    sid = request.args.get("student_id", type=int)
    if sid:
        q = q.filter(Application.student_id == sid)
    status = (request.args.get("status") or "").strip().upper()
    if status:
        q = q.filter(Application.status == status)
    uid = request.args.get("university_id", type=int)
    if uid:
        q = q.filter(Application.university_id == uid)
    country = (request.args.get("country") or "").strip()
    if country:
        q = q.join(University, Application.university_id == University.id) \
             .filter(University.country == country)
    intake = (request.args.get("intake_term") or "").strip()
    if intake:
        q = q.filter(Application.intake_term == intake)
    return q


@applications_bp.get("/applications")
@jwt_required()
def list_applications():
    q = _scoped_query().order_by(Application.priority.asc(), Application.application_deadline.asc())
    return jsonify({"success": True, **paginate(q)})


@applications_bp.get("/applications/statistics")
@jwt_required()
def application_statistics():
    base = _scoped_query().with_entities(Application.id).subquery()
    by_status = dict(
        db.session.query(Application.status, func.count(Application.id))
        .filter(Application.id.in_(db.session.query(base.c.id)))
        .group_by(Application.status).all()
    )
    by_country = dict(
        db.session.query(University.country, func.count(Application.id))
        .join(University, Application.university_id == University.id)
        .filter(Application.id.in_(db.session.query(base.c.id)))
        .group_by(University.country).all()
    )
    total = sum(by_status.values())
    accepted = by_status.get("ACCEPTED", 0) + by_status.get("CONDITIONAL_OFFER", 0)
    decided = accepted + by_status.get("REJECTED", 0)
    return jsonify({
        "success": True,
        "total": total,
        "by_status": {s: by_status.get(s, 0) for s in APPLICATION_STATUSES},
        "by_country": by_country,
        "acceptance_rate": round(accepted * 100.0 / decided, 1) if decided else None,
    })


# ==== CRUD ====

@applications_bp.post("/applications")
@jwt_required()
def create_application():
    data = request.get_json(silent=True) or {}
    st = get_student(parse_int(data.get("student_id"), "student_id"))
    uni = _university(parse_int(data.get("university_id"), "university_id"))

    app_obj = Application(student_id=st.id, university_id=uni.id, status="PENDING")
    _apply(app_obj, data)
    _check_required(app_obj)
    db.session.add(app_obj)
    Activity.log("APPLICATION_UPDATE", f"Application created for {uni.name}", st.id, current_user_id(),
                 university_id=uni.id)
    db.session.commit()
    invalidate_counselor(st.counselor_id)
    return jsonify({"success": True, "application": app_obj.to_dict()}), 201


@applications_bp.post("/students/<int:sid>/applications/bulk")
@jwt_required()
def bulk_create(sid):
    """Body: {university_ids: [...], course_name, course_level, intake_term, application_deadline, ...}."""
    st = get_student(sid)
    data = request.get_json(silent=True) or {}
    ids = data.get("university_ids") or []
    if not isinstance(ids, list) or not ids:
        raise CRMError("university_ids must be a non-empty list")
    ids = list(dict.fromkeys(parse_int(i, "university_ids") for i in ids))
    unis = [_university(i) for i in ids]

    shared = {k: v for k, v in data.items() if k not in ("university_ids", "student_id", "university_id")}
    created = []
    for n, uni in enumerate(unis, start=1):
        app_obj = Application(student_id=st.id, university_id=uni.id, status="PENDING")
        _apply(app_obj, {"priority": n, **shared})
        _check_required(app_obj)
        db.session.add(app_obj)
        created.append(app_obj)
    Activity.log("APPLICATION_UPDATE", f"{len(created)} applications created", st.id, current_user_id(),
                 university_ids=ids)
    db.session.commit()
    invalidate_counselor(st.counselor_id)
    return jsonify({"success": True, "items": [a.to_dict() for a in created]}), 201


@applications_bp.get("/applications/<int:app_id>")
@jwt_required()
def get_application(app_id):
    return jsonify({"success": True, "application": _load(app_id).to_dict()})


@applications_bp.put("/applications/<int:app_id>")
@jwt_required()
def update_application(app_id):
    app_obj = _load(app_id)
    data = request.get_json(silent=True) or {}
    old_status = app_obj.status
    if "university_id" in data:
        app_obj.university_id = _university(parse_int(data["university_id"], "university_id")).id
    _apply(app_obj, data)
    _check_required(app_obj)
    if app_obj.status != old_status:
        Activity.log("APPLICATION_UPDATE", f"Application status {old_status} -> {app_obj.status}",
                     app_obj.student_id, current_user_id(), application_id=app_obj.id)
    db.session.commit()
    invalidate_counselor(app_obj.student.counselor_id)
    return jsonify({"success": True, "application": app_obj.to_dict()})


@applications_bp.delete("/applications/<int:app_id>")
@jwt_required()
def delete_application(app_id):
    app_obj = _load(app_id)
    counselor_id = app_obj.student.counselor_id
    db.session.delete(app_obj)
    db.session.commit()
    invalidate_counselor(counselor_id)
    return jsonify({"success": True, "message": "Application deleted"})
