# routes/students.py
import logging
from datetime import datetime

from flask import Blueprint, Response, jsonify, request, send_file
from flask_jwt_extended import jwt_required
from sqlalchemy import or_

from extensions import db
from models.activity import Activity
from models.country_profile import PhaseEvent, PhaseMetadata
from models.document import Document
from models.message import Message
from models.note import Note
from models.notification import Notification
from models.pipeline_record import PaymentRecord, PhaseDecision, UniversitySelection
from models.reminder import Reminder
from models.student import STUDENT_STATUSES, Student
from models.task import Task
from models.user import User
from routes.auth import current_roles, current_user, current_user_id, is_admin
from services import realtime
from services.access import get_student, scope_students
from services.cache import invalidate_counselor
from services.errors import Conflict, CRMError
from services.exports import students_csv, students_xlsx
from services.notifications import deliver, notify
from services.parsing import paginate, parse_bool, parse_date, parse_int
from services.phases import PHASES
from services.storage import delete_file

logger = logging.getLogger(__name__)

students_bp = Blueprint("students", __name__, url_prefix="/api/students")

# fields a PUT may change; phase and pause state have their own endpoints
EDITABLE_TEXT = [
    "first_name", "last_name", "phone", "nationality", "passport_number", "address",
    "preferred_university", "preferred_course", "notes",
    "deferral_reason", "rejection_reason",
]
EDITABLE_DATES = ["date_of_birth", "next_intake_date", "application_deadline"]
EDITABLE_INTS = ["year_of_study", "completion_year", "parents_annual_income"]

# rows keyed by student_id outside the Student cascade
DEPENDENT_MODELS = [
    Activity, PhaseEvent, PhaseMetadata, UniversitySelection, PhaseDecision,
    PaymentRecord, Task, Note, Reminder, Notification, Message,
]


def _countries_value(v):
    if v is None:
        return None
    if isinstance(v, str):
        items = v.split(",")
    else:
        items = v
    items = [str(c).strip() for c in items if str(c).strip()]
    return ",".join(dict.fromkeys(items)) or None


def _apply_fields(st, data):
    for f in EDITABLE_TEXT:
        if f in data:
            val = data[f]
            setattr(st, f, val.strip() if isinstance(val, str) else val)
    for f in EDITABLE_DATES:
        if f in data:
            setattr(st, f, parse_date(data[f], f))
    for f in EDITABLE_INTS:
        if f in data:
            setattr(st, f, parse_int(data[f], f))
    if "target_countries" in data:
        st.target_countries = _countries_value(data["target_countries"])
    if "status" in data:
        status = (data["status"] or "").upper()
        if status not in STUDENT_STATUSES:
            raise CRMError(f"status must be one of {', '.join(STUDENT_STATUSES)}")
        st.status = status


def _resolve_counselor(data):
    """Counselors own what they create; admins and marketing pick a counselor."""
    if "counselor" in current_roles() and not is_admin():
        return current_user_id()
    cid = parse_int(data.get("counselor_id"), "counselor_id")
    if cid is None:
        if is_admin():
            return None
        raise CRMError("counselor_id is required")
    counselor = db.session.get(User, cid)
    if not counselor or counselor.role != "counselor":
        raise CRMError("counselor_id must reference a counselor")
    return cid


# ==== list / search ====

def _filtered_query():
    q = scope_students()
    kw = (request.args.get("search") or request.args.get("q") or "").strip()
    if kw:
        like = f"%{kw}%"
        q = q.filter(or_(
            Student.first_name.ilike(like),
            Student.last_name.ilike(like),
            Student.email.ilike(like),
            Student.phone.ilike(like),
        ))
    phase = (request.args.get("phase") or "").strip().upper()
    if phase:
        q = q.filter(Student.current_phase == phase)
    status = (request.args.get("status") or "").strip().upper()
    if status:
        q = q.filter(Student.status == status)
    paused = parse_bool(request.args.get("paused"))
    if paused is not None:
        q = q.filter(Student.is_paused.is_(paused))
    country = (request.args.get("country") or "").strip()
    if country:
        q = q.filter(Student.target_countries.ilike(f"%{country}%"))
    return q


@students_bp.get("")
@jwt_required()
def list_students():
    q = _filtered_query().order_by(Student.updated_at.desc(), Student.id.desc())
    result = paginate(q, serialize=lambda s: s.to_dict(brief=True))
    return jsonify({"success": True, **result})


@students_bp.get("/check-email")
@jwt_required()
def check_email():
    email = (request.args.get("email") or "").strip().lower()
    if not email:
        raise CRMError("email is required")
    exists = db.session.query(Student.id).filter(Student.email == email).first() is not None
    return jsonify({"success": True, "email": email, "exists": exists, "available": not exists})


@students_bp.get("/export")
@jwt_required()
def export_students():
    fmt = (request.args.get("format") or "csv").lower()
    students = _filtered_query().order_by(Student.id.asc()).all()
    ts = datetime.now().strftime("%Y%m%d-%H%M%S")
    if fmt == "xlsx":
        return send_file(
            students_xlsx(students),
            as_attachment=True,
            download_name=f"students_export_{ts}.xlsx",
            mimetype="application/vnd.openxmlformats-officedocument.spreadsheetml.sheet",
        )
    if fmt != "csv":
        raise CRMError("format must be csv or xlsx")
    return Response(
        students_csv(students),
        mimetype="text/csv; charset=utf-8",
        headers={"Content-Disposition": f"attachment; filename=students_export_{ts}.csv"},
    )


# ==== CRUD ====

@students_bp.post("")
@jwt_required()
def create_student():
    data = request.get_json(silent=True) or {}
    first = (data.get("first_name") or "").strip()
    last = (data.get("last_name") or "").strip()
    email = (data.get("email") or "").strip().lower()
    if not first or not last or not email:
        raise CRMError("first_name, last_name and email are required")
    if "@" not in email:
        raise CRMError("email is invalid")
    if Student.query.filter_by(email=email).first():
        raise Conflict("A student with this email already exists")

    st = Student(first_name=first, last_name=last, email=email)
    _apply_fields(st, {k: v for k, v in data.items() if k not in ("first_name", "last_name")})
    st.counselor_id = _resolve_counselor(data)
    if "marketing" in current_roles():
        st.marketing_owner_id = current_user_id()
    else:
        st.marketing_owner_id = parse_int(data.get("marketing_owner_id"), "marketing_owner_id")

    db.session.add(st)
    db.session.flush()
    Activity.log("STUDENT_CREATED", f"Student {st.full_name} created", st.id, current_user_id())
    db.session.commit()
    logger.info("student %s created by %s", st.id, current_user_id())

    invalidate_counselor(st.counselor_id)
    return jsonify({"success": True, "student": st.to_dict()}), 201


@students_bp.get("/<int:sid>")
@jwt_required()
def get_student_detail(sid):
    st = get_student(sid)
    data = st.to_dict()
    data["country_profiles"] = [p.to_dict() for p in st.country_profiles]
    data["applications"] = [a.to_dict() for a in st.applications]
    data["documents_count"] = Document.query.filter_by(student_id=st.id, is_latest=True).count()
    counselor = st.counselor
    data["counselor"] = counselor.to_dict() if counselor else None
    return jsonify({"success": True, "student": data})


@students_bp.put("/<int:sid>")
@jwt_required()
def update_student(sid):
    st = get_student(sid)
    data = request.get_json(silent=True) or {}
    if "current_phase" in data:
        raise CRMError("current_phase cannot be changed here; use the phase endpoint")
    if "email" in data:
        email = (data.get("email") or "").strip().lower()
        if not email:
            raise CRMError("email cannot be empty")
        if email != st.email and Student.query.filter_by(email=email).first():
            raise Conflict("A student with this email already exists")
        st.email = email
    _apply_fields(st, data)
    if is_admin() and "counselor_id" in data:
        old = st.counselor_id
        st.counselor_id = _resolve_counselor(data)
        invalidate_counselor(old)
    db.session.commit()
    invalidate_counselor(st.counselor_id)
    return jsonify({"success": True, "student": st.to_dict()})


@students_bp.delete("/<int:sid>")
@jwt_required()
def delete_student(sid):
    st = get_student(sid)
    counselor_id = st.counselor_id
    paths = [d.path for d in st.documents]
    for model in DEPENDENT_MODELS:
        model.query.filter_by(student_id=st.id).delete(synchronize_session=False)
    db.session.delete(st)
    db.session.commit()
    logger.info("student %s deleted by %s", sid, current_user_id())
    for path in paths:
        delete_file(path)
    invalidate_counselor(counselor_id)
    return jsonify({"success": True, "message": "Student deleted"})


# ==== pause / play ====

@students_bp.post("/<int:sid>/pause")
@jwt_required()
def pause_student(sid):
    st = get_student(sid)
    data = request.get_json(silent=True) or {}
    reason = (data.get("reason") or "").strip()
    if not reason:
        raise CRMError("A reason is required to pause a student")
    if st.is_paused:
        raise CRMError("Student is already paused")

    uid = current_user_id()
    st.is_paused = True
    st.pause_reason = reason
    st.paused_at = datetime.utcnow()
    st.paused_by = uid
    Activity.log("STUDENT_PAUSED", f"Student paused: {reason}", st.id, uid)
    n = None
    if st.marketing_owner_id and st.marketing_owner_id != uid:
        n = notify(st.marketing_owner_id, "student_paused", "Student paused",
                   f"{st.full_name} was paused: {reason}", student_id=st.id)
    db.session.commit()

    deliver(n)
    realtime.broadcast_student_status(st, st.counselor_id)
    invalidate_counselor(st.counselor_id)
    return jsonify({"success": True, "student": st.to_dict()})


@students_bp.post("/<int:sid>/play")
@jwt_required()
def play_student(sid):
    st = get_student(sid)
    if not st.is_paused:
        return jsonify({"success": True, "message": "Student is already active", "student": st.to_dict()})

    uid = current_user_id()
    st.is_paused = False
    st.pause_reason = None
    st.paused_at = None
    st.paused_by = None
    Activity.log("STUDENT_RESUMED", "Student resumed", st.id, uid)
    db.session.commit()

    realtime.broadcast_student_status(st, st.counselor_id)
    invalidate_counselor(st.counselor_id)
    return jsonify({"success": True, "student": st.to_dict()})


# ==== activity feed ====

@students_bp.get("/<int:sid>/activities")
@jwt_required()
def list_activities(sid):
    st = get_student(sid)
    q = Activity.query.filter_by(student_id=st.id)
    kind = (request.args.get("type") or "").strip().upper()
    if kind:
        q = q.filter(Activity.type == kind)
    result = paginate(q.order_by(Activity.created_at.desc(), Activity.id.desc()))
    return jsonify({"success": True, **result})


@students_bp.get("/meta")
@jwt_required()
def student_meta():
    me = current_user()
    return jsonify({
        "success": True,
        "statuses": STUDENT_STATUSES,
        "phases": PHASES,
        "user": me.to_dict() if me else None,
    })
