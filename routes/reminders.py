# routes/reminders.py
from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from extensions import db
from models.reminder import REMINDER_STATUSES, Reminder
from models.student import Student
from routes.auth import current_user_id, is_admin
from services.cache import invalidate_counselor
from services.errors import CRMError, NotFound
from services.parsing import paginate, parse_datetime, parse_int

reminders_bp = Blueprint("reminders", __name__, url_prefix="/api/reminders")


def _future(v, field="remind_at"):
    when = parse_datetime(v, field)
    if not when:
        raise CRMError(f"{field} is required")
    if when <= datetime.utcnow():
        raise CRMError(f"{field} must be in the future")
    return when


def _own_student(student_id):
    """Reminders may only target the caller's own students."""
    st = db.session.get(Student, student_id) if student_id else None
    if not st:
        raise NotFound("Student not found")
    if st.counselor_id != current_user_id():
        raise NotFound("Student not found or not assigned to you")
    return st


def _load(rid):
    r = db.session.get(Reminder, rid)
    if not r or (r.counselor_id != current_user_id() and not is_admin()):
        raise NotFound("Reminder not found")
    return r


@reminders_bp.get("")
@jwt_required()
def list_reminders():
    q = Reminder.query.filter(Reminder.counselor_id == current_user_id())
    status = (request.args.get("status") or "").strip().lower()
    if status:
        if status not in REMINDER_STATUSES:
            raise CRMError(f"status must be one of {', '.join(REMINDER_STATUSES)}")
        q = q.filter(Reminder.status == status)
    sid = parse_int(request.args.get("student_id"), "student_id")
    if sid:
        q = q.filter(Reminder.student_id == sid)
    q = q.order_by(Reminder.remind_at.asc(), Reminder.id.asc())
    return jsonify({"success": True, **paginate(q)})


@reminders_bp.post("")
@jwt_required()
def create_reminder():
    data = request.get_json(silent=True) or {}
    message = (data.get("message") or "").strip()
    if not message:
        raise CRMError("message is required")
    st = _own_student(parse_int(data.get("student_id"), "student_id"))
    r = Reminder(
        counselor_id=current_user_id(),
        student_id=st.id,
        title=(data.get("title") or "").strip() or f"Follow up: {st.full_name}",
        message=message,
        remind_at=_future(data.get("remind_at")),
        status="pending",
    )
    db.session.add(r)
    db.session.commit()
    invalidate_counselor(r.counselor_id)
    return jsonify({"success": True, "reminder": r.to_dict()}), 201


@reminders_bp.get("/<int:rid>")
@jwt_required()
def get_reminder(rid):
    return jsonify({"success": True, "reminder": _load(rid).to_dict()})


@reminders_bp.put("/<int:rid>")
@jwt_required()
def update_reminder(rid):
    r = _load(rid)
    if r.status != "pending":
        raise CRMError(f"A {r.status} reminder cannot be edited")
    data = request.get_json(silent=True) or {}
    if "message" in data:
        message = (data["message"] or "").strip()
        if not message:
            raise CRMError("message cannot be empty")
        r.message = message
    if "title" in data:
        r.title = (data["title"] or "").strip() or r.title
    if "remind_at" in data:
        r.remind_at = _future(data["remind_at"])
    db.session.commit()
    invalidate_counselor(r.counselor_id)
    return jsonify({"success": True, "reminder": r.to_dict()})


@reminders_bp.post("/<int:rid>/cancel")
@jwt_required()
def cancel_reminder(rid):
    r = _load(rid)
    if r.status != "pending":
        raise CRMError(f"Only pending reminders can be cancelled (status is {r.status})")
    r.status = "cancelled"
    db.session.commit()
    invalidate_counselor(r.counselor_id)
    return jsonify({"success": True, "reminder": r.to_dict()})


@reminders_bp.delete("/<int:rid>")
@jwt_required()
def delete_reminder(rid):
    r = _load(rid)
    owner = r.counselor_id
    db.session.delete(r)
    db.session.commit()
    invalidate_counselor(owner)
    return jsonify({"success": True, "message": "Reminder deleted"})
