# routes/tasks.py
from datetime import datetime

from flask import Blueprint, jsonify, request
from flask_jwt_extended import jwt_required

from extensions import db
from models.activity import Activity
from models.task import TASK_PRIORITIES, TASK_TYPES, Task
from routes.auth import current_user_id, is_admin
from services.access import get_student
from services.cache import invalidate_counselor
from services.errors import CRMError, NotFound
from services.parsing import paginate, parse_bool, parse_datetime, parse_int

tasks_bp = Blueprint("tasks_bp", __name__, url_prefix="/api/tasks")


def _choice(value, allowed, field):
    v = (value or "").strip().upper()
    if v not in allowed:
        raise CRMError(f"{field} must be one of {', '.join(allowed)}")
    return v


def _load(task_id):
    """A task is visible to the counselor who owns it, and to admins."""
    t = db.session.get(Task, task_id)
    if not t or (t.counselor_id != current_user_id() and not is_admin()):
        raise NotFound("Task not found")
    return t


@tasks_bp.get("")
@jwt_required()
def list_tasks():
    """
    Filters: completed, student_id, type, priority, due_before, overdue.
    Admins may pass counselor_id to look at another counselor's list.
    """
    owner = current_user_id()
    if is_admin() and request.args.get("counselor_id"):
        owner = parse_int(request.args.get("counselor_id"), "counselor_id")
    q = Task.query.filter(Task.counselor_id == owner)

    completed = parse_bool(request.args.get("completed"))
    if completed is not None:
        q = q.filter(Task.completed.is_(completed))
    sid = parse_int(request.args.get("student_id"), "student_id")
    if sid:
        q = q.filter(Task.student_id == sid)
    if request.args.get("type"):
        q = q.filter(Task.type == request.args["type"].upper())
    if request.args.get("priority"):
        q = q.filter(Task.priority == request.args["priority"].upper())
    due_before = parse_datetime(request.args.get("due_before"), "due_before")
    if due_before:
        q = q.filter(Task.due_date <= due_before)
    if parse_bool(request.args.get("overdue"), False):
        q = q.filter(Task.completed.is_(False), Task.due_date < datetime.utcnow())

    q = q.order_by(Task.completed.asc(), Task.due_date.asc(), Task.id.asc())
    return jsonify({"success": True, **paginate(q)})


@tasks_bp.post("")
@jwt_required()
def create_task():
    data = request.get_json(silent=True) or {}
    title = (data.get("title") or "").strip()
    if not title:
        raise CRMError("title is required")
    due = parse_datetime(data.get("due_date"), "due_date")
    if not due:
        raise CRMError("due_date is required")

    t = Task(
        counselor_id=current_user_id(),
        title=title,
        description=data.get("description"),
        type=_choice(data.get("type") or "GENERAL", TASK_TYPES, "type"),
        priority=_choice(data.get("priority") or "MEDIUM", TASK_PRIORITIES, "priority"),
        due_date=due,
        reminder=parse_bool(data.get("reminder"), False),
    )
    sid = parse_int(data.get("student_id"), "student_id")
    if sid:
        t.student_id = get_student(sid).id
    db.session.add(t)
    db.session.commit()
    invalidate_counselor(t.counselor_id)
    return jsonify({"success": True, "task": t.to_dict()}), 201


@tasks_bp.get("/<int:task_id>")
@jwt_required()
def get_task(task_id):
    return jsonify({"success": True, "task": _load(task_id).to_dict()})


@tasks_bp.put("/<int:task_id>")
@jwt_required()
def update_task(task_id):
    t = _load(task_id)
    data = request.get_json(silent=True) or {}
    if "title" in data:
        title = (data["title"] or "").strip()
        if not title:
            raise CRMError("title cannot be empty")
        t.title = title
    if "description" in data:
        t.description = data["description"]
    if "type" in data:
        t.type = _choice(data["type"], TASK_TYPES, "type")
    if "priority" in data:
        t.priority = _choice(data["priority"], TASK_PRIORITIES, "priority")
    if "due_date" in data:
        due = parse_datetime(data["due_date"], "due_date")
        if not due:
            raise CRMError("due_date cannot be empty")
        t.due_date = due
    if "reminder" in data:
        t.reminder = parse_bool(data["reminder"], False)
    if "student_id" in data:
        sid = parse_int(data["student_id"], "student_id")
        t.student_id = get_student(sid).id if sid else None
    if "completed" in data:
        _set_completed(t, parse_bool(data["completed"], False))
    db.session.commit()
    invalidate_counselor(t.counselor_id)
    return jsonify({"success": True, "task": t.to_dict()})


def _set_completed(t, completed):
    was = t.completed
    t.mark(completed)
    if completed and not was and t.student_id:
        Activity.log("TASK_COMPLETED", f"Task completed: {t.title}", t.student_id, current_user_id(),
                     task_id=t.id)


@tasks_bp.post("/<int:task_id>/toggle")
@jwt_required()
def toggle_task(task_id):
    t = _load(task_id)
    _set_completed(t, not t.completed)
    db.session.commit()
    invalidate_counselor(t.counselor_id)
    return jsonify({"success": True, "task": t.to_dict()})


@tasks_bp.delete("/<int:task_id>")
@jwt_required()
def delete_task(task_id):
    t = _load(task_id)
    owner = t.counselor_id
    db.session.delete(t)
    db.session.commit()
    invalidate_counselor(owner)
    return jsonify({"success": True, "message": "Task deleted"})
