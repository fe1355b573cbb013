# services/dashboard.py
import logging
from datetime import datetime, timedelta

from sqlalchemy import func

from extensions import cache, db
from models.application import Application
from models.document import Document
from models.reminder import Reminder
from models.student import Student
from models.task import Task
from services.cache import dashboard_key

logger = logging.getLogger(__name__)


def _counts(column, base_filter):
    rows = db.session.query(column, func.count()).filter(*base_filter).group_by(column).all()
    return {k: n for k, n in rows if k is not None}


def _scope(counselor_id, marketing_id):
    """Student, task and reminder filters for one dashboard scope."""
    if marketing_id:
        sf = [Student.marketing_owner_id == marketing_id]
        owned = db.session.query(Student.id).filter(*sf)
        return sf, [Task.student_id.in_(owned)], [Reminder.student_id.in_(owned)]
    if counselor_id:
        return ([Student.counselor_id == counselor_id], [Task.counselor_id == counselor_id],
                [Reminder.counselor_id == counselor_id])
    return [], [], []


def compute_stats(counselor_id=None, marketing_id=None):
    """
    Counts for one counselor, or for the students one marketing user owns.

    With neither id every student is counted.
    """
    sf, tf, rf = _scope(counselor_id, marketing_id)
    student_ids = db.session.query(Student.id).filter(*sf)

    by_status = _counts(Student.status, sf)
    by_phase = _counts(Student.current_phase, sf)
    total = sum(by_status.values())
    paused = Student.query.filter(*sf, Student.is_paused.is_(True)).count()

    pending_documents = Document.query.filter(
        Document.student_id.in_(student_ids),
        Document.status.in_(("PENDING", "UNDER_REVIEW")),
        Document.is_latest.is_(True),
    ).count()

    application_status = _counts(Application.status, [Application.student_id.in_(student_ids)])

    now = datetime.utcnow()
    open_tasks = Task.query.filter(*tf, Task.completed.is_(False)).count()
    overdue_tasks = Task.query.filter(*tf, Task.completed.is_(False), Task.due_date < now).count()

    upcoming_reminders = Reminder.query.filter(
        *rf,
        Reminder.status == "pending",
        Reminder.remind_at >= now,
        Reminder.remind_at <= now + timedelta(days=7),
    ).count()

    return {
        "total_students": total,
        "active_students": by_status.get("ACTIVE", 0),
        "completed_students": by_status.get("COMPLETED", 0),
        "paused_students": paused,
        "students_by_status": by_status,
        "students_by_phase": by_phase,
        "applications_by_status": application_status,
        "pending_documents": pending_documents,
        "open_tasks": open_tasks,
        "overdue_tasks": overdue_tasks,
        "upcoming_reminders": upcoming_reminders,
        "generated_at": now.isoformat(),
    }


def get_stats(counselor_id=None, refresh=False, marketing_id=None):
    """Cached stats; returns ``(stats, from_cache)``."""
    if marketing_id:
        key = dashboard_key(f"marketing:{marketing_id}")
    else:
        key = dashboard_key(counselor_id or "all")
    if not refresh:
        hit = cache.get(key)
        if hit is not None:
            return hit, True
    stats = compute_stats(counselor_id, marketing_id)
    cache.set(key, stats)
    return stats, False
