# services/notifications.py
import logging

from extensions import db
from models.notification import Notification
from services import realtime

logger = logging.getLogger(__name__)


def notify(user_id, type_, title, message, student_id=None, priority="medium", **meta):
    """Stage a Notification row in the session; push it with ``deliver`` after commit."""
    if not user_id:
        return None
    n = Notification(
        user_id=user_id,
        type=type_,
        title=title,
        message=message,
        student_id=student_id,
        priority=priority,
        meta=meta or None,
    )
    db.session.add(n)
    return n


def deliver(*notifications):
    """Push committed notifications to their users' rooms."""
    for n in notifications:
        if n is None or n.id is None:
            continue
        realtime.send_notification(n.user_id, n.to_dict())


def unread_count(user_id):
    return Notification.query.filter_by(user_id=user_id, is_read=False).count()
