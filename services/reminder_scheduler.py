# services/reminder_scheduler.py
"""
Background reminder trigger.

A ``BackgroundScheduler`` polls for pending reminders whose ``remind_at``
has passed, writes a Notification for the owning counselor, marks the
reminder ``triggered`` and pushes the notification over WebSocket.
"""
import atexit
import logging
from datetime import datetime

from apscheduler.events import EVENT_JOB_ERROR, EVENT_JOB_EXECUTED
from apscheduler.schedulers.background import BackgroundScheduler
from apscheduler.triggers.interval import IntervalTrigger

from extensions import db
from models.reminder import Reminder
from services.notifications import deliver, notify

logger = logging.getLogger(__name__)

JOB_ID = "trigger_due_reminders"

scheduler = BackgroundScheduler(
    timezone="UTC",
    job_defaults={
        "coalesce": True,
        "max_instances": 1,
        "misfire_grace_time": 300,
    },
)


def _listener(event):
    if event.exception:
        logger.error("job %s failed: %s", event.job_id, event.exception)
    else:
        logger.debug("job %s executed", event.job_id)


scheduler.add_listener(_listener, EVENT_JOB_EXECUTED | EVENT_JOB_ERROR)


def trigger_due_reminders(now=None):
    """Fire every pending reminder that is due. Returns the number fired."""
    now = now or datetime.utcnow()
    due = (
        Reminder.query
        .filter(Reminder.status == "pending", Reminder.remind_at <= now)
        .order_by(Reminder.remind_at.asc())
        .all()
    )
    if not due:
        return 0

    staged = []
    for r in due:
        student = r.student
        name = student.full_name if student else f"student #{r.student_id}"
        staged.append(notify(
            r.counselor_id,
            "reminder",
            r.title or f"Reminder: {name}",
            r.message,
            student_id=r.student_id,
            priority="high",
            reminder_id=r.id,
            remind_at=r.remind_at.isoformat(),
        ))
        r.status = "triggered"
        r.triggered_at = now

    db.session.commit()
    deliver(*staged)
    logger.info("triggered %d reminder(s)", len(due))
    return len(due)


def start_scheduler(app):
    """Register the reminder job and start the scheduler once per process."""
    interval = app.config.get("REMINDER_INTERVAL_SECONDS", 60)

    def _job():
        with app.app_context():
            try:
                trigger_due_reminders()
            finally:
                db.session.remove()

    scheduler.add_job(
        _job,
        trigger=IntervalTrigger(seconds=interval),
        id=JOB_ID,
        name="Trigger due reminders",
        replace_existing=True,
    )
    if not scheduler.running:
        scheduler.start()
        atexit.register(shutdown_scheduler)
        logger.info("reminder scheduler started (every %ss)", interval)
    return scheduler


def shutdown_scheduler():
    if scheduler.running:
        scheduler.shutdown(wait=False)
        logger.info("reminder scheduler stopped")
