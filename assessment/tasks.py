"""Background tasks executed by Celery workers.

The notification tasks stand in for the portal's notification collaborator:
they write in-app inbox rows. Delivery beyond the inbox (email, push) is not
handled here.
"""

import logging
import uuid

from assessment.celery_app import celery_app
from assessment.core.clock import utcnow
from assessment.db.models import Notification, NotificationTypeEnum, Progress
from assessment.db.session import session_scope

logger = logging.getLogger(__name__)


def _already_delivered(db, recipient_id: uuid.UUID, event_type: NotificationTypeEnum, dedupe_key: str | None) -> bool:
    if not dedupe_key:
        return False
    rows = (
        db.query(Notification)
        .filter(Notification.recipient_id == recipient_id, Notification.type == event_type)
        .all()
    )
    return any((row.metadata_json or {}).get("dedupe_key") == dedupe_key for row in rows)


@celery_app.task(bind=True, name="deliver_notification", max_retries=3)
def deliver_notification(
    self,
    recipient_id: str,
    event_type: str,
    title: str,
    message: str,
    course_id: str | None = None,
    metadata: dict | None = None,
) -> dict:
    """Write one inbox notification, skipping duplicates by ``dedupe_key``."""
    metadata = metadata or {}
    try:
        with session_scope() as db:
            recipient = uuid.UUID(recipient_id)
            kind = NotificationTypeEnum(event_type)
            if _already_delivered(db, recipient, kind, metadata.get("dedupe_key")):
                logger.debug("Notification %s for %s already delivered", event_type, recipient_id)
                return {"success": True, "duplicate": True}
            db.add(
                Notification(
                    recipient_id=recipient,
                    course_id=uuid.UUID(course_id) if course_id else None,
                    type=kind,
                    title=title,
                    message=message,
                    metadata_json=metadata,
                )
            )
        logger.info("Delivered %s notification to %s", event_type, recipient_id)
        return {"success": True, "duplicate": False}
    except Exception as exc:
        logger.exception("Notification %s for %s failed", event_type, recipient_id)
        # Retry with exponential back-off (10s, 30s, 90s)
        raise self.retry(exc=exc, countdown=10 * (3**self.request.retries))


@celery_app.task(name="notify_course")
def notify_course(
    course_id: str,
    event_type: str,
    title: str,
    message: str,
    metadata: dict | None = None,
) -> dict:
    """Fan an event out to every student with a progress record in the course."""
    with session_scope() as db:
        student_ids = [
            str(sid)
            for (sid,) in db.query(Progress.student_id)
            .filter(Progress.course_id == uuid.UUID(course_id))
            .all()
        ]
    for sid in student_ids:
        deliver_notification.delay(sid, event_type, title, message, course_id, metadata)
    logger.info("Queued %s for %d students in course %s", event_type, len(student_ids), course_id)
    return {"success": True, "recipients": len(student_ids)}


@celery_app.task(name="send_deadline_reminders")
def send_deadline_reminders() -> dict:
    """Remind students about quizzes closing soon that they have not finished."""
    from assessment.services.notifications import Notifier, find_deadline_reminders

    notifier = Notifier()
    with session_scope() as db:
        pending = find_deadline_reminders(db, now=utcnow())
        for quiz, student_id in pending:
            notifier.deadline_reminder(quiz, student_id)
    return {"success": True, "reminders": len(pending)}


@celery_app.task(name="expire_overdue_attempts")
def expire_overdue_attempts() -> dict:
    """Eager sweep of overdue in-progress attempts (opt-in via settings)."""
    from assessment.services.attempts import AttemptManager

    with session_scope() as db:
        expired = AttemptManager(db).expire_overdue_attempts()
    logger.info("Sweep expired %d overdue attempts", expired)
    return {"success": True, "expired": expired}
