"""Celery application: async worker for notifications and periodic jobs."""

from celery import Celery

from assessment.config import settings

celery_app = Celery(
    "academic_portal_assessment",
    broker=settings.CELERY_BROKER_URL,
    backend=settings.CELERY_RESULT_BACKEND,
)

celery_app.conf.update(
    task_serializer="json",
    accept_content=["json"],
    result_serializer="json",
    timezone="UTC",
    enable_utc=True,
    task_track_started=True,
    task_acks_late=True,
    worker_prefetch_multiplier=1,
    # Run tasks synchronously in-process when True (dev default, no Redis needed).
    # Set CELERY_TASK_ALWAYS_EAGER=false in .env when running a real worker.
    task_always_eager=settings.CELERY_TASK_ALWAYS_EAGER,
    task_eager_propagates=True,
)


def build_beat_schedule() -> dict:
    """Periodic jobs; the overdue-attempt sweep is opt-in."""
    schedule = {
        "send-deadline-reminders": {
            "task": "send_deadline_reminders",
            "schedule": float(settings.DEADLINE_REMINDER_INTERVAL_SECONDS),
        },
    }
    if settings.ATTEMPT_SWEEP_ENABLED:
        schedule["expire-overdue-attempts"] = {
            "task": "expire_overdue_attempts",
            "schedule": float(settings.ATTEMPT_SWEEP_INTERVAL_SECONDS),
        }
    return schedule


celery_app.conf.beat_schedule = build_beat_schedule()

celery_app.autodiscover_tasks(["assessment"])
