"""Fire-and-forget publisher for the notification collaborator.

Publishing never raises: a broker outage or a failing eager task is logged
and dropped so it can not change the outcome of the operation that emitted
the event.
"""

import logging
import uuid
from datetime import datetime, timedelta
from typing import Any

from sqlalchemy.orm import Session

from assessment.config import settings
from assessment.db.models import (
    Attempt,
    AttemptStatusEnum,
    NotificationTypeEnum,
    Progress,
    Quiz,
    TERMINAL_STATUSES,
)
from assessment.tasks import deliver_notification, notify_course

logger = logging.getLogger(__name__)


class Notifier:
    """Turns domain events into notification tasks."""

    def __init__(self, enabled: bool | None = None):
        self.enabled = settings.NOTIFICATIONS_ENABLED if enabled is None else enabled

    def _send(self, task: Any, *args: Any) -> None:
        if not self.enabled:
            return
        try:
            task.delay(*args)
        except Exception as e:
            logger.warning("Notification task %s not queued: %s", getattr(task, "name", task), e)

    def quiz_available(self, quiz: Quiz) -> None:
        self._send(
            notify_course,
            str(quiz.course_id),
            NotificationTypeEnum.QUIZ_AVAILABLE.value,
            "New Quiz Available",
            f'A new quiz "{quiz.title}" is now available.',
            {
                "quiz_id": str(quiz.id),
                "start_date": quiz.start_date.isoformat(),
                "dedupe_key": f"quiz-available:{quiz.id}",
            },
        )

    def quiz_graded(self, attempt: Attempt, quiz: Quiz) -> None:
        self._send(
            deliver_notification,
            str(attempt.student_id),
            NotificationTypeEnum.QUIZ_GRADED.value,
            "Quiz Graded",
            (
                f'Your quiz "{quiz.title}" has been graded. '
                f"Score: {attempt.total_score}/{attempt.max_score} ({attempt.percentage}%)"
            ),
            str(attempt.course_id),
            {
                "quiz_id": str(quiz.id),
                "attempt_id": str(attempt.id),
                "score": attempt.total_score,
                "max_score": attempt.max_score,
                "dedupe_key": f"quiz-graded:{attempt.id}",
            },
        )

    def deadline_reminder(self, quiz: Quiz, student_id: uuid.UUID) -> None:
        self._send(
            deliver_notification,
            str(student_id),
            NotificationTypeEnum.DEADLINE_REMINDER.value,
            "Quiz Closing Soon",
            f'The quiz "{quiz.title}" closes at {quiz.end_date.isoformat()}.',
            str(quiz.course_id),
            {
                "quiz_id": str(quiz.id),
                "end_date": quiz.end_date.isoformat(),
                "dedupe_key": f"deadline-reminder:{quiz.id}",
            },
        )


def find_deadline_reminders(
    db: Session,
    now: datetime,
    hours: int | None = None,
) -> list[tuple[Quiz, uuid.UUID]]:
    """(quiz, student) pairs for active quizzes closing within *hours*.

    A student qualifies when they have a progress record in the quiz's course,
    have not completed the quiz, and still have attempts left.
    """
    horizon = now + timedelta(hours=hours if hours is not None else settings.DEADLINE_REMINDER_HOURS)
    quizzes = (
        db.query(Quiz)
        .filter(
            Quiz.is_active.is_(True),
            Quiz.start_date <= now,
            Quiz.end_date >= now,
            Quiz.end_date <= horizon,
        )
        .all()
    )

    pairs: list[tuple[Quiz, uuid.UUID]] = []
    for quiz in quizzes:
        student_ids = [
            sid for (sid,) in db.query(Progress.student_id).filter(Progress.course_id == quiz.course_id).all()
        ]
        for sid in student_ids:
            attempts = (
                db.query(Attempt)
                .filter(Attempt.quiz_id == quiz.id, Attempt.student_id == sid)
                .all()
            )
            if any(a.status == AttemptStatusEnum.COMPLETED for a in attempts):
                continue
            closed = sum(1 for a in attempts if a.status in TERMINAL_STATUSES)
            if closed >= quiz.attempts_allowed:
                continue
            pairs.append((quiz, sid))
    return pairs
