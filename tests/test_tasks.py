"""Tests for the Celery notification tasks and the reminder query."""

from contextlib import contextmanager
from datetime import timedelta

import pytest
from sqlalchemy.orm import sessionmaker

from assessment import tasks
from assessment.celery_app import build_beat_schedule
from assessment.config import settings
from assessment.db.models import Notification, NotificationTypeEnum
from assessment.schemas.attempt import AnswerSubmit
from assessment.services.attempts import AttemptManager
from assessment.services.notifications import Notifier, find_deadline_reminders
from assessment.services.progress import ProgressAggregator
from helpers import COURSE_ID, correct_option


@pytest.fixture
def worker_sessions(engine, monkeypatch):
    """Point the tasks' session_scope at the test database."""
    factory = sessionmaker(bind=engine, autocommit=False, autoflush=False)

    @contextmanager
    def scope():
        session = factory()
        try:
            yield session
            session.commit()
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    monkeypatch.setattr(tasks, "session_scope", scope)
    return factory


def _enrol(db, clock, student):
    ProgressAggregator(db, clock=clock).get_or_create(student.id, COURSE_ID)
    db.commit()


def test_deliver_notification_writes_inbox_row(db, worker_sessions, student):
    result = tasks.deliver_notification(
        str(student.id),
        NotificationTypeEnum.QUIZ_GRADED.value,
        "Quiz Graded",
        "Score: 5/10 (50%)",
        str(COURSE_ID),
        {"dedupe_key": "quiz-graded:1"},
    )
    assert result == {"success": True, "duplicate": False}

    rows = db.query(Notification).filter(Notification.recipient_id == student.id).all()
    assert len(rows) == 1
    assert rows[0].type == NotificationTypeEnum.QUIZ_GRADED
    assert rows[0].course_id == COURSE_ID


def test_deliver_notification_deduplicates(db, worker_sessions, student):
    args = (str(student.id), "quiz-graded", "Quiz Graded", "msg", None, {"dedupe_key": "same"})
    tasks.deliver_notification(*args)
    assert tasks.deliver_notification(*args)["duplicate"] is True
    assert db.query(Notification).count() == 1


def test_notify_course_fans_out_to_enrolled_students(db, clock, worker_sessions, student, other_student):
    _enrol(db, clock, student)
    _enrol(db, clock, other_student)

    result = tasks.notify_course(str(COURSE_ID), "quiz-available", "New Quiz Available", "msg", {})
    assert result["recipients"] == 2
    assert {n.recipient_id for n in db.query(Notification).all()} == {student.id, other_student.id}


def test_reminders_skip_completed_students(db, clock, make_quiz, student, other_student):
    quiz = make_quiz(end_date=clock() + timedelta(hours=10))
    make_quiz(title="Far away")  # closes in a week
    _enrol(db, clock, student)
    _enrol(db, clock, other_student)

    manager = AttemptManager(db, clock=clock, notifier=Notifier(enabled=False))
    attempt = manager.start_attempt(quiz.id, student).attempt
    manager.submit_attempt(
        attempt.id,
        student,
        [AnswerSubmit(question_id=q.id, selected_options=[correct_option(q)]) for q in quiz.questions],
    )

    pairs = find_deadline_reminders(db, now=clock(), hours=24)
    assert [(q.id, sid) for q, sid in pairs] == [(quiz.id, other_student.id)]


def test_reminders_skip_students_out_of_attempts(db, clock, make_quiz, student):
    quiz = make_quiz(end_date=clock() + timedelta(hours=10), attempts_allowed=1)
    _enrol(db, clock, student)
    manager = AttemptManager(db, clock=clock, notifier=Notifier(enabled=False))
    manager.abandon_attempt(manager.start_attempt(quiz.id, student).attempt.id, student)

    assert find_deadline_reminders(db, now=clock(), hours=24) == []


def test_beat_schedule_sweep_is_opt_in(monkeypatch):
    assert set(build_beat_schedule()) == {"send-deadline-reminders"}
    monkeypatch.setattr(settings, "ATTEMPT_SWEEP_ENABLED", True)
    assert "expire-overdue-attempts" in build_beat_schedule()
