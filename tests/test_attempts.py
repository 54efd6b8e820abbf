"""Service tests for the attempt state machine."""

import uuid
from datetime import timedelta

import pytest
from sqlalchemy.exc import IntegrityError

from assessment.core.errors import (
    AlreadySubmitted,
    AttemptAlreadyInProgress,
    AttemptLimitExceeded,
    NotFoundError,
    QuizWindowClosed,
    UnauthorizedError,
    ValidationError,
)
from assessment.db.models import Attempt, AttemptStatusEnum
from assessment.schemas.attempt import AnswerSubmit
from assessment.services.attempts import AttemptManager
from assessment.services.notifications import Notifier
from helpers import correct_option, wrong_option


@pytest.fixture
def manager(db, clock):
    return AttemptManager(db, clock=clock, notifier=Notifier(enabled=False))


def _answers(quiz, correct=(True, True)):
    return [
        AnswerSubmit(
            question_id=q.id,
            selected_options=[correct_option(q) if ok else wrong_option(q)],
        )
        for q, ok in zip(quiz.questions, correct)
    ]


# ── Start ─────────────────────────────────────────────────────────────────────


def test_start_creates_numbered_attempt(manager, make_quiz, student, clock):
    quiz = make_quiz()
    result = manager.start_attempt(quiz.id, student, ip_address="10.0.0.1")
    attempt = result.attempt
    assert result.created
    assert attempt.status == AttemptStatusEnum.IN_PROGRESS
    assert attempt.attempt_number == 1
    assert attempt.max_score == 10
    assert attempt.course_id == quiz.course_id
    assert len(result.questions) == 2


def test_start_returns_open_attempt(manager, make_quiz, student):
    quiz = make_quiz()
    first = manager.start_attempt(quiz.id, student)
    again = manager.start_attempt(quiz.id, student)
    assert not again.created
    assert again.attempt.id == first.attempt.id


def test_start_outside_window(manager, make_quiz, student, clock):
    quiz = make_quiz(start_date=clock() + timedelta(hours=1), end_date=clock() + timedelta(days=1))
    with pytest.raises(QuizWindowClosed):
        manager.start_attempt(quiz.id, student)


def test_start_inactive_quiz(manager, make_quiz, student):
    quiz = make_quiz(is_active=False)
    with pytest.raises(QuizWindowClosed):
        manager.start_attempt(quiz.id, student)


def test_start_requires_password(manager, make_quiz, student):
    quiz = make_quiz(require_password=True, password="letmein")
    with pytest.raises(UnauthorizedError):
        manager.start_attempt(quiz.id, student, password="nope")
    assert manager.start_attempt(quiz.id, student, password="letmein").created


def test_attempt_limit(manager, make_quiz, student):
    quiz = make_quiz(attempts_allowed=1)
    attempt = manager.start_attempt(quiz.id, student).attempt
    manager.submit_attempt(attempt.id, student, _answers(quiz))

    with pytest.raises(AttemptLimitExceeded):
        manager.start_attempt(quiz.id, student)


def test_second_attempt_gets_next_number(manager, make_quiz, student):
    quiz = make_quiz(attempts_allowed=2)
    first = manager.start_attempt(quiz.id, student).attempt
    manager.submit_attempt(first.id, student, _answers(quiz))
    second = manager.start_attempt(quiz.id, student).attempt
    assert second.attempt_number == 2


def test_concurrent_start_loser_gets_in_progress_error(manager, make_quiz, student, db, monkeypatch):
    quiz = make_quiz()

    def lose_race():
        raise IntegrityError("INSERT INTO attempts", {}, Exception("UNIQUE constraint failed"))

    monkeypatch.setattr(db, "commit", lose_race)
    with pytest.raises(AttemptAlreadyInProgress):
        manager.start_attempt(quiz.id, student)


def test_questions_shuffled_stably_per_attempt(manager, make_quiz, student):
    quiz = make_quiz(randomize_questions=True, randomize_options=True)
    first = manager.start_attempt(quiz.id, student)
    resumed = manager.start_attempt(quiz.id, student)
    order = [q.id for q, _ in first.questions]
    assert order == [q.id for q, _ in resumed.questions]
    assert sorted(order) == sorted(q.id for q in quiz.questions)


# ── Submit ────────────────────────────────────────────────────────────────────


def test_submit_all_correct(manager, make_quiz, student):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    closed = manager.submit_attempt(attempt.id, student, _answers(quiz))
    assert closed.status == AttemptStatusEnum.COMPLETED
    assert (closed.total_score, closed.max_score, closed.percentage, closed.grade) == (10, 10, 100, "A+")
    assert closed.is_graded


def test_submit_half_correct(manager, make_quiz, student):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    closed = manager.submit_attempt(attempt.id, student, _answers(quiz, (True, False)))
    assert closed.percentage == 50
    assert closed.grade == "C-"


def test_late_submit_is_timeout(manager, make_quiz, student, clock):
    quiz = make_quiz(time_limit_minutes=30)
    attempt = manager.start_attempt(quiz.id, student).attempt
    clock.advance(minutes=35)
    closed = manager.submit_attempt(attempt.id, student, _answers(quiz))
    assert closed.status == AttemptStatusEnum.TIMEOUT
    assert closed.time_spent_seconds == 35 * 60


def test_time_spent_recorded_on_submit(manager, make_quiz, student, clock):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    clock.advance(minutes=12, seconds=30)
    closed = manager.submit_attempt(attempt.id, student, _answers(quiz))
    assert closed.time_spent_seconds == 750


def test_second_submit_keeps_first_result(manager, make_quiz, student):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    manager.submit_attempt(attempt.id, student, _answers(quiz, (True, False)))

    with pytest.raises(AlreadySubmitted) as exc:
        manager.submit_attempt(attempt.id, student, _answers(quiz))
    assert exc.value.attempt.total_score == 5
    assert exc.value.details["percentage"] == 50
    stored = manager.get_attempt(attempt.id, student)
    assert stored.total_score == 5


def test_submit_loses_compare_and_swap(manager, make_quiz, student, db):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt

    # another worker closes the attempt behind this session's back
    db.connection().exec_driver_sql(
        "UPDATE attempts SET status = 'ABANDONED' WHERE id = ?", (attempt.id.hex,)
    )
    with pytest.raises(AlreadySubmitted):
        manager.submit_attempt(attempt.id, student, _answers(quiz))


def test_submit_rejects_unknown_question(manager, make_quiz, student):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    with pytest.raises(ValidationError):
        manager.submit_attempt(attempt.id, student, [AnswerSubmit(question_id=uuid.uuid4(), answer="x")])


def test_submit_rejects_duplicate_question(manager, make_quiz, student):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    qid = quiz.questions[0].id
    with pytest.raises(ValidationError):
        manager.submit_attempt(
            attempt.id, student, [AnswerSubmit(question_id=qid), AnswerSubmit(question_id=qid)]
        )


def test_only_owner_may_submit(manager, make_quiz, student, other_student):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    with pytest.raises(UnauthorizedError):
        manager.submit_attempt(attempt.id, other_student, _answers(quiz))


def test_submit_unknown_attempt(manager, student):
    with pytest.raises(NotFoundError):
        manager.submit_attempt(uuid.uuid4(), student, [])


def test_unanswered_questions_stored_as_incorrect(manager, make_quiz, student):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    closed = manager.submit_attempt(attempt.id, student, _answers(quiz)[:1])
    assert closed.total_score == 5
    assert len(closed.answers) == 2
    assert sorted(a.points_earned for a in closed.answers) == [0, 5]


def test_essay_leaves_attempt_ungraded(manager, make_quiz, student, mock_celery_tasks):
    quiz = make_quiz(
        questions=[{"question_type": "essay", "text": "Discuss.", "points": 10}],
    )
    notified = AttemptManager(manager.db, clock=manager.clock, notifier=Notifier(enabled=True))
    attempt = notified.start_attempt(quiz.id, student).attempt
    closed = notified.submit_attempt(
        attempt.id, student, [AnswerSubmit(question_id=quiz.questions[0].id, answer="Essay text")]
    )
    assert closed.is_graded is False
    assert closed.graded_at is None
    mock_celery_tasks["deliver_notification"].delay.assert_not_called()


def test_graded_submit_notifies_student(db, clock, make_quiz, student, mock_celery_tasks):
    quiz = make_quiz()
    manager = AttemptManager(db, clock=clock, notifier=Notifier(enabled=True))
    attempt = manager.start_attempt(quiz.id, student).attempt
    manager.submit_attempt(attempt.id, student, _answers(quiz))

    delay = mock_celery_tasks["deliver_notification"].delay
    delay.assert_called_once()
    assert delay.call_args.args[0] == str(student.id)
    assert delay.call_args.args[1] == "quiz-graded"


def test_notifier_failure_does_not_fail_submit(db, clock, make_quiz, student, mock_celery_tasks):
    mock_celery_tasks["deliver_notification"].delay.side_effect = ConnectionError("broker down")
    quiz = make_quiz()
    manager = AttemptManager(db, clock=clock, notifier=Notifier(enabled=True))
    attempt = manager.start_attempt(quiz.id, student).attempt
    closed = manager.submit_attempt(attempt.id, student, _answers(quiz))
    assert closed.status == AttemptStatusEnum.COMPLETED


# ── Autosave ──────────────────────────────────────────────────────────────────


def test_autosave_then_submit_keeps_drafts(manager, make_quiz, student):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    manager.save_answers(attempt.id, student, _answers(quiz)[:1])
    closed = manager.submit_attempt(attempt.id, student, _answers(quiz)[1:])
    assert closed.total_score == 10


def test_autosave_on_closed_attempt(manager, make_quiz, student):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    manager.submit_attempt(attempt.id, student, _answers(quiz))
    with pytest.raises(AlreadySubmitted):
        manager.save_answers(attempt.id, student, _answers(quiz))


def test_no_backtracking_refuses_changed_answer(manager, make_quiz, student):
    quiz = make_quiz(allow_backtracking=False)
    attempt = manager.start_attempt(quiz.id, student).attempt
    manager.save_answers(attempt.id, student, _answers(quiz, (True, True))[:1])
    with pytest.raises(ValidationError):
        manager.save_answers(attempt.id, student, _answers(quiz, (False, True))[:1])


# ── Abandon & expiry ──────────────────────────────────────────────────────────


def test_abandon_gives_zero_credit(manager, make_quiz, student, clock):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    manager.save_answers(attempt.id, student, _answers(quiz))
    clock.advance(minutes=3)
    closed = manager.abandon_attempt(attempt.id, student)
    assert closed.status == AttemptStatusEnum.ABANDONED
    assert closed.total_score == 0
    assert closed.grade == "F"
    assert closed.time_spent_seconds == 180
    assert all(a.answer is not None or a.selected_options for a in closed.answers)


def test_lazy_expiry_on_read(manager, make_quiz, student, clock):
    quiz = make_quiz(time_limit_minutes=30)
    attempt = manager.start_attempt(quiz.id, student).attempt
    started = attempt.started_at
    clock.advance(hours=2)

    seen = manager.get_attempt(attempt.id, student)
    assert seen.status == AttemptStatusEnum.TIMEOUT
    assert seen.time_spent_seconds == 30 * 60
    assert seen.total_score == 0
    assert seen.completed_at.replace(tzinfo=None) == (started + timedelta(minutes=30)).replace(tzinfo=None)


def test_lazy_expiry_scores_autosave_when_auto_submit(manager, make_quiz, student, clock):
    quiz = make_quiz(auto_submit=True)
    attempt = manager.start_attempt(quiz.id, student).attempt
    manager.save_answers(attempt.id, student, _answers(quiz, (True, False)))
    clock.advance(hours=1)
    seen = manager.get_attempt(attempt.id, student)
    assert seen.status == AttemptStatusEnum.TIMEOUT
    assert seen.total_score == 5


def test_overdue_attempt_expired_before_new_start(manager, make_quiz, student, clock):
    quiz = make_quiz(attempts_allowed=2)
    first = manager.start_attempt(quiz.id, student).attempt
    clock.advance(hours=1)
    result = manager.start_attempt(quiz.id, student)
    assert result.created
    assert result.attempt.attempt_number == 2
    assert manager.db.get(Attempt, first.id).status == AttemptStatusEnum.TIMEOUT


def test_sweep_expires_every_overdue_attempt(manager, make_quiz, student, other_student, clock):
    quiz = make_quiz()
    manager.start_attempt(quiz.id, student)
    manager.start_attempt(quiz.id, other_student)
    assert manager.expire_overdue_attempts() == 0
    clock.advance(minutes=31)
    assert manager.expire_overdue_attempts() == 2
    assert manager.expire_overdue_attempts() == 0


# ── Reads ─────────────────────────────────────────────────────────────────────


def test_list_attempts_newest_first(manager, make_quiz, student, clock):
    quiz = make_quiz()
    first = manager.start_attempt(quiz.id, student).attempt
    manager.submit_attempt(first.id, student, _answers(quiz))
    clock.advance(minutes=5)
    manager.start_attempt(quiz.id, student)
    numbers = [a.attempt_number for a in manager.list_attempts(quiz.id, student)]
    assert numbers == [2, 1]


def test_list_all_attempts_staff_only(manager, make_quiz, student, instructor):
    quiz = make_quiz()
    manager.start_attempt(quiz.id, student)
    with pytest.raises(UnauthorizedError):
        manager.list_all_attempts(quiz.id, student)
    assert len(manager.list_all_attempts(quiz.id, instructor)) == 1


def test_get_attempt_visibility(manager, make_quiz, student, other_student, instructor):
    quiz = make_quiz()
    attempt = manager.start_attempt(quiz.id, student).attempt
    with pytest.raises(UnauthorizedError):
        manager.get_attempt(attempt.id, other_student)
    assert manager.get_attempt(attempt.id, instructor).id == attempt.id
