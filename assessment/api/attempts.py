"""Attempt detail route and the response builders shared with the quiz routes.

What a caller sees depends on the quiz flags:
  - ``show_results`` off   → score, percentage and grade are withheld from students
  - ``show_correct_answers`` off → answer keys and explanations are withheld
Staff always see everything.
"""

import uuid

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from assessment.api.deps import get_clock, get_current_user
from assessment.core.clock import Clock, ensure_utc
from assessment.db.models import Attempt, Question, QuestionOption, Quiz, TERMINAL_STATUSES, User
from assessment.db.session import get_db
from assessment.schemas.attempt import (
    AnswerRead,
    AttemptDetailRead,
    AttemptRead,
    AttemptResult,
    AttemptStartResponse,
)
from assessment.schemas.quiz import OptionPublicRead, QuestionPublicRead
from assessment.services.attempts import AttemptManager, StartResult, deadline_for

router = APIRouter()


def _shows_results(quiz: Quiz, caller: User) -> bool:
    return quiz.show_results or caller.is_staff


def _score_fields(attempt: Attempt, visible: bool) -> dict:
    if not visible or attempt.status not in TERMINAL_STATUSES:
        return {}
    return {
        "total_score": attempt.total_score,
        "max_score": attempt.max_score,
        "percentage": attempt.percentage,
        "grade": attempt.grade,
    }


def question_public(question: Question, options: list[QuestionOption], order: int) -> QuestionPublicRead:
    return QuestionPublicRead(
        id=question.id,
        question_type=question.question_type.value,
        text=question.text,
        points=question.points,
        order=order,
        options=[OptionPublicRead(id=o.id, text=o.text) for o in options],
    )


def _draft(row) -> AnswerRead:
    return AnswerRead(
        question_id=row.question_id,
        answer=row.answer,
        selected_options=list(row.selected_options or []),
        time_spent=row.time_spent_seconds or 0,
    )


def start_response(result: StartResult, quiz: Quiz) -> AttemptStartResponse:
    attempt = result.attempt
    return AttemptStartResponse(
        attempt_id=attempt.id,
        attempt_number=attempt.attempt_number,
        started_at=ensure_utc(attempt.started_at),
        expires_at=deadline_for(attempt, quiz),
        time_limit_minutes=quiz.time_limit_minutes,
        allow_backtracking=quiz.allow_backtracking,
        resumed=not result.created,
        questions=[question_public(q, opts, i) for i, (q, opts) in enumerate(result.questions)],
        saved_answers=[_draft(a) for a in attempt.answers],
    )


def attempt_result(attempt: Attempt, quiz: Quiz, caller: User) -> AttemptResult:
    return AttemptResult(
        attempt_id=attempt.id,
        status=attempt.status.value,
        completed_at=ensure_utc(attempt.completed_at),
        time_spent=attempt.time_spent_seconds,
        is_graded=attempt.is_graded,
        **_score_fields(attempt, _shows_results(quiz, caller)),
    )


def attempt_read(attempt: Attempt, quiz: Quiz, caller: User) -> AttemptRead:
    return AttemptRead(
        id=attempt.id,
        quiz_id=attempt.quiz_id,
        student_id=attempt.student_id,
        attempt_number=attempt.attempt_number,
        status=attempt.status.value,
        started_at=ensure_utc(attempt.started_at),
        completed_at=ensure_utc(attempt.completed_at),
        time_spent=attempt.time_spent_seconds,
        is_graded=attempt.is_graded,
        **_score_fields(attempt, _shows_results(quiz, caller)),
    )


def attempt_detail(attempt: Attempt, quiz: Quiz, caller: User) -> AttemptDetailRead:
    closed = attempt.status in TERMINAL_STATUSES
    show_results = closed and _shows_results(quiz, caller)
    show_keys = closed and (quiz.show_correct_answers or caller.is_staff)

    saved = {a.question_id: a for a in attempt.answers}
    answers = []
    for question in quiz.questions:
        row = saved.get(question.id)
        if row is None:
            continue
        item = _draft(row)
        if show_results:
            item.is_correct = row.is_correct
            item.points_earned = row.points_earned
        if show_keys:
            item.correct_answer = question.correct_answer
            item.correct_options = [o.id for o in question.options if o.is_correct] or None
            item.explanation = question.explanation
        answers.append(item)

    base = attempt_read(attempt, quiz, caller)
    return AttemptDetailRead(**base.model_dump(), answers=answers)


@router.get("/{attempt_id}", response_model=AttemptDetailRead, response_model_exclude_none=True)
def get_attempt(
    attempt_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Attempt with its answers; owner or staff only."""
    attempt = AttemptManager(db, clock=clock).get_attempt(attempt_id, current_user)
    return attempt_detail(attempt, attempt.quiz, current_user)
