"""Attempt schemas."""

import uuid
from datetime import datetime

from pydantic import Field

from assessment.schemas.common import ApiModel
from assessment.schemas.quiz import QuestionPublicRead


# ── Input ─────────────────────────────────────────────────────────────────────


class AnswerSubmit(ApiModel):
    """One answer. Choice questions use ``selected_options`` (option ids or texts)."""

    question_id: uuid.UUID
    answer: str | None = None
    selected_options: list[str] = []
    time_spent: int = Field(0, ge=0)


class AttemptStartRequest(ApiModel):
    """POST /api/quizzes/{id}/start"""

    password: str | None = None


class AutosaveRequest(ApiModel):
    """PUT /api/quizzes/{id}/attempts/{attemptId}/answers"""

    answers: list[AnswerSubmit]


class AttemptSubmit(ApiModel):
    """POST /api/quizzes/{id}/submit

    ``attempt_id`` may be omitted; the caller's open attempt is used.
    """

    attempt_id: uuid.UUID | None = None
    answers: list[AnswerSubmit] = []


# ── Output ────────────────────────────────────────────────────────────────────


class AttemptStartResponse(ApiModel):
    attempt_id: uuid.UUID
    attempt_number: int
    started_at: datetime
    expires_at: datetime
    time_limit_minutes: int
    allow_backtracking: bool
    resumed: bool = False
    questions: list[QuestionPublicRead]
    saved_answers: list["AnswerRead"] = []


class AutosaveResponse(ApiModel):
    attempt_id: uuid.UUID
    saved: int
    expires_at: datetime


class AttemptResult(ApiModel):
    """Outcome of a submit. Score fields are absent when the quiz hides results."""

    attempt_id: uuid.UUID
    status: str
    completed_at: datetime | None = None
    time_spent: int
    is_graded: bool
    total_score: int | None = None
    max_score: int | None = None
    percentage: int | None = None
    grade: str | None = None


class AttemptRead(ApiModel):
    id: uuid.UUID
    quiz_id: uuid.UUID
    student_id: uuid.UUID
    attempt_number: int
    status: str
    started_at: datetime
    completed_at: datetime | None = None
    time_spent: int = 0
    is_graded: bool = False
    total_score: int | None = None
    max_score: int | None = None
    percentage: int | None = None
    grade: str | None = None


class AnswerRead(ApiModel):
    question_id: uuid.UUID
    answer: str | None = None
    selected_options: list[str] = []
    time_spent: int = 0
    is_correct: bool | None = None
    points_earned: int | None = None
    correct_answer: str | None = None
    correct_options: list[uuid.UUID] | None = None
    explanation: str | None = None


class AttemptDetailRead(AttemptRead):
    answers: list[AnswerRead] = []


AttemptStartResponse.model_rebuild()
