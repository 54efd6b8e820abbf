"""Quiz catalog schemas."""

import uuid
from datetime import datetime
from enum import Enum

from pydantic import Field, model_validator

from assessment.schemas.common import ApiModel, Pagination


class QuestionType(str, Enum):
    MULTIPLE_CHOICE = "multiple-choice"
    TRUE_FALSE = "true-false"
    SHORT_ANSWER = "short-answer"
    ESSAY = "essay"


class QuizListStatus(str, Enum):
    ACTIVE = "active"
    UPCOMING = "upcoming"
    COMPLETED = "completed"


# ── Input ─────────────────────────────────────────────────────────────────────


class OptionCreate(ApiModel):
    text: str = Field(min_length=1)
    is_correct: bool = False


class QuestionCreate(ApiModel):
    """One question inside a quiz definition."""

    question_type: QuestionType
    text: str = Field(min_length=1)
    options: list[OptionCreate] = []
    correct_answer: str | None = None
    points: int = Field(1, ge=1)
    explanation: str | None = None
    order: int | None = None

    @model_validator(mode="after")
    def _check_answer_key(self) -> "QuestionCreate":
        if self.question_type == QuestionType.MULTIPLE_CHOICE:
            if len(self.options) < 2:
                raise ValueError("multiple-choice questions need at least two options")
            if not any(o.is_correct for o in self.options):
                raise ValueError("multiple-choice questions need an option marked correct")
        elif self.question_type == QuestionType.TRUE_FALSE:
            if self.options:
                if not any(o.is_correct for o in self.options):
                    raise ValueError("true-false questions need an option marked correct")
            elif (self.correct_answer or "").strip().lower() not in ("true", "false"):
                raise ValueError("true-false questions need options or a correct answer of true/false")
        elif self.question_type == QuestionType.SHORT_ANSWER:
            if not (self.correct_answer or "").strip():
                raise ValueError("short-answer questions need a correct answer")
        return self


class QuizCreate(ApiModel):
    """POST /api/quizzes"""

    course_id: uuid.UUID
    title: str = Field(min_length=1, max_length=300)
    description: str | None = None
    instructions: str | None = None
    questions: list[QuestionCreate] = Field(min_length=1)
    time_limit_minutes: int = Field(60, ge=1)
    attempts_allowed: int = Field(1, ge=1)
    start_date: datetime
    end_date: datetime
    is_active: bool = True
    show_results: bool = True
    show_correct_answers: bool = True
    randomize_questions: bool = False
    randomize_options: bool = False
    allow_backtracking: bool = True
    auto_submit: bool = False
    require_password: bool = False
    password: str | None = None

    @model_validator(mode="after")
    def _check_window(self) -> "QuizCreate":
        if self.start_date >= self.end_date:
            raise ValueError("start_date must be before end_date")
        return self


class QuizUpdate(ApiModel):
    """PUT /api/quizzes/{id}. Only the fields sent are changed."""

    title: str | None = Field(None, min_length=1, max_length=300)
    description: str | None = None
    instructions: str | None = None
    questions: list[QuestionCreate] | None = Field(None, min_length=1)
    time_limit_minutes: int | None = Field(None, ge=1)
    attempts_allowed: int | None = Field(None, ge=1)
    start_date: datetime | None = None
    end_date: datetime | None = None
    is_active: bool | None = None
    show_results: bool | None = None
    show_correct_answers: bool | None = None
    randomize_questions: bool | None = None
    randomize_options: bool | None = None
    allow_backtracking: bool | None = None
    auto_submit: bool | None = None
    require_password: bool | None = None
    password: str | None = None


# ── Output ────────────────────────────────────────────────────────────────────


class OptionPublicRead(ApiModel):
    id: uuid.UUID
    text: str


class OptionRead(OptionPublicRead):
    is_correct: bool


class QuestionPublicRead(ApiModel):
    """Question as served to a student, without the answer key."""

    id: uuid.UUID
    question_type: QuestionType
    text: str
    points: int
    order: int = Field(validation_alias="position")
    options: list[OptionPublicRead] = []


class QuestionRead(QuestionPublicRead):
    """Question with its answer key, for staff."""

    options: list[OptionRead] = []
    correct_answer: str | None = None
    explanation: str | None = None


class QuizSummaryRead(ApiModel):
    id: uuid.UUID
    course_id: uuid.UUID
    title: str
    description: str | None = None
    total_points: int
    time_limit_minutes: int
    attempts_allowed: int
    start_date: datetime
    end_date: datetime
    is_active: bool
    require_password: bool


class QuizPublicRead(QuizSummaryRead):
    """Quiz overview for students; questions arrive with the started attempt."""

    instructions: str | None = None
    question_count: int
    show_results: bool
    allow_backtracking: bool


class QuizRead(QuizSummaryRead):
    """Full definition for staff."""

    instructions: str | None = None
    show_results: bool
    show_correct_answers: bool
    randomize_questions: bool
    randomize_options: bool
    allow_backtracking: bool
    auto_submit: bool
    created_by: uuid.UUID
    created_at: datetime
    updated_at: datetime
    questions: list[QuestionRead]


class QuizListRead(ApiModel):
    quizzes: list[QuizSummaryRead]
    pagination: Pagination
