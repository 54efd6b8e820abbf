"""Quiz catalog: read side for the attempt engine, write side for instructors.

The catalog never changes in response to attempt activity. Once a quiz window
has opened and attempts exist its definition is locked, which keeps every
attempt scored against the definition it started with.
"""

import logging
import uuid
from datetime import datetime
from typing import Iterable

from sqlalchemy import func
from sqlalchemy.orm import Session

from assessment.core.clock import Clock, ensure_utc, utcnow
from assessment.core.errors import (
    NotFoundError,
    QuizLocked,
    UnauthorizedError,
    ValidationError,
)
from assessment.core.security import hash_password, verify_password
from assessment.db.models import (
    Attempt,
    Question,
    QuestionOption,
    QuestionTypeEnum,
    Quiz,
    RoleEnum,
    User,
)
from assessment.schemas.quiz import QuestionCreate, QuizCreate, QuizListStatus, QuizUpdate
from assessment.services.notifications import Notifier

logger = logging.getLogger(__name__)

_TRUE_FALSE_LABELS = ("True", "False")

# Scalar QuizUpdate fields copied straight onto the model
_UPDATABLE_FIELDS = (
    "title",
    "description",
    "instructions",
    "time_limit_minutes",
    "attempts_allowed",
    "is_active",
    "show_results",
    "show_correct_answers",
    "randomize_questions",
    "randomize_options",
    "allow_backtracking",
    "auto_submit",
)


def compute_total_points(questions: Iterable[Question]) -> int:
    return sum(q.points for q in questions)


def is_within_window(quiz: Quiz, now: datetime) -> bool:
    """start ≤ now ≤ end"""
    return ensure_utc(quiz.start_date) <= ensure_utc(now) <= ensure_utc(quiz.end_date)


def _build_question(data: QuestionCreate, position: int) -> Question:
    question = Question(
        question_type=QuestionTypeEnum(data.question_type.value),
        text=data.text.strip(),
        correct_answer=data.correct_answer.strip() if data.correct_answer else None,
        points=data.points,
        explanation=data.explanation,
        position=data.order if data.order is not None else position,
    )
    options = data.options
    if question.question_type == QuestionTypeEnum.TRUE_FALSE and not options:
        truth = (data.correct_answer or "").strip().lower() == "true"
        question.options = [
            QuestionOption(text=label, is_correct=(label == "True") == truth, position=i)
            for i, label in enumerate(_TRUE_FALSE_LABELS)
        ]
    elif question.question_type in (QuestionTypeEnum.MULTIPLE_CHOICE, QuestionTypeEnum.TRUE_FALSE):
        question.options = [
            QuestionOption(text=opt.text.strip(), is_correct=opt.is_correct, position=i)
            for i, opt in enumerate(options)
        ]
    return question


class QuizCatalog:
    """Quiz definitions, backed by a SQLAlchemy session."""

    def __init__(self, db: Session, clock: Clock = utcnow, notifier: Notifier | None = None):
        self.db = db
        self.clock = clock
        self.notifier = notifier or Notifier()

    # ── Reads ────────────────────────────────────────────────────────────

    def get_quiz(self, quiz_id: uuid.UUID) -> Quiz:
        quiz = self.db.get(Quiz, quiz_id)
        if quiz is None:
            raise NotFoundError("Quiz not found", details={"quiz_id": str(quiz_id)})
        return quiz

    is_within_window = staticmethod(is_within_window)

    def list_course_quizzes(
        self,
        course_id: uuid.UUID,
        status: QuizListStatus | None = None,
        page: int = 1,
        limit: int = 10,
    ) -> tuple[list[Quiz], int]:
        """Active quizzes of a course, newest window first."""
        now = self.clock()
        query = self.db.query(Quiz).filter(Quiz.course_id == course_id, Quiz.is_active.is_(True))
        if status == QuizListStatus.ACTIVE:
            query = query.filter(Quiz.start_date <= now, Quiz.end_date >= now)
        elif status == QuizListStatus.UPCOMING:
            query = query.filter(Quiz.start_date > now)
        elif status == QuizListStatus.COMPLETED:
            query = query.filter(Quiz.end_date < now)

        total = query.count()
        rows = (
            query.order_by(Quiz.start_date.desc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return rows, total

    def count_active_quizzes(self, course_id: uuid.UUID) -> int:
        return (
            self.db.query(func.count(Quiz.id))
            .filter(Quiz.course_id == course_id, Quiz.is_active.is_(True))
            .scalar()
            or 0
        )

    @staticmethod
    def verify_password(quiz: Quiz, password: str | None) -> bool:
        if not quiz.require_password:
            return True
        return bool(password) and verify_password(password, quiz.password_hash)

    # ── Writes (instructors) ─────────────────────────────────────────────

    def create_quiz(self, data: QuizCreate, created_by: User) -> Quiz:
        if created_by.role not in (RoleEnum.INSTRUCTOR, RoleEnum.ADMIN):
            raise UnauthorizedError("Insufficient permissions to create quizzes")
        if data.require_password and not data.password:
            raise ValidationError(
                "A password is required when require_password is set",
                details={"field": "password"},
            )

        quiz = Quiz(
            course_id=data.course_id,
            title=data.title.strip(),
            description=data.description,
            instructions=data.instructions,
            time_limit_minutes=data.time_limit_minutes,
            attempts_allowed=data.attempts_allowed,
            start_date=ensure_utc(data.start_date),
            end_date=ensure_utc(data.end_date),
            is_active=data.is_active,
            show_results=data.show_results,
            show_correct_answers=data.show_correct_answers,
            randomize_questions=data.randomize_questions,
            randomize_options=data.randomize_options,
            allow_backtracking=data.allow_backtracking,
            auto_submit=data.auto_submit,
            require_password=data.require_password,
            password_hash=hash_password(data.password) if data.password else None,
            created_by=created_by.id,
        )
        quiz.questions = [_build_question(q, i) for i, q in enumerate(data.questions)]
        quiz.total_points = compute_total_points(quiz.questions)

        self.db.add(quiz)
        self.db.commit()
        self.db.refresh(quiz)
        logger.info(
            "Quiz %s created for course %s (%d questions, %d points)",
            quiz.id, quiz.course_id, len(quiz.questions), quiz.total_points,
        )

        if quiz.is_active:
            self.notifier.quiz_available(quiz)
        return quiz

    def _check_editor(self, quiz: Quiz, editor: User, action: str) -> None:
        if quiz.created_by != editor.id and editor.role != RoleEnum.ADMIN:
            raise UnauthorizedError(f"Insufficient permissions to {action} this quiz")

    def _attempt_count(self, quiz_id: uuid.UUID) -> int:
        return (
            self.db.query(func.count(Attempt.id)).filter(Attempt.quiz_id == quiz_id).scalar() or 0
        )

    def update_quiz(self, quiz_id: uuid.UUID, data: QuizUpdate, editor: User) -> Quiz:
        quiz = self.get_quiz(quiz_id)
        self._check_editor(quiz, editor, "update")

        now = self.clock()
        if self._attempt_count(quiz.id) > 0 and now >= ensure_utc(quiz.start_date):
            raise QuizLocked("Cannot update a quiz that has already started with attempts")

        changes = data.model_dump(exclude_unset=True)

        # Validate the merged definition before touching the quiz
        start = ensure_utc(data.start_date) if data.start_date is not None else ensure_utc(quiz.start_date)
        end = ensure_utc(data.end_date) if data.end_date is not None else ensure_utc(quiz.end_date)
        if start >= end:
            raise ValidationError(
                "start_date must be before end_date",
                details={"field": "end_date"},
            )
        require_password = (
            data.require_password if data.require_password is not None else quiz.require_password
        )
        if require_password and not (data.password or quiz.password_hash):
            raise ValidationError(
                "A password is required when require_password is set",
                details={"field": "password"},
            )

        for name in _UPDATABLE_FIELDS:
            if name in changes:
                setattr(quiz, name, changes[name])
        quiz.start_date = start
        quiz.end_date = end
        quiz.require_password = require_password
        if data.password:
            quiz.password_hash = hash_password(data.password)

        if data.questions is not None:
            quiz.questions = [_build_question(q, i) for i, q in enumerate(data.questions)]
        quiz.total_points = compute_total_points(quiz.questions)

        self.db.commit()
        self.db.refresh(quiz)
        logger.info("Quiz %s updated by %s", quiz.id, editor.id)
        return quiz

    def deactivate_quiz(self, quiz_id: uuid.UUID, editor: User) -> Quiz:
        """Soft delete; refused once anyone has attempted the quiz."""
        quiz = self.get_quiz(quiz_id)
        self._check_editor(quiz, editor, "delete")
        if self._attempt_count(quiz.id) > 0:
            raise QuizLocked("Cannot delete a quiz that has attempts")
        quiz.is_active = False
        self.db.commit()
        logger.info("Quiz %s deactivated by %s", quiz.id, editor.id)
        return quiz
