"""Attempt lifecycle: start, autosave, submit, abandon and timeout.

State machine::

    (absent) ──start──▶ in-progress ──submit──▶ completed | timeout
                             │
                             ├──abandon──▶ abandoned
                             └──overdue (lazy or swept)──▶ timeout

Terminal states never change again. Every closing transition goes through a
single compare-and-swap on ``status`` so concurrent closers produce exactly one
outcome; attempt numbers are protected by a unique constraint.
"""

import logging
import random
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from assessment.config import settings
from assessment.core.clock import Clock, ensure_utc, utcnow
from assessment.core.errors import (
    AlreadySubmitted,
    AttemptAlreadyInProgress,
    AttemptLimitExceeded,
    NotFoundError,
    QuizWindowClosed,
    UnauthorizedError,
    ValidationError,
)
from assessment.db.models import (
    Attempt,
    AttemptAnswer,
    AttemptStatusEnum,
    Question,
    QuestionOption,
    Quiz,
    TERMINAL_STATUSES,
    User,
)
from assessment.schemas.attempt import AnswerSubmit
from assessment.services.catalog import QuizCatalog
from assessment.services.notifications import Notifier
from assessment.services.progress import ProgressAggregator
from assessment.services.scoring import (
    FAILING_GRADE,
    AnswerScore,
    ScoreResult,
    compute_time_spent,
    score_attempt,
)

logger = logging.getLogger(__name__)


@dataclass
class StartResult:
    attempt: Attempt
    created: bool
    questions: list[tuple[Question, list[QuestionOption]]] = field(default_factory=list)


def deadline_for(attempt: Attempt, quiz: Quiz) -> datetime:
    return ensure_utc(attempt.started_at) + timedelta(minutes=quiz.time_limit_minutes)


def presented_questions(attempt: Attempt, quiz: Quiz) -> list[tuple[Question, list[QuestionOption]]]:
    """Question and option order for one attempt; stable across resumes."""
    rng = random.Random(attempt.id.int)
    questions = list(quiz.questions)
    if quiz.randomize_questions:
        rng.shuffle(questions)
    presented = []
    for question in questions:
        options = list(question.options)
        if quiz.randomize_options:
            rng.shuffle(options)
        presented.append((question, options))
    return presented


def _zero_credit(questions: Sequence[Question], max_score: int) -> ScoreResult:
    return ScoreResult(
        answers={q.id: AnswerScore(q.id, False, 0) for q in questions},
        total_score=0,
        max_score=max_score,
        percentage=0,
        grade=FAILING_GRADE,
    )


class AttemptManager:
    def __init__(
        self,
        db: Session,
        clock: Clock = utcnow,
        catalog: QuizCatalog | None = None,
        progress: ProgressAggregator | None = None,
        notifier: Notifier | None = None,
    ):
        self.db = db
        self.clock = clock
        self.notifier = notifier or Notifier()
        self.catalog = catalog or QuizCatalog(db, clock=clock, notifier=self.notifier)
        self.progress = progress or ProgressAggregator(db, clock=clock)
        self.grace = timedelta(seconds=settings.SUBMIT_GRACE_SECONDS)

    # ── Start ────────────────────────────────────────────────────────────

    def start_attempt(
        self,
        quiz_id: uuid.UUID,
        student: User,
        password: str | None = None,
        ip_address: str | None = None,
        user_agent: str | None = None,
    ) -> StartResult:
        quiz = self.catalog.get_quiz(quiz_id)
        now = self.clock()

        self.expire_overdue_for_student(quiz.id, student.id, now)

        live = self._open_attempt(quiz.id, student.id)
        if live is not None:
            logger.info("Resuming attempt %s for student %s", live.id, student.id)
            return StartResult(live, created=False, questions=presented_questions(live, quiz))

        if not quiz.is_active or not self.catalog.is_within_window(quiz, now):
            raise QuizWindowClosed(
                "Quiz is not available at this time",
                details={
                    "start_date": ensure_utc(quiz.start_date).isoformat(),
                    "end_date": ensure_utc(quiz.end_date).isoformat(),
                },
            )
        if not self.catalog.verify_password(quiz, password):
            raise UnauthorizedError("Invalid quiz password")

        prior = (
            self.db.query(Attempt)
            .filter(Attempt.quiz_id == quiz.id, Attempt.student_id == student.id)
            .count()
        )
        if prior >= quiz.attempts_allowed:
            raise AttemptLimitExceeded(
                "Maximum attempts reached",
                details={"attempts_allowed": quiz.attempts_allowed, "attempts_used": prior},
            )

        attempt = Attempt(
            quiz_id=quiz.id,
            student_id=student.id,
            course_id=quiz.course_id,
            attempt_number=prior + 1,
            status=AttemptStatusEnum.IN_PROGRESS,
            started_at=now,
            max_score=quiz.total_points,
            ip_address=ip_address,
            user_agent=user_agent,
        )
        self.db.add(attempt)
        try:
            self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.info("Concurrent start rejected for student %s on quiz %s", student.id, quiz.id)
            raise AttemptAlreadyInProgress("An attempt for this quiz is already in progress")

        self.db.refresh(attempt)
        logger.info(
            "Attempt %s (#%d) started by %s on quiz %s",
            attempt.id, attempt.attempt_number, student.id, quiz.id,
        )
        return StartResult(attempt, created=True, questions=presented_questions(attempt, quiz))

    def _open_attempt(self, quiz_id: uuid.UUID, student_id: uuid.UUID) -> Attempt | None:
        return (
            self.db.query(Attempt)
            .filter(
                Attempt.quiz_id == quiz_id,
                Attempt.student_id == student_id,
                Attempt.status == AttemptStatusEnum.IN_PROGRESS,
            )
            .order_by(Attempt.attempt_number.desc())
            .first()
        )

    def resolve_attempt_for_submit(self, quiz_id: uuid.UUID, student: User) -> Attempt:
        """The caller's open attempt on a quiz, for submits without an attempt id."""
        attempt = self._open_attempt(quiz_id, student.id)
        if attempt is not None:
            return attempt
        latest = (
            self.db.query(Attempt)
            .filter(Attempt.quiz_id == quiz_id, Attempt.student_id == student.id)
            .order_by(Attempt.attempt_number.desc())
            .first()
        )
        if latest is None:
            raise NotFoundError("No attempt found for this quiz", details={"quiz_id": str(quiz_id)})
        return latest

    # ── Answers ──────────────────────────────────────────────────────────

    def _validate_answers(self, attempt: Attempt, quiz: Quiz, answers: Sequence[AnswerSubmit]) -> None:
        known = {q.id for q in quiz.questions}
        seen: set[uuid.UUID] = set()
        for item in answers:
            if item.question_id not in known:
                raise ValidationError(
                    "Answer references a question that is not part of this quiz",
                    details={"question_id": str(item.question_id)},
                )
            if item.question_id in seen:
                raise ValidationError(
                    "Question answered more than once",
                    details={"question_id": str(item.question_id)},
                )
            seen.add(item.question_id)

        if quiz.allow_backtracking:
            return
        saved = {a.question_id: a for a in attempt.answers}
        for item in answers:
            prev = saved.get(item.question_id)
            if prev is None:
                continue
            if prev.answer != item.answer or list(prev.selected_options or []) != list(item.selected_options):
                raise ValidationError(
                    "This quiz does not allow changing a saved answer",
                    details={"question_id": str(item.question_id)},
                )

    def _apply_answers(self, attempt: Attempt, answers: Sequence[AnswerSubmit]) -> None:
        saved = {a.question_id: a for a in attempt.answers}
        for item in answers:
            row = saved.get(item.question_id)
            if row is None:
                row = AttemptAnswer(question_id=item.question_id)
                attempt.answers.append(row)
                saved[item.question_id] = row
            row.answer = item.answer
            row.selected_options = [str(s) for s in item.selected_options]
            row.time_spent_seconds = item.time_spent

    def load_owned_attempt(self, attempt_id: uuid.UUID, caller: User) -> Attempt:
        attempt = self.db.get(Attempt, attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt not found", details={"attempt_id": str(attempt_id)})
        if attempt.student_id != caller.id:
            raise UnauthorizedError("Not your attempt")
        return attempt

    def save_answers(self, attempt_id: uuid.UUID, caller: User, answers: Sequence[AnswerSubmit]) -> Attempt:
        """Autosave drafts on an open attempt. Nothing is scored."""
        attempt = self.load_owned_attempt(attempt_id, caller)
        now = self.clock()
        if self.expire_if_overdue(attempt, now):
            self.db.commit()
        if attempt.status in TERMINAL_STATUSES:
            raise AlreadySubmitted(
                "Attempt is no longer in progress",
                attempt=attempt,
                details=self._result_details(attempt, caller),
            )

        quiz = attempt.quiz
        self._validate_answers(attempt, quiz, answers)

        # Row lock: keeps the draft write from interleaving with a closing CAS
        locked = self.db.execute(
            update(Attempt)
            .where(Attempt.id == attempt.id, Attempt.status == AttemptStatusEnum.IN_PROGRESS)
            .values(status=AttemptStatusEnum.IN_PROGRESS)
            .execution_options(synchronize_session=False)
        ).rowcount
        if not locked:
            self.db.rollback()
            attempt = self.db.get(Attempt, attempt_id)
            raise AlreadySubmitted(
                "Attempt is no longer in progress",
                attempt=attempt,
                details=self._result_details(attempt, caller),
            )

        self._apply_answers(attempt, answers)
        self.db.commit()
        self.db.refresh(attempt)
        logger.debug("Autosaved %d answers on attempt %s", len(answers), attempt.id)
        return attempt

    # ── Closing transitions ──────────────────────────────────────────────

    def _cas_close(
        self,
        attempt: Attempt,
        status: AttemptStatusEnum,
        completed_at: datetime,
        result: ScoreResult,
    ) -> bool:
        """in-progress → terminal, only if nobody closed it first."""
        time_spent = compute_time_spent(attempt.started_at, completed_at)
        graded_at = completed_at if result.is_graded else None
        values = dict(
            status=status,
            completed_at=completed_at,
            total_score=result.total_score,
            max_score=result.max_score,
            percentage=result.percentage,
            grade=result.grade,
            time_spent_seconds=time_spent,
            is_graded=result.is_graded,
            graded_at=graded_at,
        )
        rowcount = self.db.execute(
            update(Attempt)
            .where(Attempt.id == attempt.id, Attempt.status == AttemptStatusEnum.IN_PROGRESS)
            .values(**values)
            .execution_options(synchronize_session=False)
        ).rowcount
        if rowcount != 1:
            return False
        for name, value in values.items():
            setattr(attempt, name, value)
        return True

    def _close(
        self,
        attempt: Attempt,
        quiz: Quiz,
        status: AttemptStatusEnum,
        completed_at: datetime,
        score: bool,
    ) -> bool:
        saved = {a.question_id: a for a in attempt.answers}
        if score:
            result = score_attempt(quiz.questions, saved, attempt.max_score)
        else:
            result = _zero_credit(quiz.questions, attempt.max_score)

        if not self._cas_close(attempt, status, completed_at, result):
            return False

        for question in quiz.questions:
            outcome = result.answers[question.id]
            row = saved.get(question.id)
            if row is None:
                row = AttemptAnswer(question_id=question.id, answer=None, selected_options=[])
                attempt.answers.append(row)
            row.is_correct = outcome.is_correct
            row.points_earned = outcome.points_earned

        self.db.flush()
        self.progress.record_quiz_attempt(attempt)
        return True

    def _result_details(self, attempt: Attempt, caller: User) -> dict:
        """Stored outcome for error details; scores follow the quiz's result visibility."""
        details = {
            "attempt_id": str(attempt.id),
            "status": attempt.status.value,
            "completed_at": ensure_utc(attempt.completed_at).isoformat() if attempt.completed_at else None,
        }
        if attempt.quiz.show_results or caller.is_staff:
            details.update(
                total_score=attempt.total_score,
                max_score=attempt.max_score,
                percentage=attempt.percentage,
                grade=attempt.grade,
            )
        return details

    def _already_closed(self, attempt_id: uuid.UUID, caller: User) -> AlreadySubmitted:
        self.db.rollback()
        attempt = self.db.get(Attempt, attempt_id)
        return AlreadySubmitted(
            "Attempt already submitted",
            attempt=attempt,
            details=self._result_details(attempt, caller),
        )

    def submit_attempt(self, attempt_id: uuid.UUID, caller: User, answers: Sequence[AnswerSubmit]) -> Attempt:
        attempt = self.load_owned_attempt(attempt_id, caller)
        if attempt.status in TERMINAL_STATUSES:
            raise AlreadySubmitted(
                "Attempt already submitted",
                attempt=attempt,
                details=self._result_details(attempt, caller),
            )

        quiz = attempt.quiz
        now = self.clock()
        self._validate_answers(attempt, quiz, answers)
        self._apply_answers(attempt, answers)

        overdue = now > deadline_for(attempt, quiz) + self.grace
        status = AttemptStatusEnum.TIMEOUT if overdue else AttemptStatusEnum.COMPLETED

        if not self._close(attempt, quiz, status, now, score=True):
            raise self._already_closed(attempt_id, caller)

        self.db.commit()
        self.db.refresh(attempt)
        logger.info(
            "Attempt %s closed as %s: %d/%d (%d%%, %s)",
            attempt.id, attempt.status.value, attempt.total_score,
            attempt.max_score, attempt.percentage, attempt.grade,
        )
        if attempt.is_graded:
            self.notifier.quiz_graded(attempt, quiz)
        return attempt

    def abandon_attempt(self, attempt_id: uuid.UUID, caller: User) -> Attempt:
        """Student gives up: zero credit, saved answers kept."""
        attempt = self.load_owned_attempt(attempt_id, caller)
        if attempt.status in TERMINAL_STATUSES:
            raise AlreadySubmitted(
                "Attempt already closed",
                attempt=attempt,
                details=self._result_details(attempt, caller),
            )
        if not self._close(attempt, attempt.quiz, AttemptStatusEnum.ABANDONED, self.clock(), score=False):
            raise self._already_closed(attempt_id, caller)
        self.db.commit()
        self.db.refresh(attempt)
        logger.info("Attempt %s abandoned by %s", attempt.id, caller.id)
        return attempt

    # ── Timeouts ─────────────────────────────────────────────────────────

    def expire_if_overdue(self, attempt: Attempt, now: datetime | None = None) -> bool:
        """Reclassify an overdue in-progress attempt as ``timeout``.

        Completion is stamped at the deadline, not at the time of discovery.
        The caller commits.
        """
        if attempt.status != AttemptStatusEnum.IN_PROGRESS:
            return False
        quiz = attempt.quiz
        now = now or self.clock()
        deadline = deadline_for(attempt, quiz)
        if now <= deadline + self.grace:
            return False
        closed = self._close(attempt, quiz, AttemptStatusEnum.TIMEOUT, deadline, score=quiz.auto_submit)
        if closed:
            logger.info("Attempt %s expired (deadline %s)", attempt.id, deadline.isoformat())
        return closed

    def expire_overdue_for_student(
        self,
        quiz_id: uuid.UUID | None,
        student_id: uuid.UUID,
        now: datetime | None = None,
    ) -> int:
        query = self.db.query(Attempt).filter(
            Attempt.student_id == student_id,
            Attempt.status == AttemptStatusEnum.IN_PROGRESS,
        )
        if quiz_id is not None:
            query = query.filter(Attempt.quiz_id == quiz_id)
        return self._expire_all(query.all(), now)

    def expire_overdue_attempts(self, now: datetime | None = None) -> int:
        """Eager sweep over every open attempt."""
        open_attempts = (
            self.db.query(Attempt).filter(Attempt.status == AttemptStatusEnum.IN_PROGRESS).all()
        )
        return self._expire_all(open_attempts, now)

    def _expire_all(self, attempts: Sequence[Attempt], now: datetime | None) -> int:
        now = now or self.clock()
        expired = sum(1 for a in attempts if self.expire_if_overdue(a, now))
        if expired:
            self.db.commit()
        return expired

    # ── Reads ────────────────────────────────────────────────────────────

    def get_attempt(self, attempt_id: uuid.UUID, caller: User) -> Attempt:
        attempt = self.db.get(Attempt, attempt_id)
        if attempt is None:
            raise NotFoundError("Attempt not found", details={"attempt_id": str(attempt_id)})
        if attempt.student_id != caller.id and not caller.is_staff:
            raise UnauthorizedError("Not authorized to view this attempt")
        if self.expire_if_overdue(attempt):
            self.db.commit()
            self.db.refresh(attempt)
        return attempt

    def list_attempts(self, quiz_id: uuid.UUID, student: User) -> list[Attempt]:
        self.catalog.get_quiz(quiz_id)
        self.expire_overdue_for_student(quiz_id, student.id)
        return (
            self.db.query(Attempt)
            .filter(Attempt.quiz_id == quiz_id, Attempt.student_id == student.id)
            .order_by(Attempt.started_at.desc(), Attempt.attempt_number.desc())
            .all()
        )

    def list_all_attempts(self, quiz_id: uuid.UUID, caller: User) -> list[Attempt]:
        if not caller.is_staff:
            raise UnauthorizedError("Insufficient permissions to view all attempts")
        self.catalog.get_quiz(quiz_id)
        rows = self.db.query(Attempt).filter(Attempt.quiz_id == quiz_id).all()
        self._expire_all(rows, None)
        return (
            self.db.query(Attempt)
            .filter(Attempt.quiz_id == quiz_id)
            .order_by(Attempt.started_at.desc())
            .all()
        )
