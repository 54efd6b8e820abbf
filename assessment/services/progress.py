"""Per-student, per-course progress aggregation.

Every ``record_*`` call re-derives the affected item and then recomputes the
course-level figures from scratch, so replaying an event leaves the record
unchanged. Achievement rules run after each event; awards are stored once
per code.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal
from typing import Callable, Iterable, Sequence

from sqlalchemy import func
from sqlalchemy.orm import Session

from assessment.config import settings
from assessment.core.clock import Clock, ensure_utc, utcnow
from assessment.db.models import (
    Achievement,
    AchievementKindEnum,
    AssignmentProgress,
    AssignmentStatusEnum,
    Attempt,
    AttemptStatusEnum,
    ItemStatusEnum,
    MaterialProgress,
    Progress,
    Quiz,
    QuizProgress,
    TERMINAL_STATUSES,
    User,
)
from assessment.services.scoring import round_half_up

logger = logging.getLogger(__name__)

_ASSIGNMENT_CREDIT = {
    AssignmentStatusEnum.SUBMITTED: 50,
    AssignmentStatusEnum.GRADED: 100,
}

_SCORED_STATUSES = (AttemptStatusEnum.COMPLETED, AttemptStatusEnum.TIMEOUT)


# ── Pure helpers ──────────────────────────────────────────────────────────────


def _mean(values: Sequence[int]) -> int:
    if not values:
        return 0
    return round_half_up(Decimal(sum(values)) / Decimal(len(values)))


def compute_overall_progress(
    materials: Iterable[MaterialProgress],
    assignments: Iterable[AssignmentProgress],
    quizzes: Iterable[QuizProgress],
) -> int:
    """Unweighted mean of every tracked item, 0 when nothing is tracked.

    material → its percentage; assignment → 50 submitted / 100 graded / else 0;
    quiz → best percentage.
    """
    scores = [m.percentage or 0 for m in materials]
    scores += [_ASSIGNMENT_CREDIT.get(a.status, 0) for a in assignments]
    scores += [q.best_percentage or 0 for q in quizzes]
    return max(0, min(100, _mean(scores)))


def advance_streak(streak: int, last_activity_at: datetime | None, now: datetime) -> int:
    """Consecutive-day counter on UTC calendar days."""
    if last_activity_at is None:
        return 1
    gap = (ensure_utc(now).date() - ensure_utc(last_activity_at).date()).days
    if gap <= 0:
        return max(streak, 1)
    if gap == 1:
        return streak + 1
    return 1


# ── Achievement hooks ─────────────────────────────────────────────────────────


@dataclass(frozen=True)
class ProgressEvent:
    kind: str  # "material" | "assignment" | "quiz"
    progress: Progress
    attempt: Attempt | None = None


@dataclass(frozen=True)
class AchievementAward:
    code: str
    name: str
    kind: AchievementKindEnum = AchievementKindEnum.ACHIEVEMENT
    description: str | None = None
    icon: str | None = None
    points: int = 0


AchievementRule = Callable[[ProgressEvent], Iterable[AchievementAward]]


def first_quiz_completed(event: ProgressEvent) -> list[AchievementAward]:
    attempt = event.attempt
    if event.kind != "quiz" or attempt is None or attempt.status != AttemptStatusEnum.COMPLETED:
        return []
    return [
        AchievementAward(
            code="first-quiz",
            name="First Quiz",
            description="Completed a first quiz in this course",
            icon="quiz",
            points=10,
        )
    ]


def perfect_score(event: ProgressEvent) -> list[AchievementAward]:
    attempt = event.attempt
    if event.kind != "quiz" or attempt is None:
        return []
    if attempt.status != AttemptStatusEnum.COMPLETED or not attempt.is_graded or attempt.percentage < 100:
        return []
    return [
        AchievementAward(
            code="perfect-score",
            name="Perfect Score",
            description="Scored 100% on a quiz",
            icon="star",
            points=25,
        )
    ]


def streak_badge(event: ProgressEvent) -> list[AchievementAward]:
    days = settings.STREAK_BADGE_DAYS
    if event.progress.streak < days:
        return []
    return [
        AchievementAward(
            code=f"streak-{days}",
            name=f"{days}-Day Streak",
            kind=AchievementKindEnum.BADGE,
            description=f"Active {days} days in a row",
            icon="flame",
            points=15,
        )
    ]


def course_completed(event: ProgressEvent) -> list[AchievementAward]:
    if event.progress.overall_progress < 100:
        return []
    return [
        AchievementAward(
            code="course-complete",
            name="Course Complete",
            description="Reached 100% overall progress",
            icon="trophy",
            points=50,
        )
    ]


DEFAULT_RULES: tuple[AchievementRule, ...] = (
    first_quiz_completed,
    perfect_score,
    streak_badge,
    course_completed,
)


# ── Aggregator ────────────────────────────────────────────────────────────────


class ProgressAggregator:
    def __init__(
        self,
        db: Session,
        clock: Clock = utcnow,
        rules: Sequence[AchievementRule] | None = None,
    ):
        self.db = db
        self.clock = clock
        self.rules = tuple(DEFAULT_RULES if rules is None else rules)

    def get_or_create(self, student_id: uuid.UUID, course_id: uuid.UUID) -> Progress:
        progress = (
            self.db.query(Progress)
            .filter(Progress.student_id == student_id, Progress.course_id == course_id)
            .first()
        )
        if progress is None:
            progress = Progress(student_id=student_id, course_id=course_id)
            self.db.add(progress)
            self.db.flush()
            logger.info("Progress record created for student %s in course %s", student_id, course_id)
        return progress

    def get_progress(self, student_id: uuid.UUID, course_id: uuid.UUID) -> Progress:
        progress = self.get_or_create(student_id, course_id)
        self.db.commit()
        return progress

    # ── Events ───────────────────────────────────────────────────────────

    def record_material_view(
        self,
        student_id: uuid.UUID,
        course_id: uuid.UUID,
        material_id: uuid.UUID,
        percentage: int,
        time_spent: int = 0,
    ) -> Progress:
        now = self.clock()
        progress = self.get_or_create(student_id, course_id)
        item = next((m for m in progress.materials if m.material_id == material_id), None)
        if item is None:
            item = MaterialProgress(material_id=material_id, percentage=0, time_spent=0)
            progress.materials.append(item)

        item.percentage = max(0, min(100, percentage))
        item.time_spent = (item.time_spent or 0) + max(0, time_spent)
        item.last_accessed_at = now
        if item.percentage >= 100:
            item.status = ItemStatusEnum.COMPLETED
            item.completed_at = item.completed_at or now
        elif item.percentage > 0:
            item.status = ItemStatusEnum.IN_PROGRESS
        else:
            item.status = ItemStatusEnum.NOT_STARTED

        self._after_event(progress, now, ProgressEvent("material", progress))
        self.db.commit()
        return progress

    def record_assignment_status(
        self,
        student_id: uuid.UUID,
        course_id: uuid.UUID,
        assignment_id: uuid.UUID,
        status: AssignmentStatusEnum,
        score: float | None = None,
        max_score: float | None = None,
        grade: str | None = None,
        feedback: str | None = None,
    ) -> Progress:
        now = self.clock()
        progress = self.get_or_create(student_id, course_id)
        item = next((a for a in progress.assignments if a.assignment_id == assignment_id), None)
        if item is None:
            item = AssignmentProgress(assignment_id=assignment_id)
            progress.assignments.append(item)

        item.status = status
        if status == AssignmentStatusEnum.SUBMITTED:
            item.submitted_at = now
        if score is not None:
            item.score = score
        if max_score is not None:
            item.max_score = max_score
        if grade is not None:
            item.grade = grade
        if feedback is not None:
            item.feedback = feedback

        self._after_event(progress, now, ProgressEvent("assignment", progress))
        self.db.commit()
        return progress

    def record_quiz_attempt(self, attempt: Attempt) -> Progress:
        """Re-derive the quiz item from the student's closed attempts.

        Runs inside the caller's transaction; the attempt manager commits.
        """
        progress = self.get_or_create(attempt.student_id, attempt.course_id)
        self.db.flush()

        closed = (
            self.db.query(Attempt)
            .filter(
                Attempt.quiz_id == attempt.quiz_id,
                Attempt.student_id == attempt.student_id,
                Attempt.status.in_(TERMINAL_STATUSES),
            )
            .all()
        )
        item = next((q for q in progress.quizzes if q.quiz_id == attempt.quiz_id), None)
        if item is None:
            item = QuizProgress(quiz_id=attempt.quiz_id)
            progress.quizzes.append(item)

        item.attempts = len(closed)
        item.best_score = max((a.total_score for a in closed), default=0)
        item.best_percentage = max((a.percentage for a in closed), default=0)
        finished = [ensure_utc(a.completed_at) for a in closed if a.completed_at is not None]
        item.last_attempt_at = max(finished, default=None)
        if any(a.status in _SCORED_STATUSES for a in closed):
            item.status = ItemStatusEnum.COMPLETED
        elif closed:
            item.status = ItemStatusEnum.IN_PROGRESS
        else:
            item.status = ItemStatusEnum.NOT_STARTED

        activity = ensure_utc(attempt.completed_at) or self.clock()
        self._after_event(progress, activity, ProgressEvent("quiz", progress, attempt))
        return progress

    # ── Internals ────────────────────────────────────────────────────────

    def _after_event(self, progress: Progress, activity_at: datetime, event: ProgressEvent) -> None:
        self._touch(progress, activity_at)
        self.recompute(progress)
        self._run_rules(event)

    def _touch(self, progress: Progress, at: datetime) -> None:
        last = ensure_utc(progress.last_activity_at)
        if last is not None and at < last:
            return
        progress.streak = advance_streak(progress.streak or 0, last, at)
        progress.last_activity_at = at

    def recompute(self, progress: Progress) -> None:
        self.db.flush()
        progress.overall_progress = compute_overall_progress(
            progress.materials, progress.assignments, progress.quizzes
        )
        attempt_time = (
            self.db.query(func.coalesce(func.sum(Attempt.time_spent_seconds), 0))
            .filter(
                Attempt.student_id == progress.student_id,
                Attempt.course_id == progress.course_id,
                Attempt.status.in_(TERMINAL_STATUSES),
            )
            .scalar()
        )
        material_time = sum(m.time_spent or 0 for m in progress.materials)
        progress.total_time_spent = int(attempt_time or 0) + material_time

    def _run_rules(self, event: ProgressEvent) -> None:
        progress = event.progress
        earned = {a.code for a in progress.achievements}
        for rule in self.rules:
            try:
                awards = list(rule(event))
            except Exception:
                logger.exception("Achievement rule %s failed", getattr(rule, "__name__", rule))
                continue
            for award in awards:
                if award.code in earned:
                    continue
                progress.achievements.append(
                    Achievement(
                        kind=award.kind,
                        code=award.code,
                        name=award.name,
                        description=award.description,
                        icon=award.icon,
                        points=award.points,
                        earned_at=self.clock(),
                    )
                )
                earned.add(award.code)
                logger.info(
                    "Student %s earned %s in course %s",
                    progress.student_id, award.code, progress.course_id,
                )

    # ── Views ────────────────────────────────────────────────────────────

    def quiz_summary(self, progress: Progress) -> dict:
        total = (
            self.db.query(func.count(Quiz.id))
            .filter(Quiz.course_id == progress.course_id, Quiz.is_active.is_(True))
            .scalar()
            or 0
        )
        attempted = [q for q in progress.quizzes if q.attempts > 0]
        return {
            "total": total,
            "attempted": len(attempted),
            "completed": sum(1 for q in attempted if q.status == ItemStatusEnum.COMPLETED),
            "average_percentage": _mean([q.best_percentage for q in attempted]),
        }

    def dashboard(self, student_id: uuid.UUID, deadline_limit: int = 5) -> dict:
        """Cross-course overview for one student."""
        now = self.clock()
        records = (
            self.db.query(Progress)
            .filter(Progress.student_id == student_id)
            .order_by(Progress.last_activity_at.desc())
            .all()
        )

        courses = [
            {
                "course_id": p.course_id,
                "overall_progress": p.overall_progress,
                "total_time_spent": p.total_time_spent,
                "streak": p.streak,
                "last_activity_at": p.last_activity_at,
                "quizzes_completed": sum(1 for q in p.quizzes if q.status == ItemStatusEnum.COMPLETED),
                "achievements": len(p.achievements),
            }
            for p in records
        ]
        achievements = sorted(
            (a for p in records for a in p.achievements),
            key=lambda a: ensure_utc(a.earned_at),
            reverse=True,
        )

        course_ids = [p.course_id for p in records]
        done = {
            q.quiz_id
            for p in records
            for q in p.quizzes
            if q.status == ItemStatusEnum.COMPLETED
        }
        upcoming = []
        if course_ids:
            candidates = (
                self.db.query(Quiz)
                .filter(
                    Quiz.course_id.in_(course_ids),
                    Quiz.is_active.is_(True),
                    Quiz.end_date >= now,
                )
                .order_by(Quiz.end_date.asc())
                .all()
            )
            upcoming = [
                {
                    "quiz_id": q.id,
                    "course_id": q.course_id,
                    "title": q.title,
                    "start_date": q.start_date,
                    "end_date": q.end_date,
                }
                for q in candidates
                if q.id not in done
            ][:deadline_limit]

        return {
            "courses": courses,
            "total_courses": len(records),
            "average_progress": _mean([p.overall_progress for p in records]),
            "total_time_spent": sum(p.total_time_spent for p in records),
            "longest_streak": max((p.streak for p in records), default=0),
            "recent_achievements": achievements[:10],
            "upcoming_deadlines": upcoming,
        }

    def list_course_progress(
        self,
        course_id: uuid.UUID,
        page: int = 1,
        limit: int = 20,
    ) -> tuple[list[tuple[Progress, User]], int]:
        """Instructor view: every student's record, highest progress first."""
        query = (
            self.db.query(Progress, User)
            .join(User, User.id == Progress.student_id)
            .filter(Progress.course_id == course_id)
        )
        total = query.count()
        rows = (
            query.order_by(Progress.overall_progress.desc(), User.full_name.asc())
            .offset((page - 1) * limit)
            .limit(limit)
            .all()
        )
        return [(p, u) for p, u in rows], total
