"""Progress & dashboard routes."""

import uuid

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from assessment.api.deps import get_clock, get_current_user, require_staff
from assessment.core.clock import Clock
from assessment.db.models import AchievementKindEnum, Progress, User
from assessment.db.session import get_db
from assessment.schemas.common import Pagination
from assessment.schemas.progress import (
    AssignmentProgressUpdate,
    CourseProgressPage,
    DashboardRead,
    MaterialProgressUpdate,
    ProgressRead,
    StudentProgressRow,
)
from assessment.services.attempts import AttemptManager
from assessment.services.progress import ProgressAggregator

router = APIRouter()


def _progress_view(aggregator: ProgressAggregator, progress: Progress) -> ProgressRead:
    return ProgressRead.model_validate(
        {
            "id": progress.id,
            "student_id": progress.student_id,
            "course_id": progress.course_id,
            "overall_progress": progress.overall_progress,
            "total_time_spent": progress.total_time_spent,
            "streak": progress.streak,
            "last_activity_at": progress.last_activity_at,
            "materials": progress.materials,
            "assignments": progress.assignments,
            "quizzes": progress.quizzes,
            "badges": [a for a in progress.achievements if a.kind == AchievementKindEnum.BADGE],
            "achievements": [a for a in progress.achievements if a.kind == AchievementKindEnum.ACHIEVEMENT],
            "quiz_summary": aggregator.quiz_summary(progress),
        }
    )


@router.get("/dashboard", response_model=DashboardRead)
def dashboard(
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Cross-course overview for the caller."""
    AttemptManager(db, clock=clock).expire_overdue_for_student(None, current_user.id)
    return DashboardRead.model_validate(ProgressAggregator(db, clock=clock).dashboard(current_user.id))


@router.get("/{course_id}", response_model=ProgressRead)
def get_course_progress(
    course_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """The caller's progress in one course; created on first access."""
    AttemptManager(db, clock=clock).expire_overdue_for_student(None, current_user.id)
    aggregator = ProgressAggregator(db, clock=clock)
    progress = aggregator.get_progress(current_user.id, course_id)
    return _progress_view(aggregator, progress)


@router.get("/{course_id}/all", response_model=CourseProgressPage)
def list_course_progress(
    course_id: uuid.UUID,
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    rows, total = ProgressAggregator(db, clock=clock).list_course_progress(course_id, page, limit)
    return CourseProgressPage(
        progress=[
            StudentProgressRow(
                student_id=p.student_id,
                student_name=u.full_name,
                student_email=u.email,
                overall_progress=p.overall_progress,
                total_time_spent=p.total_time_spent,
                streak=p.streak,
                last_activity_at=p.last_activity_at,
            )
            for p, u in rows
        ],
        pagination=Pagination.build(page, limit, total),
    )


@router.put("/{course_id}/materials/{material_id}", response_model=ProgressRead)
def update_material_progress(
    course_id: uuid.UUID,
    material_id: uuid.UUID,
    body: MaterialProgressUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    aggregator = ProgressAggregator(db, clock=clock)
    progress = aggregator.record_material_view(
        current_user.id, course_id, material_id, body.percentage, body.time_spent
    )
    return _progress_view(aggregator, progress)


@router.put("/{course_id}/assignments/{assignment_id}", response_model=ProgressRead)
def update_assignment_progress(
    course_id: uuid.UUID,
    assignment_id: uuid.UUID,
    body: AssignmentProgressUpdate,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    aggregator = ProgressAggregator(db, clock=clock)
    progress = aggregator.record_assignment_status(
        current_user.id,
        course_id,
        assignment_id,
        body.status,
        score=body.score,
        max_score=body.max_score,
        grade=body.grade,
        feedback=body.feedback,
    )
    return _progress_view(aggregator, progress)
