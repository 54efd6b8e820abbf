"""Progress / dashboard schemas."""

import uuid
from datetime import datetime

from pydantic import Field

from assessment.db.models import AchievementKindEnum, AssignmentStatusEnum, ItemStatusEnum
from assessment.schemas.common import ApiModel, Pagination


# ── Input ─────────────────────────────────────────────────────────────────────


class MaterialProgressUpdate(ApiModel):
    """PUT /api/progress/{courseId}/materials/{materialId}"""

    percentage: int = Field(ge=0, le=100)
    time_spent: int = Field(0, ge=0)


class AssignmentProgressUpdate(ApiModel):
    """PUT /api/progress/{courseId}/assignments/{assignmentId}"""

    status: AssignmentStatusEnum
    grade: str | None = None
    score: float | None = None
    max_score: float | None = None
    feedback: str | None = None


# ── Output ────────────────────────────────────────────────────────────────────


class MaterialProgressRead(ApiModel):
    material_id: uuid.UUID
    status: ItemStatusEnum
    percentage: int
    time_spent: int
    last_accessed_at: datetime | None = None
    completed_at: datetime | None = None


class AssignmentProgressRead(ApiModel):
    assignment_id: uuid.UUID
    status: AssignmentStatusEnum
    submitted_at: datetime | None = None
    grade: str | None = None
    score: float | None = None
    max_score: float | None = None
    feedback: str | None = None


class QuizProgressRead(ApiModel):
    quiz_id: uuid.UUID
    attempts: int
    best_score: int
    best_percentage: int
    last_attempt_at: datetime | None = None
    status: ItemStatusEnum


class AchievementRead(ApiModel):
    code: str
    kind: AchievementKindEnum
    name: str
    description: str | None = None
    icon: str | None = None
    points: int
    earned_at: datetime


class QuizSummary(ApiModel):
    total: int
    attempted: int
    completed: int
    average_percentage: int


class ProgressRead(ApiModel):
    id: uuid.UUID
    student_id: uuid.UUID
    course_id: uuid.UUID
    overall_progress: int
    total_time_spent: int
    streak: int
    last_activity_at: datetime | None = None
    materials: list[MaterialProgressRead] = []
    assignments: list[AssignmentProgressRead] = []
    quizzes: list[QuizProgressRead] = []
    badges: list[AchievementRead] = []
    achievements: list[AchievementRead] = []
    quiz_summary: QuizSummary


class CourseOverview(ApiModel):
    course_id: uuid.UUID
    overall_progress: int
    total_time_spent: int
    streak: int
    last_activity_at: datetime | None = None
    quizzes_completed: int
    achievements: int


class UpcomingDeadline(ApiModel):
    quiz_id: uuid.UUID
    course_id: uuid.UUID
    title: str
    start_date: datetime
    end_date: datetime


class DashboardRead(ApiModel):
    """GET /api/progress/dashboard"""

    courses: list[CourseOverview]
    total_courses: int
    average_progress: int
    total_time_spent: int
    longest_streak: int
    recent_achievements: list[AchievementRead] = []
    upcoming_deadlines: list[UpcomingDeadline] = []


class StudentProgressRow(ApiModel):
    student_id: uuid.UUID
    student_name: str
    student_email: str
    overall_progress: int
    total_time_spent: int
    streak: int
    last_activity_at: datetime | None = None


class CourseProgressPage(ApiModel):
    """GET /api/progress/{courseId}/all"""

    progress: list[StudentProgressRow]
    pagination: Pagination
