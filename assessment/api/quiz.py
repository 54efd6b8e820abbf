"""Quiz catalog and attempt lifecycle routes.

Instructors manage definitions; students start, autosave, submit and abandon
attempts. Questions are only handed to a student through ``/start`` so the
per-attempt ordering is the one they answer against.
"""

import logging
import uuid

from fastapi import APIRouter, Depends, Query, Request, Response, status
from sqlalchemy.orm import Session

from assessment.api.attempts import attempt_read, attempt_result, start_response
from assessment.api.deps import get_clock, get_current_user, require_staff
from assessment.core.clock import Clock
from assessment.core.errors import NotFoundError
from assessment.db.models import User
from assessment.db.session import get_db
from assessment.schemas.attempt import (
    AttemptRead,
    AttemptResult,
    AttemptStartRequest,
    AttemptStartResponse,
    AttemptSubmit,
    AutosaveRequest,
    AutosaveResponse,
)
from assessment.schemas.common import Pagination, SuccessResponse
from assessment.schemas.quiz import (
    QuizCreate,
    QuizListRead,
    QuizListStatus,
    QuizPublicRead,
    QuizRead,
    QuizSummaryRead,
    QuizUpdate,
)
from assessment.services.attempts import AttemptManager, deadline_for
from assessment.services.catalog import QuizCatalog
from assessment.services.rate_limiter import require_attempt_rate_limit

logger = logging.getLogger(__name__)
router = APIRouter()


def _quiz_view(quiz, caller: User) -> QuizRead | QuizPublicRead:
    if caller.is_staff:
        return QuizRead.model_validate(quiz)
    summary = QuizSummaryRead.model_validate(quiz).model_dump()
    return QuizPublicRead(
        **summary,
        instructions=quiz.instructions,
        question_count=len(quiz.questions),
        show_results=quiz.show_results,
        allow_backtracking=quiz.allow_backtracking,
    )


# ── Catalog ──────────────────────────────────────────────────────────────────


@router.post("", response_model=QuizRead, status_code=status.HTTP_201_CREATED)
def create_quiz(
    body: QuizCreate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Create a quiz for a course (instructor/admin)."""
    quiz = QuizCatalog(db, clock=clock).create_quiz(body, current_user)
    return QuizRead.model_validate(quiz)


@router.get("/course/{course_id}", response_model=QuizListRead)
def list_course_quizzes(
    course_id: uuid.UUID,
    status_filter: QuizListStatus | None = Query(None, alias="status"),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    rows, total = QuizCatalog(db, clock=clock).list_course_quizzes(course_id, status_filter, page, limit)
    return QuizListRead(
        quizzes=[QuizSummaryRead.model_validate(q) for q in rows],
        pagination=Pagination.build(page, limit, total),
    )


@router.get("/{quiz_id}", response_model=QuizRead | QuizPublicRead)
def get_quiz(
    quiz_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
):
    """Full definition for staff; an overview without questions for students."""
    quiz = QuizCatalog(db).get_quiz(quiz_id)
    if not quiz.is_active and not current_user.is_staff:
        raise NotFoundError("Quiz not found", details={"quiz_id": str(quiz_id)})
    return _quiz_view(quiz, current_user)


@router.put("/{quiz_id}", response_model=QuizRead)
def update_quiz(
    quiz_id: uuid.UUID,
    body: QuizUpdate,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    quiz = QuizCatalog(db, clock=clock).update_quiz(quiz_id, body, current_user)
    return QuizRead.model_validate(quiz)


@router.delete("/{quiz_id}", response_model=SuccessResponse)
def delete_quiz(
    quiz_id: uuid.UUID,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """Soft delete: the quiz is deactivated, never removed."""
    QuizCatalog(db, clock=clock).deactivate_quiz(quiz_id, current_user)
    return SuccessResponse(message="Quiz deleted successfully")


# ── Attempts ─────────────────────────────────────────────────────────────────


@router.post("/{quiz_id}/start", response_model=AttemptStartResponse, status_code=status.HTTP_201_CREATED)
def start_attempt(
    quiz_id: uuid.UUID,
    request: Request,
    response: Response,
    body: AttemptStartRequest | None = None,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _rl=Depends(require_attempt_rate_limit),
):
    """Start an attempt, or resume the caller's open one (200)."""
    result = AttemptManager(db, clock=clock).start_attempt(
        quiz_id,
        current_user,
        password=body.password if body else None,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )
    if not result.created:
        response.status_code = status.HTTP_200_OK
    return start_response(result, result.attempt.quiz)


@router.put("/{quiz_id}/attempts/{attempt_id}/answers", response_model=AutosaveResponse)
def autosave_answers(
    quiz_id: uuid.UUID,
    attempt_id: uuid.UUID,
    body: AutosaveRequest,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _rl=Depends(require_attempt_rate_limit),
):
    manager = AttemptManager(db, clock=clock)
    _check_attempt_quiz(manager, attempt_id, quiz_id, current_user)
    attempt = manager.save_answers(attempt_id, current_user, body.answers)
    return AutosaveResponse(
        attempt_id=attempt.id,
        saved=len(body.answers),
        expires_at=deadline_for(attempt, attempt.quiz),
    )


def _check_attempt_quiz(manager: AttemptManager, attempt_id: uuid.UUID, quiz_id: uuid.UUID, caller: User) -> None:
    attempt = manager.get_attempt(attempt_id, caller)
    if attempt.quiz_id != quiz_id:
        raise NotFoundError("Attempt not found for this quiz", details={"attempt_id": str(attempt_id)})


@router.post("/{quiz_id}/submit", response_model=AttemptResult, response_model_exclude_none=True)
def submit_attempt(
    quiz_id: uuid.UUID,
    body: AttemptSubmit,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
    _rl=Depends(require_attempt_rate_limit),
):
    """Close the attempt and score it synchronously."""
    manager = AttemptManager(db, clock=clock)
    if body.attempt_id is not None:
        attempt = manager.load_owned_attempt(body.attempt_id, current_user)
        if attempt.quiz_id != quiz_id:
            raise NotFoundError("Attempt not found for this quiz", details={"attempt_id": str(body.attempt_id)})
        attempt_id = attempt.id
    else:
        attempt_id = manager.resolve_attempt_for_submit(quiz_id, current_user).id

    attempt = manager.submit_attempt(attempt_id, current_user, body.answers)
    return attempt_result(attempt, attempt.quiz, current_user)


@router.post(
    "/{quiz_id}/attempts/{attempt_id}/abandon",
    response_model=AttemptResult,
    response_model_exclude_none=True,
)
def abandon_attempt(
    quiz_id: uuid.UUID,
    attempt_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    manager = AttemptManager(db, clock=clock)
    _check_attempt_quiz(manager, attempt_id, quiz_id, current_user)
    attempt = manager.abandon_attempt(attempt_id, current_user)
    return attempt_result(attempt, attempt.quiz, current_user)


@router.get("/{quiz_id}/attempts", response_model=list[AttemptRead], response_model_exclude_none=True)
def list_my_attempts(
    quiz_id: uuid.UUID,
    current_user: User = Depends(get_current_user),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    """The caller's own attempts, newest first."""
    manager = AttemptManager(db, clock=clock)
    attempts = manager.list_attempts(quiz_id, current_user)
    return [attempt_read(a, a.quiz, current_user) for a in attempts]


@router.get("/{quiz_id}/all-attempts", response_model=list[AttemptRead], response_model_exclude_none=True)
def list_all_attempts(
    quiz_id: uuid.UUID,
    current_user: User = Depends(require_staff),
    db: Session = Depends(get_db),
    clock: Clock = Depends(get_clock),
):
    attempts = AttemptManager(db, clock=clock).list_all_attempts(quiz_id, current_user)
    return [attempt_read(a, a.quiz, current_user) for a in attempts]
