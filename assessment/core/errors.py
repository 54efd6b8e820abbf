"""Domain exceptions raised by the assessment services.

Each exception carries the HTTP status and the stable ``error_code`` that
``assessment.main`` renders into the ``ErrorResponse`` envelope, so the
services stay free of FastAPI imports.
"""

from typing import Any


class AssessmentError(Exception):
    """Base class for expected, locally-detected failures."""

    status_code = 400
    error_code = "assessment_error"

    def __init__(self, message: str, details: dict[str, Any] | None = None):
        super().__init__(message)
        self.message = message
        self.details = details


class ValidationError(AssessmentError):
    status_code = 422
    error_code = "validation_error"


class NotFoundError(AssessmentError):
    status_code = 404
    error_code = "not_found"


class UnauthorizedError(AssessmentError):
    """Caller is neither the owner of the resource nor staff."""

    status_code = 403
    error_code = "unauthorized"


class QuizWindowClosed(AssessmentError):
    status_code = 409
    error_code = "quiz_window_closed"


class AttemptLimitExceeded(AssessmentError):
    status_code = 409
    error_code = "attempt_limit_exceeded"


class AttemptAlreadyInProgress(AssessmentError):
    status_code = 409
    error_code = "attempt_in_progress"


class AlreadySubmitted(AssessmentError):
    """The attempt is terminal; ``attempt`` holds the stored, unchanged result."""

    status_code = 409
    error_code = "already_submitted"

    def __init__(self, message: str, attempt: Any = None, details: dict[str, Any] | None = None):
        super().__init__(message, details)
        self.attempt = attempt


class QuizLocked(AssessmentError):
    """Quiz definition can no longer change because attempts exist."""

    status_code = 409
    error_code = "quiz_locked"
