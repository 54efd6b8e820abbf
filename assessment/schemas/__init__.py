"""Pydantic schemas, re-exported for convenience."""

from assessment.schemas.common import ApiModel, ErrorResponse, Pagination, SuccessResponse  # noqa: F401
from assessment.schemas.user import (  # noqa: F401
    AuthResponse,
    UserCreate,
    UserLogin,
    UserRead,
)
from assessment.schemas.quiz import (  # noqa: F401
    QuestionCreate,
    QuizCreate,
    QuizListStatus,
    QuizRead,
    QuizUpdate,
)
from assessment.schemas.attempt import (  # noqa: F401
    AnswerSubmit,
    AttemptDetailRead,
    AttemptRead,
    AttemptResult,
    AttemptStartResponse,
    AttemptSubmit,
)
from assessment.schemas.progress import (  # noqa: F401
    DashboardRead,
    ProgressRead,
)
