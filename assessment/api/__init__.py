"""API route package; imports all routers for main.py."""

from assessment.api.health import router as health_router  # noqa: F401
from assessment.api.users import router as users_router  # noqa: F401
from assessment.api.quiz import router as quiz_router  # noqa: F401
from assessment.api.attempts import router as attempts_router  # noqa: F401
from assessment.api.progress import router as progress_router  # noqa: F401
