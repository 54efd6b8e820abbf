"""FastAPI application entry point."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.trustedhost import TrustedHostMiddleware
from fastapi.responses import JSONResponse

from assessment.config import settings
from assessment.core.errors import AssessmentError
from assessment.schemas.common import ErrorResponse
from assessment.api import (
    attempts_router,
    health_router,
    progress_router,
    quiz_router,
    users_router,
)

logging.basicConfig(
    level=logging.DEBUG if settings.DEBUG else logging.INFO,
    format="%(asctime)s  %(name)-25s  %(levelname)-8s  %(message)s",
)
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    logger.info("Assessment engine starting (env=%s)", settings.ENV)
    yield
    logger.info("Assessment engine shut down")


app = FastAPI(
    title="Assessment Engine API",
    description="Timed quizzes, attempts, scoring and course progress",
    version="0.1.0",
    lifespan=lifespan,
)

# ── Middleware ─────────────────────────────────────────────────────────────────

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.CORS_ORIGINS,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.ALLOWED_HOSTS)

# ── Error envelope ────────────────────────────────────────────────────────────


def _error(status_code: int, error_code: str, message: str, details: dict | None = None) -> JSONResponse:
    body = ErrorResponse(error_code=error_code, message=message, details=details)
    return JSONResponse(status_code=status_code, content=jsonable_encoder(body))


@app.exception_handler(AssessmentError)
async def assessment_error_handler(request: Request, exc: AssessmentError):
    logger.info(
        "%s %s rejected: %s (%s)", request.method, request.url.path, exc.error_code, exc.message
    )
    return _error(exc.status_code, exc.error_code, exc.message, exc.details)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    errors = [
        {
            "field": ".".join(str(part) for part in err.get("loc", ()) if part != "body"),
            "message": err.get("msg", ""),
            "type": err.get("type", ""),
        }
        for err in exc.errors()
    ]
    return _error(422, "validation_error", "Request validation failed", {"errors": errors})


@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception("Unhandled error on %s %s", request.method, request.url.path)
    return _error(500, "internal_error", "An unexpected error occurred")


# ── Routers ───────────────────────────────────────────────────────────────────

app.include_router(health_router, tags=["Health"])
app.include_router(users_router, prefix="/api/users", tags=["Users"])
app.include_router(quiz_router, prefix="/api/quizzes", tags=["Quizzes"])
app.include_router(attempts_router, prefix="/api/attempts", tags=["Attempts"])
app.include_router(progress_router, prefix="/api/progress", tags=["Progress"])


@app.get("/")
async def root():
    return {
        "name": "Assessment Engine API",
        "version": "0.1.0",
        "docs": "/docs",
        "health": "/health",
    }
