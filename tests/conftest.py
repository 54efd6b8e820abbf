"""Shared pytest fixtures for the assessment engine tests."""

from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from assessment.api.deps import get_clock
from assessment.core.security import hash_password
from assessment.db.models import RoleEnum, User
from assessment.db.session import Base, get_db
from assessment.main import app
from assessment.schemas.quiz import QuizCreate
from assessment.services.catalog import QuizCatalog
from assessment.services.notifications import Notifier
from assessment.services.rate_limiter import require_attempt_rate_limit
from helpers import FrozenClock, quiz_payload

SQLALCHEMY_TEST_URL = "sqlite:///:memory:"


@pytest.fixture(autouse=True)
def mock_celery_tasks():
    """Mock notification tasks so no test needs a broker."""
    deliver = MagicMock()
    deliver.delay = MagicMock(return_value=MagicMock(id="fake-task-id"))
    notify = MagicMock()
    notify.delay = MagicMock(return_value=MagicMock(id="fake-task-id"))
    with patch("assessment.services.notifications.deliver_notification", deliver), patch(
        "assessment.services.notifications.notify_course", notify
    ):
        yield {"deliver_notification": deliver, "notify_course": notify}


@pytest.fixture(scope="function")
def engine():
    engine = create_engine(
        SQLALCHEMY_TEST_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,  # keep the in-memory database alive across sessions
        echo=False,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    engine.dispose()


@pytest.fixture(scope="function")
def db(engine):
    """Fresh DB session on a fresh database for each test."""
    session = sessionmaker(bind=engine, autocommit=False, autoflush=False)()
    try:
        yield session
    finally:
        session.rollback()
        session.close()


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 3, 2, 9, 0, tzinfo=timezone.utc))


@pytest.fixture(scope="function")
def client(db: Session, clock: FrozenClock):
    """FastAPI test client with overridden DB, clock and rate limiter."""

    def override_get_db():
        try:
            yield db
        finally:
            pass

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_clock] = lambda: clock
    app.dependency_overrides[require_attempt_rate_limit] = lambda: None

    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


# ── Users ─────────────────────────────────────────────────────────────────────


def _make_user(db: Session, email: str, role: RoleEnum, full_name: str) -> User:
    user = User(
        email=email,
        hashed_password=hash_password("secret123"),
        full_name=full_name,
        role=role,
    )
    db.add(user)
    db.commit()
    db.refresh(user)
    return user


@pytest.fixture
def student(db: Session) -> User:
    return _make_user(db, "student@ex.com", RoleEnum.STUDENT, "Sam Student")


@pytest.fixture
def other_student(db: Session) -> User:
    return _make_user(db, "other@ex.com", RoleEnum.STUDENT, "Olive Other")


@pytest.fixture
def instructor(db: Session) -> User:
    return _make_user(db, "teacher@ex.com", RoleEnum.INSTRUCTOR, "Ivy Instructor")


@pytest.fixture
def admin(db: Session) -> User:
    return _make_user(db, "admin@ex.com", RoleEnum.ADMIN, "Ada Admin")


# ── Quizzes ───────────────────────────────────────────────────────────────────


@pytest.fixture
def make_quiz(db: Session, clock: FrozenClock, instructor: User):
    """Factory: persist a quiz through the catalog with notifications off."""

    def _make(**overrides):
        catalog = QuizCatalog(db, clock=clock, notifier=Notifier(enabled=False))
        return catalog.create_quiz(QuizCreate(**quiz_payload(clock(), **overrides)), instructor)

    return _make
