"""Test helpers shared by the test modules."""

import uuid
from datetime import datetime, timedelta

from assessment.core.security import create_access_token
from assessment.db.models import User

COURSE_ID = uuid.UUID("c0a1b2c3-d4e5-4f60-8a7b-9c8d7e6f5a4b")


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now = self.now + timedelta(**kwargs)
        return self.now


def auth_headers(user: User) -> dict:
    return {"Authorization": f"Bearer {create_access_token(str(user.id), user.role.value)}"}


def quiz_payload(now: datetime, **overrides) -> dict:
    """Two multiple-choice questions worth 5 points each, window open now."""
    payload = {
        "course_id": COURSE_ID,
        "title": "Capitals",
        "time_limit_minutes": 30,
        "attempts_allowed": 2,
        "start_date": now - timedelta(hours=1),
        "end_date": now + timedelta(days=7),
        "questions": [
            {
                "question_type": "multiple-choice",
                "text": "Capital of France?",
                "points": 5,
                "options": [
                    {"text": "Paris", "is_correct": True},
                    {"text": "Rome"},
                ],
            },
            {
                "question_type": "multiple-choice",
                "text": "Capital of Italy?",
                "points": 5,
                "options": [
                    {"text": "Madrid"},
                    {"text": "Rome", "is_correct": True},
                ],
            },
        ],
    }
    payload.update(overrides)
    return payload


def correct_option(question) -> str:
    return str(next(o.id for o in question.options if o.is_correct))


def wrong_option(question) -> str:
    return str(next(o.id for o in question.options if not o.is_correct))
