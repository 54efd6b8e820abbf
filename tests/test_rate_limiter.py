"""Tests for the attempt rate limiter with Redis mocked out."""

from unittest.mock import MagicMock, patch

import pytest
import redis

from assessment.config import settings
from assessment.main import app
from assessment.services import rate_limiter
from helpers import auth_headers


@pytest.fixture
def limited_client(client):
    """Client with the real rate-limit dependency back in place."""
    app.dependency_overrides.pop(rate_limiter.require_attempt_rate_limit, None)
    return client


def test_check_allows_and_rejects():
    fake = MagicMock()
    with patch.object(rate_limiter, "_get_redis", return_value=fake):
        fake.eval.return_value = 1
        assert rate_limiter._check("rl:attempt:u:1") is True
        fake.eval.return_value = 0
        assert rate_limiter._check("rl:attempt:u:1") is False


def test_check_fails_open_on_redis_error():
    fake = MagicMock()
    fake.eval.side_effect = redis.ConnectionError("down")
    with patch.object(rate_limiter, "_get_redis", return_value=fake):
        assert rate_limiter._check("rl:attempt:u:1") is True


def test_disabled_when_rpm_is_zero(monkeypatch):
    monkeypatch.setattr(settings, "RATE_LIMIT_ATTEMPT_RPM", 0)
    with patch.object(rate_limiter, "_get_redis") as get_redis:
        assert rate_limiter._check("rl:attempt:u:1") is True
        get_redis.assert_not_called()


def test_rejected_start_returns_429(limited_client, make_quiz, student):
    quiz = make_quiz()
    fake = MagicMock()
    fake.eval.return_value = 0
    with patch.object(rate_limiter, "_get_redis", return_value=fake):
        response = limited_client.post(f"/api/quizzes/{quiz.id}/start", headers=auth_headers(student))
    assert response.status_code == 429
    assert fake.eval.call_args.args[2] == f"rl:attempt:u:{student.id}"
