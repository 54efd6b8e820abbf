"""Unit tests for user API endpoints."""

from fastapi.testclient import TestClient


def _register(client: TestClient, email: str, password: str = "pwd12345", role: str = "student"):
    return client.post(
        "/api/users/register",
        json={
            "email": email,
            "password": password,
            "full_name": "Test User",
            "role": role,
        },
    )


def test_register_user(client: TestClient):
    """Test user registration."""
    response = _register(client, "u1@ex.com")
    assert response.status_code == 201
    data = response.json()
    assert data["token_type"] == "bearer"
    assert data["access_token"]
    assert data["user"]["email"] == "u1@ex.com"
    assert data["user"]["role"] == "student"


def test_register_duplicate_email(client: TestClient):
    """Test registering with duplicate email."""
    _register(client, "u2@ex.com")

    response = _register(client, "u2@ex.com", password="other-pwd")
    assert response.status_code == 409
    assert "already registered" in response.json()["detail"].lower()


def test_login_user(client: TestClient):
    """Test user login."""
    _register(client, "u3@ex.com", role="instructor")

    response = client.post(
        "/api/users/login",
        json={"email": "u3@ex.com", "password": "pwd12345"},
    )
    assert response.status_code == 200
    data = response.json()
    assert "access_token" in data
    assert data["user"]["role"] == "instructor"


def test_login_invalid_credentials(client: TestClient):
    """Test login with invalid credentials."""
    response = client.post(
        "/api/users/login",
        json={"email": "nonexistent@example.com", "password": "wrongpassword"},
    )
    assert response.status_code == 401


def test_get_current_user(client: TestClient):
    """Token from registration authenticates /me."""
    token = _register(client, "u4@ex.com").json()["access_token"]

    response = client.get("/api/users/me", headers={"Authorization": f"Bearer {token}"})
    assert response.status_code == 200
    assert response.json()["email"] == "u4@ex.com"


def test_unauthorized_access(client: TestClient):
    """Test accessing protected endpoint without token."""
    response = client.get("/api/users/me")
    assert response.status_code == 401


def test_garbage_token_rejected(client: TestClient):
    response = client.get("/api/users/me", headers={"Authorization": "Bearer not-a-jwt"})
    assert response.status_code == 401
