"""
Tests for login, logout and session handling.
"""
import logging
from datetime import datetime, timedelta, timezone

import pytest
from fastapi import status

from conftest import DEFAULT_PASSWORD, login
from portfolio_guard.core.config import settings
from portfolio_guard.core.errors import ValidationError
from portfolio_guard.core.session import SessionManager
from portfolio_guard.services.auth_service import AuthService, hash_password, verify_password


def _set_cookie_header(response) -> str:
    return response.headers.get("set-cookie", "").lower()


def test_login_success_sets_session_cookie(client, admin_user):
    response = login(client, "admin")

    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["success"] is True
    assert data["user"]["username"] == "admin"
    assert data["user"]["role"] == "admin"
    assert "passwordHash" not in data["user"]

    cookie = _set_cookie_header(response)
    assert cookie.startswith(f"{settings.SESSION_COOKIE_NAME}=")
    assert "httponly" in cookie
    assert "samesite=strict" in cookie
    assert f"max-age={settings.SESSION_TTL_SECONDS}" in cookie


def test_login_updates_last_login(client, admin_user, db_session):
    assert admin_user.last_login is None
    login(client, "admin")
    db_session.refresh(admin_user)
    assert admin_user.last_login is not None


def test_login_wrong_password(client, admin_user, db_session):
    """Wrong password: 401, no cookie, last_login untouched."""
    response = login(client, "admin", password="not-the-password")

    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json() == {"success": False, "message": "Invalid username or password"}
    assert "set-cookie" not in response.headers

    db_session.refresh(admin_user)
    assert admin_user.last_login is None


def test_login_unknown_user_gets_same_answer(client):
    response = login(client, "nobody")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED
    assert response.json()["message"] == "Invalid username or password"


def test_overlong_password_gets_same_answer_for_known_and_unknown_users(client, admin_user):
    password = "x" * 100
    known = login(client, "admin", password=password)
    unknown = login(client, "nobody", password=password)

    assert known.status_code == unknown.status_code == status.HTTP_401_UNAUTHORIZED
    assert known.json() == unknown.json() == {"success": False, "message": "Invalid username or password"}


def test_login_inactive_user(client, make_user):
    make_user("retired", role="admin", is_active=False)
    response = login(client, "retired")
    assert response.status_code == status.HTTP_401_UNAUTHORIZED


def test_login_missing_fields(client):
    response = client.post("/api/auth/login", data={})
    assert response.status_code == status.HTTP_422_UNPROCESSABLE_ENTITY
    errors = response.json()["errors"]
    assert set(errors) == {"username", "password"}


def test_login_requires_same_origin(client, admin_user):
    response = client.post(
        "/api/auth/login",
        data={"username": "admin", "password": DEFAULT_PASSWORD},
        headers={"Origin": "https://evil.example"},
    )
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["success"] is False
    assert "set-cookie" not in response.headers


def test_me_returns_session_user(admin_client):
    response = admin_client.get("/api/auth/me")
    assert response.status_code == status.HTTP_200_OK
    data = response.json()
    assert data["user"]["username"] == "admin"
    assert data["user"]["lastLogin"] is not None
    assert "expiresAt" in data


def test_me_without_session_redirects_to_login(client):
    response = client.get("/api/auth/me")
    assert response.status_code == status.HTTP_303_SEE_OTHER
    assert response.headers["location"] == "/admin/login"


def test_expired_session_redirects_and_clears_cookie(client, admin_user):
    """A session that expired a millisecond ago is treated as no session."""
    issued_at = datetime.now(timezone.utc) - timedelta(seconds=settings.SESSION_TTL_SECONDS, milliseconds=1)
    value = SessionManager().create_session(admin_user, now=issued_at)

    client.cookies.set(settings.SESSION_COOKIE_NAME, value)
    response = client.get("/api/admin/api-keys")

    assert response.status_code == status.HTTP_303_SEE_OTHER
    assert response.headers["location"] == "/admin/login"
    cookie = _set_cookie_header(response)
    assert cookie.startswith(f"{settings.SESSION_COOKIE_NAME}=")
    assert "max-age=0" in cookie


def test_tampered_session_redirects(client, admin_user):
    value = SessionManager().create_session(admin_user)
    client.cookies.set(settings.SESSION_COOKIE_NAME, value[:-4] + "0000")
    response = client.get("/api/auth/me")
    assert response.status_code == status.HTTP_303_SEE_OTHER


def test_logout_clears_cookie(admin_client):
    response = admin_client.post("/api/auth/logout")
    assert response.status_code == status.HTTP_303_SEE_OTHER
    assert response.headers["location"] == "/admin/login"
    assert "max-age=0" in _set_cookie_header(response)


def test_login_page_and_unauthorized_page(client):
    assert client.get("/admin/login").status_code == status.HTTP_200_OK
    response = client.get("/admin/unauthorized")
    assert response.status_code == status.HTTP_403_FORBIDDEN
    assert response.json()["success"] is False


def test_password_hashing():
    hashed = hash_password("s3cret-value")
    assert hashed != "s3cret-value"
    assert verify_password("s3cret-value", hashed)
    assert not verify_password("other", hashed)
    assert not verify_password("s3cret-value", "not-a-bcrypt-hash")


def test_overlong_passwords_are_rejected_before_bcrypt(caplog):
    hashed = hash_password("x" * 72)
    assert verify_password("x" * 72, hashed)

    with caplog.at_level(logging.INFO, logger="portfolio_guard.services.auth_service"):
        assert not verify_password("x" * 73, hashed)
    assert "longer than 72 bytes" in caplog.text
    assert "malformed" not in caplog.text

    with pytest.raises(ValidationError):
        hash_password("\u00e9" * 37)


def test_create_user_rejects_duplicates_and_unknown_roles(db_session, admin_user):
    service = AuthService(db_session)
    with pytest.raises(ValidationError):
        service.create_user("admin", password="whatever")
    with pytest.raises(ValidationError):
        service.create_user("someone", password="whatever", role="owner")
    with pytest.raises(ValidationError):
        service.create_user("", password="whatever")
