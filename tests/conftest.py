"""
Pytest configuration and fixtures.
"""
from typing import List, Optional
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from portfolio_guard.core.database import Base, get_db
from portfolio_guard.main import app

# Import all models to ensure they register with Base.metadata
from portfolio_guard.models import (  # noqa: F401
    ApiKey,
    ApiKeyLog,
    TurnstileAnalytics,
    TurnstileLog,
    TurnstileSiteKey,
    User,
)
from portfolio_guard.services.auth_service import AuthService
from portfolio_guard.services.verification import (
    VerificationOutcome,
    VerificationProvider,
    VerificationResult,
    get_verification_provider,
)

# Use file-based SQLite for testing (more reliable than in-memory)
TEST_DATABASE_URL = "sqlite:///./test_portfolio_guard.db"

test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    pool_pre_ping=False,
)

TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, expire_on_commit=False, bind=test_engine)

TEST_ORIGIN = "http://testserver"
DEFAULT_PASSWORD = "correct-horse-battery"


class FakeVerificationProvider(VerificationProvider):
    """Provider answering with a fixed outcome and recording every call."""

    name = "fake"

    def __init__(self, outcome: VerificationOutcome = VerificationOutcome.VERIFIED, error_codes: Optional[List[str]] = None):
        self.outcome = outcome
        self.error_codes = error_codes or []
        self.calls = []

    async def siteverify(self, secret, token, remote_ip=None, idempotency_key=None):
        self.calls.append(
            {"secret": secret, "token": token, "remote_ip": remote_ip, "idempotency_key": idempotency_key}
        )
        return VerificationResult(
            outcome=self.outcome,
            error_codes=list(self.error_codes),
            challenge_ts="2026-01-01T00:00:00Z",
            hostname="testserver",
        )


@pytest.fixture(scope="session", autouse=True)
def setup_test_database():
    """Create all tables once per session and drop them afterwards."""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture(scope="function", autouse=True)
def clean_tables():
    """Wipe every table after each test."""
    yield
    with test_engine.begin() as connection:
        for table in reversed(Base.metadata.sorted_tables):
            connection.execute(table.delete())


@pytest.fixture(scope="function", autouse=True)
def disable_rate_limiting():
    """Rate limiting is tested explicitly; keep it out of the way elsewhere."""
    with patch("portfolio_guard.core.config.settings.RATE_LIMIT_ENABLED", False):
        yield


@pytest.fixture(scope="function", autouse=True)
def fast_bcrypt():
    """Minimum bcrypt cost keeps the login tests fast."""
    with patch("portfolio_guard.core.config.settings.BCRYPT_ROUNDS", 4):
        yield


@pytest.fixture(scope="function")
def fake_provider():
    return FakeVerificationProvider()


@pytest.fixture(scope="function")
def client(fake_provider):
    """
    Test client with the database and the verification provider overridden.

    Requests carry a same-origin Origin header; redirects are not followed so
    tests can assert on them.
    """
    def override_get_db():
        db = TestingSessionLocal()
        try:
            yield db
        finally:
            db.close()

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_verification_provider] = lambda: fake_provider

    yield TestClient(app, headers={"Origin": TEST_ORIGIN}, follow_redirects=False)

    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def db_session():
    """Database session for tests that need direct DB access."""
    db = TestingSessionLocal()
    try:
        yield db
        db.rollback()
    finally:
        db.close()


@pytest.fixture(scope="function")
def make_user(db_session):
    """Factory provisioning a user with DEFAULT_PASSWORD unless told otherwise."""
    def _make_user(username: str, role: str = "user", password: str = DEFAULT_PASSWORD, is_active: bool = True):
        return AuthService(db_session).create_user(username=username, password=password, role=role, is_active=is_active)

    return _make_user


@pytest.fixture(scope="function")
def admin_user(make_user):
    return make_user("admin", role="admin")


@pytest.fixture(scope="function")
def manager_user(make_user):
    return make_user("manager", role="manager")


@pytest.fixture(scope="function")
def basic_user(make_user):
    return make_user("viewer", role="user")


def login(client: TestClient, username: str, password: str = DEFAULT_PASSWORD):
    """Log in through the API; the session cookie lands in the client's cookie jar."""
    return client.post("/api/auth/login", data={"username": username, "password": password})


@pytest.fixture(scope="function")
def admin_client(client, admin_user):
    response = login(client, admin_user.username)
    assert response.status_code == 200
    return client


@pytest.fixture(scope="function")
def manager_client(client, manager_user):
    response = login(client, manager_user.username)
    assert response.status_code == 200
    return client
