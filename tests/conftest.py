"""Pytest configuration and fixtures."""

import os
from datetime import datetime, timedelta

# Set test environment variables BEFORE importing app modules
os.environ.setdefault("DATABASE_URL", "sqlite:///:memory:")
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-only-32chars")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")
os.environ.setdefault("SCHEDULER_ENABLED", "false")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from incident_api.core.config import Settings
from incident_api.core.database import Base
from incident_api.core.security import PasswordHasher, TokenCodec
from incident_api.api.deps import get_db, get_email_sender
from incident_api.services.auth_service import AuthService
from incident_api.services.email_service import LoggingEmailSender
from incident_api.stores.memory import (
    InMemoryPasswordResetTokenStore,
    InMemoryRefreshTokenStore,
    InMemoryTokenBlacklistStore,
    InMemoryUserStore,
)
from main import app

# Create in-memory SQLite database for testing
SQLALCHEMY_DATABASE_URL = "sqlite:///:memory:"

engine = create_engine(
    SQLALCHEMY_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)

TEST_PASSWORD = "Secur3!Pass"


class FakeClock:
    """Controllable replacement for datetime.utcnow."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime.utcnow().replace(microsecond=0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


class RecordingEmailSender(LoggingEmailSender):
    """Keeps the reset tokens it was asked to deliver."""

    def __init__(self):
        super().__init__()
        self.reset_tokens: list[str] = []

    def send_password_reset(self, to_email: str, username: str, reset_token: str) -> None:
        self.reset_tokens.append(reset_token)
        super().send_password_reset(to_email, username, reset_token)


def make_settings(**overrides) -> Settings:
    values = {
        "DATABASE_URL": SQLALCHEMY_DATABASE_URL,
        "SECRET_KEY": "test-secret-key-for-testing-only-32chars",
        "BCRYPT_ROUNDS": 4,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(scope="function")
def db_session():
    """Create a fresh database session for each test."""
    Base.metadata.create_all(bind=engine)
    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture
def email_sender():
    return RecordingEmailSender()


@pytest.fixture(scope="function")
def client(db_session, email_sender):
    """Create a test client with database override."""
    app.dependency_overrides[get_db] = lambda: db_session
    app.dependency_overrides[get_email_sender] = lambda: email_sender
    original_factory = app.state.session_factory
    app.state.session_factory = TestingSessionLocal
    with TestClient(app) as test_client:
        yield test_client
    app.state.session_factory = original_factory
    app.dependency_overrides.clear()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def test_settings():
    return make_settings()


@pytest.fixture
def build_service(clock, email_sender):
    """Factory for an AuthService on fresh in-memory stores."""

    def _build(**setting_overrides) -> AuthService:
        settings = make_settings(**setting_overrides)
        return AuthService(
            settings=settings,
            users=InMemoryUserStore(),
            refresh_tokens=InMemoryRefreshTokenStore(),
            blacklist=InMemoryTokenBlacklistStore(),
            reset_tokens=InMemoryPasswordResetTokenStore(),
            hasher=PasswordHasher.from_settings(settings),
            codec=TokenCodec(settings, clock=clock),
            email_sender=email_sender,
            clock=clock,
        )

    return _build


@pytest.fixture
def auth_service(build_service):
    return build_service()


@pytest.fixture
def test_user_data():
    """Sample registration data."""
    return {
        "username": "alice",
        "email": "alice@example.com",
        "password": TEST_PASSWORD,
        "confirm_password": TEST_PASSWORD,
        "first_name": "Alice",
        "last_name": "Smith",
    }


@pytest.fixture
def registered_user(client, test_user_data):
    """Register a user over HTTP and return the auth response body."""
    response = client.post("/api/auth/register", json=test_user_data)
    assert response.status_code == 201, response.text
    return response.json()


@pytest.fixture
def auth_headers(registered_user):
    return {"Authorization": f"Bearer {registered_user['access_token']}"}
