"""
Concurrent requests against the relational stores.

Each worker thread gets its own Session on a file-backed SQLite database, as
it would with one Session per request, so only the database serialises them.
"""

import threading

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker

from conftest import RecordingEmailSender, make_settings
from incident_api.core.database import Base
from incident_api.core.exceptions import AccountLockedError, InvalidCredentialsError, InvalidTokenError
from incident_api.core.security import PasswordHasher, TokenCodec, hash_token
from incident_api.models import RefreshToken, User
from incident_api.schemas.auth import RegisterRequest
from incident_api.services.auth_service import AuthService
from incident_api.stores.sql import (
    SqlPasswordResetTokenStore,
    SqlRefreshTokenStore,
    SqlTokenBlacklistStore,
    SqlUserStore,
)

WRONG_PASSWORD = "Wrong!Pass1"


@pytest.fixture
def file_session_factory(tmp_path):
    engine = create_engine(
        f"sqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
        pool_size=20,
    )
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(autocommit=False, autoflush=False, bind=engine)
    engine.dispose()


@pytest.fixture
def make_service(file_session_factory):
    """Builds an AuthService on a fresh Session; every session is closed at teardown."""
    sessions = []
    email_sender = RecordingEmailSender()

    def _make(**setting_overrides) -> AuthService:
        settings = make_settings(**setting_overrides)
        db = file_session_factory()
        sessions.append(db)
        return AuthService(
            settings=settings,
            users=SqlUserStore(db),
            refresh_tokens=SqlRefreshTokenStore(db),
            blacklist=SqlTokenBlacklistStore(db),
            reset_tokens=SqlPasswordResetTokenStore(db),
            hasher=PasswordHasher.from_settings(settings),
            codec=TokenCodec(settings),
            email_sender=email_sender,
        )

    _make.email_sender = email_sender
    yield _make
    for db in sessions:
        db.close()


def register(service, username="alice"):
    return service.register(RegisterRequest(
        username=username,
        email=f"{username}@example.com",
        password="Secur3!Pass",
        confirm_password="Secur3!Pass",
        first_name="Alice",
        last_name="Smith",
    ))


def run_concurrently(count, target):
    """Start ``count`` threads that call ``target(service_index)`` at the same moment."""
    barrier = threading.Barrier(count)
    outcomes = []
    lock = threading.Lock()

    def worker(index):
        barrier.wait()
        try:
            outcome = target(index)
        except Exception as e:
            outcome = e
        with lock:
            outcomes.append(outcome)

    threads = [threading.Thread(target=worker, args=(i,)) for i in range(count)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    return outcomes


class TestConcurrentRefresh:
    def test_same_token_rotates_once(self, make_service, file_session_factory):
        first = register(make_service())
        services = [make_service() for _ in range(8)]

        outcomes = run_concurrently(8, lambda i: services[i].refresh(first.refresh_token))

        winners = [o for o in outcomes if not isinstance(o, Exception)]
        losers = [o for o in outcomes if isinstance(o, Exception)]
        assert len(winners) == 1
        assert len(losers) == 7
        assert all(isinstance(e, InvalidTokenError) for e in losers)

        db = file_session_factory()
        try:
            active = db.query(RefreshToken).filter(RefreshToken.is_revoked == False).all()
            consumed = db.query(RefreshToken).filter(
                RefreshToken.token_hash == hash_token(first.refresh_token)
            ).one()
        finally:
            db.close()
        assert [t.token_hash for t in active] == [hash_token(winners[0].refresh_token)]
        assert consumed.replaced_by_id == active[0].id


class TestConcurrentFailedLogins:
    def test_every_failure_is_counted(self, make_service, file_session_factory):
        registered = register(make_service(), username="bob")
        services = [make_service(MAX_FAILED_LOGIN_ATTEMPTS=100) for _ in range(10)]

        outcomes = run_concurrently(10, lambda i: services[i].login("bob", WRONG_PASSWORD))

        assert all(isinstance(o, InvalidCredentialsError) for o in outcomes)
        db = file_session_factory()
        try:
            user = db.query(User).filter(User.id == registered.user.id).one()
        finally:
            db.close()
        assert user.failed_attempts == 10
        assert user.locked_until is None

    def test_lock_notification_sent_once(self, make_service):
        register(make_service(), username="bob")
        services = [make_service(MAX_FAILED_LOGIN_ATTEMPTS=3) for _ in range(8)]

        outcomes = run_concurrently(8, lambda i: services[i].login("bob", WRONG_PASSWORD))

        assert all(isinstance(o, (InvalidCredentialsError, AccountLockedError)) for o in outcomes)
        assert any(isinstance(o, AccountLockedError) for o in outcomes)
        subjects = [subject for _, subject in make_service.email_sender.sent]
        assert subjects.count("Your account has been temporarily locked") == 1
