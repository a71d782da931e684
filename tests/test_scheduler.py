"""Tests for the background token cleanup job."""

from datetime import datetime, timedelta
import uuid

from conftest import TestingSessionLocal
from incident_api.core.scheduler import cleanup_expired_tokens_job
from incident_api.core.security import hash_token
from incident_api.models import RefreshToken, TokenBlacklist, User


class TestTokenCleanupJob:
    def test_removes_only_expired_rows(self, db_session):
        now = datetime.utcnow()
        user = User(
            username="carol",
            email="carol@example.com",
            password_hash="x",
            first_name="Carol",
            last_name="White",
        )
        db_session.add(user)
        db_session.commit()

        db_session.add_all([
            TokenBlacklist(token_hash=hash_token("old-access"), user_id=user.id, expires_at=now - timedelta(hours=1)),
            TokenBlacklist(token_hash=hash_token("new-access"), user_id=user.id, expires_at=now + timedelta(hours=1)),
            RefreshToken(user_id=user.id, token_hash=hash_token("old-refresh"), expires_at=now - timedelta(days=1)),
            RefreshToken(user_id=user.id, token_hash=hash_token("new-refresh"), expires_at=now + timedelta(days=1)),
        ])
        db_session.commit()

        removed = cleanup_expired_tokens_job(TestingSessionLocal)

        assert removed == 2
        assert db_session.query(TokenBlacklist).count() == 1
        assert db_session.query(RefreshToken).count() == 1

    def test_failure_is_logged_not_raised(self, caplog):
        class BrokenSession:
            def query(self, *args, **kwargs):
                raise RuntimeError("connection refused")

            def close(self):
                pass

        assert cleanup_expired_tokens_job(BrokenSession) == 0
        assert any("Token cleanup failed" in r.getMessage() for r in caplog.records)
