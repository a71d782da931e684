"""
SQLAlchemy-backed stores.

Each store wraps a request-scoped ``Session`` and commits inside the call, so a
security-relevant change is durable before the response is produced. Conditional
updates report their ``rowcount`` to decide which concurrent caller won.
"""

from datetime import datetime, timedelta
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy import and_, case, func, null
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from incident_api.core.exceptions import ConflictError
from incident_api.models import PasswordResetToken, RefreshToken, TokenBlacklist, User

logger = logging.getLogger(__name__)


class _SqlStore:
    def __init__(self, db: Session):
        self.db = db

    def _commit(self) -> None:
        try:
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise


class SqlUserStore(_SqlStore):
    def get_by_username(self, username: str) -> Optional[User]:
        if not username:
            return None
        return self.db.query(User).filter(func.lower(User.username) == username.lower()).first()

    def get_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        return self.db.query(User).filter(func.lower(User.email) == email.lower()).first()

    def get_by_id(self, user_id: UUID) -> Optional[User]:
        return self.db.query(User).filter(User.id == user_id).first()

    def add(self, user: User) -> User:
        self.db.add(user)
        try:
            self._commit()
        except IntegrityError:
            # Lost a race against a concurrent registration
            raise ConflictError("User", "Username or email is already registered")
        self.db.refresh(user)
        return user

    def update(self, user: User) -> User:
        self.db.add(user)
        self._commit()
        self.db.refresh(user)
        return user

    def exists_username(self, username: str) -> bool:
        return self.get_by_username(username) is not None

    def exists_email(self, email: str, exclude_user_id: Optional[UUID] = None) -> bool:
        query = self.db.query(User.id).filter(func.lower(User.email) == email.lower())
        if exclude_user_id is not None:
            query = query.filter(User.id != exclude_user_id)
        return query.first() is not None

    def register_failed_attempt(
        self,
        user_id: UUID,
        now: datetime,
        max_attempts: int,
        lockout_duration: timedelta,
    ) -> tuple[int, Optional[datetime], bool]:
        stale_lock = and_(User.locked_until.isnot(None), User.locked_until <= now)
        try:
            # Increment in the database; a stale lock restarts the window
            self.db.query(User).filter(User.id == user_id).update(
                {
                    User.failed_attempts: case((stale_lock, 1), else_=User.failed_attempts + 1),
                    User.locked_until: case((stale_lock, null()), else_=User.locked_until),
                },
                synchronize_session=False,
            )
            newly_locked = self.db.query(User).filter(
                User.id == user_id,
                User.failed_attempts >= max_attempts,
                User.locked_until.is_(None),
            ).update(
                {User.locked_until: now + lockout_duration},
                synchronize_session=False,
            ) == 1
            attempts, locked_until = self.db.query(
                User.failed_attempts, User.locked_until
            ).filter(User.id == user_id).one()
            self.db.commit()
        except SQLAlchemyError:
            self.db.rollback()
            raise
        return attempts, locked_until, newly_locked

    def register_successful_login(self, user_id: UUID, now: datetime) -> None:
        self.db.query(User).filter(User.id == user_id).update(
            {"failed_attempts": 0, "locked_until": None, "last_access": now},
            synchronize_session=False,
        )
        self._commit()

    def extend_lockout(self, user_id: UUID, locked_until: datetime) -> None:
        self.db.query(User).filter(User.id == user_id).update(
            {"locked_until": locked_until},
            synchronize_session=False,
        )
        self._commit()


class SqlRefreshTokenStore(_SqlStore):
    def get_by_token(self, token_hash: str) -> Optional[RefreshToken]:
        return self.db.query(RefreshToken).filter(RefreshToken.token_hash == token_hash).first()

    def get_active_by_user(self, user_id: UUID, now: datetime) -> list[RefreshToken]:
        return self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked == False,
            RefreshToken.expires_at > now,
        ).order_by(RefreshToken.created_at).all()

    def add(self, token: RefreshToken) -> RefreshToken:
        self.db.add(token)
        self._commit()
        return token

    def update(self, token: RefreshToken) -> RefreshToken:
        self.db.add(token)
        self._commit()
        return token

    def revoke_if_active(
        self,
        token_id: UUID,
        now: datetime,
        replaced_by_id: Optional[UUID] = None,
    ) -> bool:
        rows = self.db.query(RefreshToken).filter(
            RefreshToken.id == token_id,
            RefreshToken.is_revoked == False,
            RefreshToken.expires_at > now,
        ).update(
            {"is_revoked": True, "revoked_at": now, "replaced_by_id": replaced_by_id},
            synchronize_session=False,
        )
        self._commit()
        return rows == 1

    def revoke_all_by_user(self, user_id: UUID, now: datetime, except_id: Optional[UUID] = None) -> int:
        query = self.db.query(RefreshToken).filter(
            RefreshToken.user_id == user_id,
            RefreshToken.is_revoked == False,
        )
        if except_id is not None:
            query = query.filter(RefreshToken.id != except_id)
        rows = query.update({"is_revoked": True, "revoked_at": now}, synchronize_session=False)
        self._commit()
        return rows

    def revoke_by_token(self, token_hash: str, now: datetime, user_id: Optional[UUID] = None) -> bool:
        query = self.db.query(RefreshToken).filter(
            RefreshToken.token_hash == token_hash,
            RefreshToken.is_revoked == False,
        )
        if user_id is not None:
            query = query.filter(RefreshToken.user_id == user_id)
        rows = query.update({"is_revoked": True, "revoked_at": now}, synchronize_session=False)
        self._commit()
        return rows > 0

    def remove_expired(self, now: datetime) -> int:
        rows = self.db.query(RefreshToken).filter(
            RefreshToken.expires_at <= now
        ).delete(synchronize_session=False)
        self._commit()
        return rows


class SqlTokenBlacklistStore(_SqlStore):
    def add_token(
        self,
        user_id: UUID,
        token_hash: str,
        expires_at: datetime,
        reason: str = "Manual revocation",
    ) -> None:
        if self.db.query(TokenBlacklist.id).filter(TokenBlacklist.token_hash == token_hash).first():
            return
        self.db.add(TokenBlacklist(
            user_id=user_id,
            token_hash=token_hash,
            expires_at=expires_at,
            reason=reason,
        ))
        self._commit()

    def is_blacklisted(self, token_hash: str, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        return self.db.query(TokenBlacklist.id).filter(
            TokenBlacklist.token_hash == token_hash,
            TokenBlacklist.expires_at > now,
        ).first() is not None

    def clean_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        rows = self.db.query(TokenBlacklist).filter(
            TokenBlacklist.expires_at <= now
        ).delete(synchronize_session=False)
        self._commit()
        if rows:
            logger.info(f"Removed {rows} expired blacklist entries")
        return rows

    def remove_user_tokens(self, user_id: UUID) -> int:
        rows = self.db.query(TokenBlacklist).filter(
            TokenBlacklist.user_id == user_id
        ).delete(synchronize_session=False)
        self._commit()
        return rows


class SqlPasswordResetTokenStore(_SqlStore):
    def add(self, token: PasswordResetToken) -> PasswordResetToken:
        self.db.add(token)
        self._commit()
        return token

    def get_by_token(self, token: str) -> Optional[PasswordResetToken]:
        return self.db.query(PasswordResetToken).filter(PasswordResetToken.token == token).first()

    def mark_used(self, token_id: UUID) -> bool:
        rows = self.db.query(PasswordResetToken).filter(
            PasswordResetToken.id == token_id,
            PasswordResetToken.is_used == False,
        ).update({"is_used": True}, synchronize_session=False)
        self._commit()
        return rows == 1
