"""
Persistence contracts used by the auth service and the blacklist middleware.

Every method is a single unit of work: implementations persist their changes
before returning. The ``register_failed_attempt``, ``revoke_if_active`` and
``mark_used`` operations are atomic read-modify-writes so that concurrent
requests observe a consistent counter, rotate a refresh token at most once and
consume a reset token at most once.
"""

from datetime import datetime, timedelta
from typing import Optional, Protocol
from uuid import UUID

from incident_api.models import PasswordResetToken, RefreshToken, User


class UserStore(Protocol):
    def get_by_username(self, username: str) -> Optional[User]: ...

    def get_by_email(self, email: str) -> Optional[User]: ...

    def get_by_id(self, user_id: UUID) -> Optional[User]: ...

    def add(self, user: User) -> User: ...

    def update(self, user: User) -> User: ...

    def exists_username(self, username: str) -> bool: ...

    def exists_email(self, email: str, exclude_user_id: Optional[UUID] = None) -> bool: ...

    def register_failed_attempt(
        self,
        user_id: UUID,
        now: datetime,
        max_attempts: int,
        lockout_duration: timedelta,
    ) -> tuple[int, Optional[datetime], bool]:
        """
        Atomically count a failed login.

        A stale (expired) lock restarts the counter at 1. When the counter
        reaches ``max_attempts`` and no lock is active, ``locked_until`` is set
        to ``now + lockout_duration``. Returns (failed_attempts, locked_until,
        newly_locked) where ``newly_locked`` is True only for the call that set
        the lock.
        """
        ...

    def register_successful_login(self, user_id: UUID, now: datetime) -> None:
        """Reset the counter, clear any lock and record ``last_access``."""
        ...

    def extend_lockout(self, user_id: UUID, locked_until: datetime) -> None: ...


class RefreshTokenStore(Protocol):
    def get_by_token(self, token_hash: str) -> Optional[RefreshToken]: ...

    def get_active_by_user(self, user_id: UUID, now: datetime) -> list[RefreshToken]: ...

    def add(self, token: RefreshToken) -> RefreshToken: ...

    def update(self, token: RefreshToken) -> RefreshToken: ...

    def revoke_if_active(
        self,
        token_id: UUID,
        now: datetime,
        replaced_by_id: Optional[UUID] = None,
    ) -> bool:
        """Revoke the token only if it is still unrevoked and unexpired. True if this call won."""
        ...

    def revoke_all_by_user(self, user_id: UUID, now: datetime, except_id: Optional[UUID] = None) -> int: ...

    def revoke_by_token(self, token_hash: str, now: datetime, user_id: Optional[UUID] = None) -> bool: ...

    def remove_expired(self, now: datetime) -> int: ...


class TokenBlacklistStore(Protocol):
    def add_token(
        self,
        user_id: UUID,
        token_hash: str,
        expires_at: datetime,
        reason: str = "Manual revocation",
    ) -> None: ...

    def is_blacklisted(self, token_hash: str, now: Optional[datetime] = None) -> bool: ...

    def clean_expired(self, now: Optional[datetime] = None) -> int: ...

    def remove_user_tokens(self, user_id: UUID) -> int: ...


class PasswordResetTokenStore(Protocol):
    def add(self, token: PasswordResetToken) -> PasswordResetToken: ...

    def get_by_token(self, token: str) -> Optional[PasswordResetToken]: ...

    def mark_used(self, token_id: UUID) -> bool:
        """Flip ``is_used`` from false to true. False if another caller already did."""
        ...
