"""
Thread-safe in-process stores.

Used by the service-level tests and handy for local experiments. Each store
guards its dictionaries with a ``threading.Lock`` so the conditional updates
behave like their SQL counterparts under concurrent callers.
"""

import threading
from datetime import datetime, timedelta
from typing import Optional
from uuid import UUID, uuid4

from incident_api.models import PasswordResetToken, RefreshToken, TokenBlacklist, User


class InMemoryUserStore:
    def __init__(self):
        self._users: dict[UUID, User] = {}
        self._lock = threading.Lock()

    def get_by_username(self, username: str) -> Optional[User]:
        if not username:
            return None
        wanted = username.lower()
        with self._lock:
            return next((u for u in self._users.values() if u.username.lower() == wanted), None)

    def get_by_email(self, email: str) -> Optional[User]:
        if not email:
            return None
        wanted = email.lower()
        with self._lock:
            return next((u for u in self._users.values() if u.email.lower() == wanted), None)

    def get_by_id(self, user_id: UUID) -> Optional[User]:
        with self._lock:
            return self._users.get(user_id)

    def add(self, user: User) -> User:
        if user.id is None:
            user.id = uuid4()
        with self._lock:
            self._users[user.id] = user
        return user

    def update(self, user: User) -> User:
        with self._lock:
            self._users[user.id] = user
        return user

    def exists_username(self, username: str) -> bool:
        return self.get_by_username(username) is not None

    def exists_email(self, email: str, exclude_user_id: Optional[UUID] = None) -> bool:
        user = self.get_by_email(email)
        return user is not None and user.id != exclude_user_id

    def register_failed_attempt(
        self,
        user_id: UUID,
        now: datetime,
        max_attempts: int,
        lockout_duration: timedelta,
    ) -> tuple[int, Optional[datetime], bool]:
        with self._lock:
            user = self._users[user_id]
            if user.locked_until is not None and user.locked_until <= now:
                # Stale lock: start a new counting window
                user.failed_attempts = 1
                user.locked_until = None
            else:
                user.failed_attempts = (user.failed_attempts or 0) + 1

            newly_locked = user.failed_attempts >= max_attempts and user.locked_until is None
            if newly_locked:
                user.locked_until = now + lockout_duration

            return user.failed_attempts, user.locked_until, newly_locked

    def register_successful_login(self, user_id: UUID, now: datetime) -> None:
        with self._lock:
            user = self._users[user_id]
            user.failed_attempts = 0
            user.locked_until = None
            user.last_access = now

    def extend_lockout(self, user_id: UUID, locked_until: datetime) -> None:
        with self._lock:
            self._users[user_id].locked_until = locked_until


class InMemoryRefreshTokenStore:
    def __init__(self):
        self._tokens: dict[UUID, RefreshToken] = {}
        self._lock = threading.Lock()

    def get_by_token(self, token_hash: str) -> Optional[RefreshToken]:
        with self._lock:
            return next((t for t in self._tokens.values() if t.token_hash == token_hash), None)

    def get_active_by_user(self, user_id: UUID, now: datetime) -> list[RefreshToken]:
        with self._lock:
            return [
                t for t in self._tokens.values()
                if t.user_id == user_id and t.is_active(now)
            ]

    def add(self, token: RefreshToken) -> RefreshToken:
        if token.id is None:
            token.id = uuid4()
        with self._lock:
            self._tokens[token.id] = token
        return token

    def update(self, token: RefreshToken) -> RefreshToken:
        with self._lock:
            self._tokens[token.id] = token
        return token

    def revoke_if_active(
        self,
        token_id: UUID,
        now: datetime,
        replaced_by_id: Optional[UUID] = None,
    ) -> bool:
        with self._lock:
            token = self._tokens.get(token_id)
            if token is None or not token.is_active(now):
                return False
            token.is_revoked = True
            token.revoked_at = now
            token.replaced_by_id = replaced_by_id
            return True

    def revoke_all_by_user(self, user_id: UUID, now: datetime, except_id: Optional[UUID] = None) -> int:
        count = 0
        with self._lock:
            for token in self._tokens.values():
                if token.user_id == user_id and not token.is_revoked and token.id != except_id:
                    token.is_revoked = True
                    token.revoked_at = now
                    count += 1
        return count

    def revoke_by_token(self, token_hash: str, now: datetime, user_id: Optional[UUID] = None) -> bool:
        with self._lock:
            for token in self._tokens.values():
                if token.token_hash != token_hash or token.is_revoked:
                    continue
                if user_id is not None and token.user_id != user_id:
                    return False
                token.is_revoked = True
                token.revoked_at = now
                return True
        return False

    def remove_expired(self, now: datetime) -> int:
        with self._lock:
            expired = [tid for tid, t in self._tokens.items() if t.expires_at <= now]
            for tid in expired:
                del self._tokens[tid]
        return len(expired)


class InMemoryTokenBlacklistStore:
    def __init__(self):
        self._entries: dict[str, TokenBlacklist] = {}
        self._lock = threading.Lock()

    def add_token(
        self,
        user_id: UUID,
        token_hash: str,
        expires_at: datetime,
        reason: str = "Manual revocation",
    ) -> None:
        entry = TokenBlacklist(
            id=uuid4(),
            token_hash=token_hash,
            user_id=user_id,
            reason=reason,
            expires_at=expires_at,
            revoked_at=datetime.utcnow(),
        )
        with self._lock:
            self._entries.setdefault(token_hash, entry)

    def is_blacklisted(self, token_hash: str, now: Optional[datetime] = None) -> bool:
        now = now or datetime.utcnow()
        with self._lock:
            entry = self._entries.get(token_hash)
            return entry is not None and entry.expires_at > now

    def clean_expired(self, now: Optional[datetime] = None) -> int:
        now = now or datetime.utcnow()
        with self._lock:
            expired = [h for h, e in self._entries.items() if e.expires_at <= now]
            for token_hash in expired:
                del self._entries[token_hash]
        return len(expired)

    def remove_user_tokens(self, user_id: UUID) -> int:
        with self._lock:
            owned = [h for h, e in self._entries.items() if e.user_id == user_id]
            for token_hash in owned:
                del self._entries[token_hash]
        return len(owned)


class InMemoryPasswordResetTokenStore:
    def __init__(self):
        self._tokens: dict[UUID, PasswordResetToken] = {}
        self._lock = threading.Lock()

    def add(self, token: PasswordResetToken) -> PasswordResetToken:
        if token.id is None:
            token.id = uuid4()
        with self._lock:
            self._tokens[token.id] = token
        return token

    def get_by_token(self, token: str) -> Optional[PasswordResetToken]:
        with self._lock:
            return next((t for t in self._tokens.values() if t.token == token), None)

    def mark_used(self, token_id: UUID) -> bool:
        with self._lock:
            token = self._tokens.get(token_id)
            if token is None or token.is_used:
                return False
            token.is_used = True
            return True
