from dataclasses import dataclass
from datetime import datetime, timedelta
import logging
import secrets
from typing import Callable, Optional
from uuid import UUID, uuid4

from incident_api.core.config import Settings
from incident_api.core.exceptions import (
    AccountLockedError,
    ConflictError,
    InvalidCredentialsError,
    InvalidTokenError,
    NotFoundError,
    TokenExpiredError,
    ValidationFailedError,
)
from incident_api.core.password_policy import validate_password
from incident_api.core.sanitization import (
    sanitize_email,
    sanitize_name,
    sanitize_username,
    validate_email,
    validate_person_name,
    validate_reset_token_format,
    validate_username,
)
from incident_api.core.security import PasswordHasher, TokenCodec, hash_token, token_prefix
from incident_api.models import PasswordResetToken, RefreshToken, User
from incident_api.schemas.auth import (
    ChangePasswordRequest,
    RegisterRequest,
    ResetPasswordRequest,
    UpdateProfileRequest,
)
from incident_api.services.email_service import EmailSender
from incident_api.stores.base import (
    PasswordResetTokenStore,
    RefreshTokenStore,
    TokenBlacklistStore,
    UserStore,
)

logger = logging.getLogger(__name__)

# 48 random bytes, url-safe base64 encoded
RESET_TOKEN_BYTES = 48

REASON_LOGOUT = "logout"
REASON_LOGOUT_ALL = "logout-all"
REASON_ACCOUNT_DELETED = "account-deleted"


@dataclass
class AuthResult:
    """Token pair handed back after login, registration or refresh."""
    access_token: str
    refresh_token: str
    expires_at: datetime
    user: User
    token_type: str = "bearer"


class AuthService:
    """
    Authentication and session-security workflows.

    All mutable state lives in the injected stores; every public method is a
    single unit of work and may be called concurrently from worker threads.
    """

    def __init__(
        self,
        settings: Settings,
        users: UserStore,
        refresh_tokens: RefreshTokenStore,
        blacklist: TokenBlacklistStore,
        reset_tokens: PasswordResetTokenStore,
        hasher: PasswordHasher,
        codec: TokenCodec,
        email_sender: EmailSender,
        clock: Callable[[], datetime] = datetime.utcnow,
    ):
        self.settings = settings
        self.users = users
        self.refresh_tokens = refresh_tokens
        self.blacklist = blacklist
        self.reset_tokens = reset_tokens
        self.hasher = hasher
        self.codec = codec
        self.email_sender = email_sender
        self._clock = clock

    @property
    def _lockout_duration(self) -> timedelta:
        return timedelta(minutes=self.settings.LOCKOUT_DURATION_MINUTES)

    # ------------------------------------------------------------------
    # Sessions
    # ------------------------------------------------------------------

    def login(self, username: str, password: str) -> AuthResult:
        """
        Authenticate by username and password.

        Unknown and inactive users get the same generic error as a wrong
        password. A locked account is rejected before the password is checked.
        """
        now = self._clock()
        user = self.users.get_by_username(sanitize_username(username))
        if user is None or not user.is_active:
            logger.warning("Login failed: unknown or inactive user")
            raise InvalidCredentialsError()

        if user.is_locked(now):
            locked_until = user.locked_until
            if self.settings.LOCKOUT_EXTENDS_ON_ATTEMPT:
                locked_until = now + self._lockout_duration
                self.users.extend_lockout(user.id, locked_until)
            logger.warning(f"Login attempt on locked account {user.id}")
            raise AccountLockedError(locked_until, now=now)

        if not self.hasher.verify(password, user.password_hash):
            attempts, locked_until, newly_locked = self.users.register_failed_attempt(
                user.id,
                now,
                self.settings.MAX_FAILED_LOGIN_ATTEMPTS,
                self._lockout_duration,
            )
            logger.warning(f"Failed login for user {user.id} (attempt {attempts})")
            if locked_until is not None and locked_until > now:
                if newly_locked:
                    logger.warning(f"Account {user.id} locked until {locked_until.isoformat()}")
                    self._notify(self.email_sender.send_account_locked, user.email, user.username, locked_until)
                raise AccountLockedError(locked_until, now=now)
            raise InvalidCredentialsError()

        self.users.register_successful_login(user.id, now)
        user = self.users.get_by_id(user.id)
        logger.info(f"User {user.id} logged in")
        return self._issue_tokens(user, now)

    def register(self, request: RegisterRequest) -> AuthResult:
        now = self._clock()
        username = sanitize_username(request.username)
        email = sanitize_email(request.email)
        first_name = sanitize_name(request.first_name)
        last_name = sanitize_name(request.last_name)

        errors = []
        ok, message = validate_username(username)
        if not ok:
            errors.append(message)
        if not validate_email(email):
            errors.append("Invalid email address")
        for label, value in (("First name", first_name), ("Last name", last_name)):
            ok, message = validate_person_name(value)
            if not ok:
                errors.append(f"{label}: {message}")
        errors.extend(validate_password(request.password).errors)
        if request.password != request.confirm_password:
            errors.append("Passwords do not match")
        if errors:
            raise ValidationFailedError("Registration data is invalid", errors=errors)

        if self.users.exists_username(username):
            raise ConflictError("Username", "Username is already taken")
        if self.users.exists_email(email):
            raise ConflictError("Email", "Email is already registered")

        user = self.users.add(User(
            id=uuid4(),
            username=username,
            email=email,
            password_hash=self.hasher.hash(request.password),
            first_name=first_name,
            last_name=last_name,
            role="User",
            is_active=True,
            created_at=now,
            last_access=now,
            failed_attempts=0,
            locked_until=None,
        ))
        logger.info(f"Registered user {user.id}")

        result = self._issue_tokens(user, now)
        self._notify(self.email_sender.send_welcome, user.email, user.username)
        return result

    def refresh(self, refresh_token_value: str) -> AuthResult:
        """
        Rotate a refresh token.

        The consumed token is revoked with a conditional update, so of two
        concurrent refreshes with the same value exactly one gets a new pair.
        """
        if not refresh_token_value or not refresh_token_value.strip():
            raise InvalidTokenError("Invalid or expired refresh token")

        now = self._clock()
        stored = self.refresh_tokens.get_by_token(hash_token(refresh_token_value))
        if stored is None or not stored.is_active(now):
            if stored is not None and stored.is_revoked:
                logger.warning(
                    f"Reuse of revoked refresh token {token_prefix(refresh_token_value)} "
                    f"for user {stored.user_id}"
                )
            raise InvalidTokenError("Invalid or expired refresh token")

        user = self.users.get_by_id(stored.user_id)
        if user is None or not user.is_active:
            raise InvalidTokenError("Invalid or expired refresh token")

        access_token, expires_at = self.codec.issue_access_token(user)
        new_value, new_token = self._new_refresh_token(user.id, now)

        # The replacement exists before the consumed token is revoked
        self.refresh_tokens.add(new_token)
        if not self.refresh_tokens.revoke_if_active(stored.id, now, replaced_by_id=new_token.id):
            self.refresh_tokens.revoke_if_active(new_token.id, now)
            logger.warning(f"Concurrent refresh lost for user {user.id}")
            raise InvalidTokenError("Invalid or expired refresh token")

        if not self.settings.ALLOW_MULTIPLE_DEVICES:
            self.refresh_tokens.revoke_all_by_user(user.id, now, except_id=new_token.id)

        return AuthResult(
            access_token=access_token,
            refresh_token=new_value,
            expires_at=expires_at,
            user=user,
        )

    def logout(self, user_id: UUID, access_token: str, refresh_token: Optional[str] = None) -> None:
        now = self._clock()
        if access_token:
            self._blacklist_access_token(user_id, access_token, REASON_LOGOUT)
        if refresh_token and refresh_token.strip():
            self.refresh_tokens.revoke_by_token(hash_token(refresh_token), now, user_id=user_id)
        logger.info(f"User {user_id} logged out")

    def revoke_refresh_token(self, user_id: UUID, refresh_token_value: str) -> None:
        if not refresh_token_value or not refresh_token_value.strip():
            raise InvalidTokenError("Invalid refresh token")
        revoked = self.refresh_tokens.revoke_by_token(
            hash_token(refresh_token_value), self._clock(), user_id=user_id
        )
        if not revoked:
            raise NotFoundError("Refresh token", "Refresh token not found or already revoked")

    def revoke_all_tokens(self, user_id: UUID, access_token: Optional[str] = None) -> int:
        """Sign out of every device. Returns the number of refresh tokens revoked."""
        count = self.refresh_tokens.revoke_all_by_user(user_id, self._clock())
        if access_token:
            self._blacklist_access_token(user_id, access_token, REASON_LOGOUT_ALL)
        logger.info(f"Revoked {count} refresh tokens for user {user_id}")
        return count

    def validate_token(self, access_token: str) -> bool:
        try:
            self.codec.decode_access_token(access_token)
        except (InvalidTokenError, TokenExpiredError):
            return False
        return not self.blacklist.is_blacklisted(hash_token(access_token), self._clock())

    # ------------------------------------------------------------------
    # Account management
    # ------------------------------------------------------------------

    def get_current_user(self, user_id: UUID) -> User:
        user = self.users.get_by_id(user_id)
        if user is None or not user.is_active:
            raise NotFoundError("User")
        return user

    def update_profile(self, user_id: UUID, request: UpdateProfileRequest) -> User:
        user = self.get_current_user(user_id)
        email = sanitize_email(request.email)
        first_name = sanitize_name(request.first_name)
        last_name = sanitize_name(request.last_name)

        errors = []
        if not validate_email(email):
            errors.append("Invalid email address")
        for label, value in (("First name", first_name), ("Last name", last_name)):
            ok, message = validate_person_name(value)
            if not ok:
                errors.append(f"{label}: {message}")
        if errors:
            raise ValidationFailedError("Profile data is invalid", errors=errors)

        if self.users.exists_email(email, exclude_user_id=user.id):
            raise ConflictError("Email", "Email is already registered")

        user.email = email
        user.first_name = first_name
        user.last_name = last_name
        user = self.users.update(user)

        self._notify(self.email_sender.send_profile_updated, user.email, user.username)
        return user

    def change_password(self, user_id: UUID, request: ChangePasswordRequest) -> None:
        user = self.get_current_user(user_id)
        if not self.hasher.verify(request.current_password, user.password_hash):
            raise InvalidCredentialsError("Current password is incorrect")
        if request.new_password != request.confirm_password:
            raise ValidationFailedError("Passwords do not match")
        if request.new_password == request.current_password:
            raise ValidationFailedError("New password must differ from the current password")
        policy = validate_password(request.new_password)
        if not policy.is_valid:
            raise ValidationFailedError("Password does not meet the security policy", errors=policy.errors)

        user.password_hash = self.hasher.hash(request.new_password)
        self.users.update(user)

        # Sign out every other session
        self.refresh_tokens.revoke_all_by_user(user.id, self._clock())
        logger.info(f"Password changed for user {user.id}")
        self._notify(self.email_sender.send_password_changed, user.email, user.username)

    def request_password_reset(self, email: str) -> None:
        """Email a reset link. Unknown addresses return silently."""
        now = self._clock()
        user = self.users.get_by_email(sanitize_email(email))
        if user is None or not user.is_active:
            logger.info("Password reset requested for unknown email")
            return

        token = self.reset_tokens.add(PasswordResetToken(
            id=uuid4(),
            user_id=user.id,
            token=secrets.token_urlsafe(RESET_TOKEN_BYTES),
            created_at=now,
            expires_at=now + timedelta(hours=self.settings.PASSWORD_RESET_TOKEN_EXPIRE_HOURS),
            is_used=False,
        ))
        logger.info(f"Password reset token issued for user {user.id}")
        self._notify(self.email_sender.send_password_reset, user.email, user.username, token.token)

    def reset_password(self, request: ResetPasswordRequest) -> None:
        now = self._clock()
        if not validate_reset_token_format(request.token):
            raise InvalidTokenError("Invalid or expired reset token")

        stored = self.reset_tokens.get_by_token(request.token.strip())
        if stored is None or not stored.is_usable(now):
            raise InvalidTokenError("Invalid or expired reset token")

        if request.new_password != request.confirm_password:
            raise ValidationFailedError("Passwords do not match")
        policy = validate_password(request.new_password)
        if not policy.is_valid:
            raise ValidationFailedError("Password does not meet the security policy", errors=policy.errors)

        user = self.users.get_by_id(stored.user_id)
        if user is None or not user.is_active:
            raise InvalidTokenError("Invalid or expired reset token")

        if not self.reset_tokens.mark_used(stored.id):
            raise InvalidTokenError("Invalid or expired reset token")

        user.password_hash = self.hasher.hash(request.new_password)
        user.failed_attempts = 0
        user.locked_until = None
        self.users.update(user)

        self.refresh_tokens.revoke_all_by_user(user.id, now)
        logger.info(f"Password reset completed for user {user.id}")
        self._notify(self.email_sender.send_password_changed, user.email, user.username)

    def delete_user(self, user_id: UUID, access_token: Optional[str] = None) -> None:
        """Deactivate the account and revoke every credential it holds."""
        user = self.get_current_user(user_id)
        self.refresh_tokens.revoke_all_by_user(user.id, self._clock())
        if access_token:
            self._blacklist_access_token(user.id, access_token, REASON_ACCOUNT_DELETED)

        user.is_active = False
        user = self.users.update(user)
        logger.info(f"User {user.id} deleted")
        self._notify(self.email_sender.send_account_deleted, user.email, user.username)

    def cleanup_expired_tokens(self) -> int:
        """Purge expired blacklist entries and refresh tokens. Returns rows removed."""
        now = self._clock()
        removed = self.blacklist.clean_expired(now) + self.refresh_tokens.remove_expired(now)
        if removed:
            logger.info(f"Token cleanup removed {removed} expired rows")
        return removed

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _new_refresh_token(self, user_id: UUID, now: datetime) -> tuple[str, RefreshToken]:
        value = self.codec.generate_refresh_token()
        token = RefreshToken(
            id=uuid4(),
            user_id=user_id,
            token_hash=hash_token(value),
            created_at=now,
            expires_at=now + timedelta(days=self.settings.REFRESH_TOKEN_EXPIRE_DAYS),
            is_revoked=False,
        )
        return value, token

    def _issue_tokens(self, user: User, now: datetime) -> AuthResult:
        access_token, expires_at = self.codec.issue_access_token(user)
        refresh_value, refresh_token = self._new_refresh_token(user.id, now)

        if not self.settings.ALLOW_MULTIPLE_DEVICES:
            self.refresh_tokens.revoke_all_by_user(user.id, now)
        self.refresh_tokens.add(refresh_token)

        return AuthResult(
            access_token=access_token,
            refresh_token=refresh_value,
            expires_at=expires_at,
            user=user,
        )

    def _blacklist_access_token(self, user_id: UUID, access_token: str, reason: str) -> None:
        self.blacklist.add_token(
            user_id,
            hash_token(access_token),
            self.codec.extract_expiry(access_token),
            reason,
        )

    def _notify(self, send: Callable, *args) -> None:
        # Notifications never abort the operation that triggered them
        try:
            send(*args)
        except Exception:
            logger.exception(f"Failed to send {send.__name__} notification")
