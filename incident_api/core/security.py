from datetime import datetime, timedelta, timezone
from typing import Callable, Optional
from uuid import uuid4
import hashlib
import logging
import secrets

from jose import ExpiredSignatureError, JWTError, jwt
from passlib.context import CryptContext

from incident_api.core.config import Settings
from incident_api.core.exceptions import InvalidTokenError, TokenExpiredError

logger = logging.getLogger(__name__)

# Token type constants
TOKEN_TYPE_ACCESS = "access"

# Refresh tokens are opaque: 32 random bytes, url-safe base64 encoded
REFRESH_TOKEN_BYTES = 32


def hash_token(token: str) -> str:
    """Create SHA-256 hash of a token for storage."""
    if not token or not token.strip():
        raise ValueError("Token cannot be empty")
    return hashlib.sha256(token.encode()).hexdigest()


def token_prefix(token: Optional[str]) -> str:
    """Short, log-safe prefix of a token."""
    if not token:
        return "<empty>"
    return f"{token[:8]}..."


class PasswordHasher:
    """Salted, adaptive one-way hashing of credentials (bcrypt)."""

    def __init__(self, rounds: int = 12):
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    @classmethod
    def from_settings(cls, settings: Settings) -> "PasswordHasher":
        return cls(rounds=settings.BCRYPT_ROUNDS)

    def hash(self, password: str) -> str:
        """Hash a password using bcrypt."""
        return self._context.hash(password)

    def verify(self, plain_password: str, hashed_password: str) -> bool:
        """Verify a plain password against a hashed password."""
        if not plain_password or not hashed_password:
            return False
        try:
            return self._context.verify(plain_password, hashed_password)
        except (ValueError, TypeError):
            # Unrecognised or corrupted hash
            logger.warning("Password verification against a malformed hash")
            return False


class TokenCodec:
    """
    Signs and verifies JWT access tokens and generates opaque refresh tokens.

    Access tokens carry subject, username, email, role, issuer, audience,
    issued-at, expiry and a unique ``jti`` so that two tokens issued in the
    same second never share a blacklist hash.
    """

    def __init__(self, settings: Settings, clock: Callable[[], datetime] = datetime.utcnow):
        if not settings.SECRET_KEY:
            raise RuntimeError("SECRET_KEY is not configured")
        self._secret_key = settings.SECRET_KEY
        self._algorithm = settings.ALGORITHM
        self._issuer = settings.JWT_ISSUER
        self._audience = settings.JWT_AUDIENCE
        self._access_minutes = settings.ACCESS_TOKEN_EXPIRE_MINUTES
        self._clock = clock

    def issue_access_token(self, user) -> tuple[str, datetime]:
        """
        Create a signed JWT access token for a user.
        Returns (token, expires_at).
        """
        now = self._clock()
        expire = now + timedelta(minutes=self._access_minutes)

        to_encode = {
            "sub": str(user.id),
            "username": user.username,
            "email": user.email,
            "role": user.role,
            "iss": self._issuer,
            "aud": self._audience,
            "iat": now,
            "exp": expire,
            "jti": str(uuid4()),
            "type": TOKEN_TYPE_ACCESS,
        }

        encoded_jwt = jwt.encode(to_encode, self._secret_key, algorithm=self._algorithm)
        return encoded_jwt, expire

    @staticmethod
    def generate_refresh_token() -> str:
        """Create a cryptographically random, opaque refresh token."""
        return secrets.token_urlsafe(REFRESH_TOKEN_BYTES)

    def decode_access_token(self, token: str) -> dict:
        """
        Verify signature, issuer, audience and expiry (no clock skew).

        Raises TokenExpiredError for an expired token and InvalidTokenError
        for any other failure.
        """
        if not token:
            raise InvalidTokenError()
        try:
            payload = jwt.decode(
                token,
                self._secret_key,
                algorithms=[self._algorithm],
                audience=self._audience,
                issuer=self._issuer,
                options={"leeway": 0},
            )
        except ExpiredSignatureError:
            raise TokenExpiredError()
        except JWTError as e:
            logger.debug(f"Access token rejected: {e}")
            raise InvalidTokenError()

        if payload.get("type") != TOKEN_TYPE_ACCESS or not payload.get("sub"):
            raise InvalidTokenError()

        return payload

    def extract_expiry(self, token: str) -> datetime:
        """
        Best-effort read of the ``exp`` claim without verification.
        Falls back to the default access-token lifetime for malformed tokens.
        """
        try:
            claims = jwt.get_unverified_claims(token)
            exp = claims.get("exp")
            if exp is not None:
                return datetime.fromtimestamp(int(exp), tz=timezone.utc).replace(tzinfo=None)
        except (JWTError, ValueError, TypeError, AttributeError):
            pass
        return self._clock() + timedelta(minutes=self._access_minutes)
