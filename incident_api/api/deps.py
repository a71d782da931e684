from functools import lru_cache
from typing import Optional
from uuid import UUID

from fastapi import Depends
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session

from incident_api.core.config import settings
from incident_api.core.database import get_db
from incident_api.core.exceptions import InvalidTokenError
from incident_api.core.security import PasswordHasher, TokenCodec, hash_token
from incident_api.models import User
from incident_api.services.auth_service import AuthService
from incident_api.services.email_service import EmailSender, build_email_sender
from incident_api.stores.sql import (
    SqlPasswordResetTokenStore,
    SqlRefreshTokenStore,
    SqlTokenBlacklistStore,
    SqlUserStore,
)


# HTTP Bearer token scheme; a missing header is reported as 401 below
security = HTTPBearer(auto_error=False)


@lru_cache
def get_password_hasher() -> PasswordHasher:
    return PasswordHasher.from_settings(settings)


@lru_cache
def get_token_codec() -> TokenCodec:
    return TokenCodec(settings)


@lru_cache
def get_email_sender() -> EmailSender:
    return build_email_sender(settings)


def build_auth_service(
    db: Session,
    hasher: Optional[PasswordHasher] = None,
    codec: Optional[TokenCodec] = None,
    email_sender: Optional[EmailSender] = None,
) -> AuthService:
    """Auth service backed by the relational stores on one session."""
    return AuthService(
        settings=settings,
        users=SqlUserStore(db),
        refresh_tokens=SqlRefreshTokenStore(db),
        blacklist=SqlTokenBlacklistStore(db),
        reset_tokens=SqlPasswordResetTokenStore(db),
        hasher=hasher or get_password_hasher(),
        codec=codec or get_token_codec(),
        email_sender=email_sender or get_email_sender(),
    )


def get_auth_service(
    db: Session = Depends(get_db),
    hasher: PasswordHasher = Depends(get_password_hasher),
    codec: TokenCodec = Depends(get_token_codec),
    email_sender: EmailSender = Depends(get_email_sender),
) -> AuthService:
    """Auth service bound to the request's database session."""
    return build_auth_service(db, hasher, codec, email_sender)


def get_access_token(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
) -> str:
    """Raw bearer token of the current request."""
    if credentials is None or not credentials.credentials:
        raise InvalidTokenError("Could not validate credentials")
    return credentials.credentials


def get_current_user(
    token: str = Depends(get_access_token),
    auth_service: AuthService = Depends(get_auth_service),
) -> User:
    """
    Dependency to get the current authenticated user from JWT token.
    Raises TokenExpiredError/InvalidTokenError if the token is unusable,
    revoked, or its user no longer exists.
    """
    payload = auth_service.codec.decode_access_token(token)

    # The blacklist middleware normally rejects revoked tokens first
    if auth_service.blacklist.is_blacklisted(hash_token(token)):
        raise InvalidTokenError("Token has been revoked")

    try:
        user_id = UUID(payload["sub"])
    except (KeyError, ValueError):
        raise InvalidTokenError("Could not validate credentials")

    user = auth_service.users.get_by_id(user_id)
    if user is None or not user.is_active:
        raise InvalidTokenError("Could not validate credentials")

    return user
