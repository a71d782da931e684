"""Custom exceptions and error handling for the Incident Tracker API."""

from datetime import datetime
from typing import Optional

from fastapi import HTTPException, status


class IncidentApiException(HTTPException):
    """Base exception for the Incident Tracker API."""

    def __init__(
        self,
        status_code: int,
        detail: str,
        error_code: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(status_code=status_code, detail=detail, headers=headers)
        self.error_code = error_code

    def to_content(self) -> dict:
        return {
            "detail": self.detail,
            "error_code": self.error_code,
        }


# Authentication Errors (401, 403, 423)
class InvalidCredentialsError(IncidentApiException):
    """Raised when login credentials are invalid."""

    def __init__(self, detail: str = "Invalid username or password"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_CREDENTIALS",
            headers={"WWW-Authenticate": "Bearer"},
        )


class AccountLockedError(IncidentApiException):
    """Raised when an account is temporarily locked after repeated failures."""

    def __init__(self, locked_until: datetime, now: Optional[datetime] = None):
        now = now or datetime.utcnow()
        retry_after = max(int((locked_until - now).total_seconds()), 0)
        super().__init__(
            status_code=status.HTTP_423_LOCKED,
            detail=(
                "Account is temporarily locked due to too many failed login attempts. "
                f"Try again after {locked_until:%Y-%m-%d %H:%M} UTC"
            ),
            error_code="ACCOUNT_LOCKED",
            headers={"Retry-After": str(retry_after)},
        )
        self.locked_until = locked_until
        self.retry_after = retry_after

    def to_content(self) -> dict:
        content = super().to_content()
        content["locked_until"] = self.locked_until.isoformat()
        return content


class TokenExpiredError(IncidentApiException):
    """Raised when JWT token has expired."""

    def __init__(self, detail: str = "Token has expired"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="TOKEN_EXPIRED",
            headers={"WWW-Authenticate": "Bearer"},
        )


class InvalidTokenError(IncidentApiException):
    """Raised when a token is malformed, expired, revoked or already used."""

    def __init__(self, detail: str = "Invalid token"):
        super().__init__(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=detail,
            error_code="INVALID_TOKEN",
            headers={"WWW-Authenticate": "Bearer"},
        )


class ForbiddenError(IncidentApiException):
    """Raised when user lacks permission for an action."""

    def __init__(self, detail: str = "You do not have permission to perform this action"):
        super().__init__(
            status_code=status.HTTP_403_FORBIDDEN,
            detail=detail,
            error_code="FORBIDDEN",
        )


# Resource Errors (404, 409)
class NotFoundError(IncidentApiException):
    """Raised when a resource is not found."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=detail or f"{resource} not found",
            error_code="NOT_FOUND",
        )


class ConflictError(IncidentApiException):
    """Raised when trying to create a resource that already exists."""

    def __init__(self, resource: str = "Resource", detail: str | None = None):
        super().__init__(
            status_code=status.HTTP_409_CONFLICT,
            detail=detail or f"{resource} already exists",
            error_code="CONFLICT",
        )


# Validation Errors (400)
class ValidationFailedError(IncidentApiException):
    """Raised when input validation fails."""

    def __init__(self, detail: str = "Invalid input", errors: list[str] | None = None):
        super().__init__(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=detail,
            error_code="VALIDATION_ERROR",
        )
        self.errors = errors or []

    def to_content(self) -> dict:
        content = super().to_content()
        if self.errors:
            content["errors"] = self.errors
        return content


# Server Errors (500, 503)
class InfrastructureError(IncidentApiException):
    """Raised when a backing store or network dependency fails."""

    def __init__(self, detail: str = "A storage error occurred. Please try again later."):
        super().__init__(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=detail,
            error_code="INFRASTRUCTURE_ERROR",
        )


class InternalServerError(IncidentApiException):
    """Raised for unexpected server errors."""

    def __init__(self, detail: str = "An unexpected error occurred"):
        super().__init__(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=detail,
            error_code="INTERNAL_ERROR",
        )
