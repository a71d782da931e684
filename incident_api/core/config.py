from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    # Environment
    ENVIRONMENT: str = "development"

    # Database
    DATABASE_URL: str

    # JWT
    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    JWT_ISSUER: str = "incident-api"
    JWT_AUDIENCE: str = "incident-api-clients"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 15
    REFRESH_TOKEN_EXPIRE_DAYS: int = 7

    # Refresh tokens: when False, a new login revokes every other session
    ALLOW_MULTIPLE_DEVICES: bool = True

    # Account lockout
    MAX_FAILED_LOGIN_ATTEMPTS: int = 5
    LOCKOUT_DURATION_MINUTES: int = 15
    LOCKOUT_EXTENDS_ON_ATTEMPT: bool = False

    # Password reset
    PASSWORD_RESET_TOKEN_EXPIRE_HOURS: int = 1

    # Password hashing work factor
    BCRYPT_ROUNDS: int = 12

    # CORS
    FRONTEND_URL: str = "http://localhost:5173"

    # Rate limiting
    RATE_LIMIT_ENABLED: bool = True

    # Background cleanup of expired tokens
    SCHEDULER_ENABLED: bool = True
    TOKEN_CLEANUP_INTERVAL_MINUTES: int = 60

    # Outgoing mail (logged instead of sent when SMTP_HOST is unset)
    SMTP_HOST: Optional[str] = None
    SMTP_PORT: int = 587
    SMTP_USERNAME: Optional[str] = None
    SMTP_PASSWORD: Optional[str] = None
    SMTP_USE_TLS: bool = True
    EMAIL_FROM: str = "no-reply@incident-api.local"
    EMAIL_FROM_NAME: str = "Incident Tracker"

    def validate_required_secrets(self) -> list[str]:
        """Validate that critical secrets are set. Returns list of errors."""
        errors = []
        if not self.SECRET_KEY or len(self.SECRET_KEY) < 16:
            errors.append("SECRET_KEY must be set and at least 16 characters")
        if not self.DATABASE_URL:
            errors.append("DATABASE_URL must be set")
        if not self.JWT_ISSUER or not self.JWT_AUDIENCE:
            errors.append("JWT_ISSUER and JWT_AUDIENCE must be set")
        if self.MAX_FAILED_LOGIN_ATTEMPTS < 1:
            errors.append("MAX_FAILED_LOGIN_ATTEMPTS must be at least 1")
        if self.ENVIRONMENT == "production":
            if self.SECRET_KEY and len(self.SECRET_KEY) < 32:
                errors.append("SECRET_KEY must be at least 32 characters in production")
        return errors

    class Config:
        env_file = ".env"
        case_sensitive = True


settings = Settings()
