from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Index, Uuid
from sqlalchemy.orm import relationship

from incident_api.core.database import Base


class TokenBlacklist(Base):
    """Stores hashes of revoked JWT access tokens until they expire."""

    __tablename__ = "token_blacklist"

    id = Column(Uuid, primary_key=True, default=uuid4)
    token_hash = Column(String(64), nullable=False, index=True)  # SHA-256 hash
    user_id = Column(Uuid, nullable=False, index=True)
    reason = Column(String(100), nullable=False, default="Manual revocation")
    expires_at = Column(DateTime, nullable=False)
    revoked_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    # Index for cleanup of expired tokens
    __table_args__ = (
        Index("ix_token_blacklist_expires_at", "expires_at"),
    )


class RefreshToken(Base):
    """Stores issued refresh tokens for rotation and revocation."""

    __tablename__ = "refresh_tokens"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token_hash = Column(String(64), unique=True, nullable=False)  # SHA-256 hash
    expires_at = Column(DateTime, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    is_revoked = Column(Boolean, nullable=False, default=False)
    revoked_at = Column(DateTime, nullable=True)
    replaced_by_id = Column(Uuid, nullable=True)

    user = relationship("User", back_populates="refresh_tokens")

    __table_args__ = (
        Index("ix_refresh_tokens_user_id_revoked", "user_id", "is_revoked"),
    )

    def is_active(self, now: datetime) -> bool:
        return not self.is_revoked and self.expires_at > now
