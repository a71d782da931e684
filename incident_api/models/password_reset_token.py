from datetime import datetime
from uuid import uuid4

from sqlalchemy import Column, String, DateTime, Boolean, ForeignKey, Uuid
from sqlalchemy.orm import relationship

from incident_api.core.database import Base


class PasswordResetToken(Base):
    """Single-use, expiring token emailed to a user who forgot their password."""

    __tablename__ = "password_reset_tokens"

    id = Column(Uuid, primary_key=True, default=uuid4)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False, index=True)
    token = Column(String(200), unique=True, nullable=False)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    expires_at = Column(DateTime, nullable=False)
    is_used = Column(Boolean, nullable=False, default=False)

    user = relationship("User", back_populates="password_reset_tokens")

    def is_usable(self, now: datetime) -> bool:
        return not self.is_used and self.expires_at > now
