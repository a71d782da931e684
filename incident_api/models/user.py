import uuid
from datetime import datetime

from sqlalchemy import Column, String, DateTime, Boolean, Integer, Index, Uuid, func
from sqlalchemy.orm import relationship

from incident_api.core.database import Base


class User(Base):
    __tablename__ = "users"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    username = Column(String(50), nullable=False, unique=True)
    email = Column(String(254), nullable=False, unique=True)
    password_hash = Column(String(255), nullable=False)
    first_name = Column(String(50), nullable=False)
    last_name = Column(String(50), nullable=False)
    role = Column(String(20), nullable=False, default="User")  # "User" or "Admin"
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    last_access = Column(DateTime, nullable=True)

    # Lockout tracking
    failed_attempts = Column(Integer, nullable=False, default=0)
    locked_until = Column(DateTime, nullable=True)

    # Relationships
    refresh_tokens = relationship("RefreshToken", back_populates="user", cascade="all, delete-orphan")
    password_reset_tokens = relationship("PasswordResetToken", back_populates="user", cascade="all, delete-orphan")
    incidents = relationship("Incident", back_populates="user", foreign_keys="Incident.user_id")

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}".strip()

    def is_locked(self, now: datetime) -> bool:
        return self.locked_until is not None and self.locked_until > now

    def __repr__(self):
        return f"<User {self.username}>"


# Lookups ignore case, so uniqueness must too
Index("ux_users_username_lower", func.lower(User.username), unique=True)
Index("ux_users_email_lower", func.lower(User.email), unique=True)
