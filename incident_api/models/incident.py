import uuid
from datetime import datetime

from sqlalchemy import Column, String, Text, DateTime, Boolean, Integer, ForeignKey, Index, CheckConstraint, Uuid
from sqlalchemy.orm import relationship

from incident_api.core.database import Base


STATUS_OPEN = 1
STATUS_IN_PROGRESS = 2
STATUS_CLOSED = 3

UPDATE_TYPE_COMMENT = "COMMENT"
UPDATE_TYPE_STATUS_CHANGE = "STATUS_CHANGE"
UPDATE_TYPE_FIELD_UPDATE = "FIELD_UPDATE"
UPDATE_TYPE_ASSIGNMENT = "ASSIGNMENT"


class IncidentCategory(Base):
    __tablename__ = "incident_categories"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    name = Column(String(100), nullable=False, unique=True)
    description = Column(String(500), nullable=True)
    color = Column(String(7), nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, nullable=True)

    incidents = relationship("Incident", back_populates="category")

    def __repr__(self):
        return f"<IncidentCategory {self.name}>"


class IncidentStatus(Base):
    __tablename__ = "incident_statuses"

    id = Column(Integer, primary_key=True)
    name = Column(String(50), nullable=False, unique=True)
    display_name = Column(String(50), nullable=False)
    description = Column(String(200), nullable=True)
    order_sequence = Column(Integer, nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    incidents = relationship("Incident", back_populates="status")


class Incident(Base):
    __tablename__ = "incidents"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    title = Column(String(200), nullable=False)
    description = Column(Text, nullable=False)
    user_id = Column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    category_id = Column(Uuid, ForeignKey("incident_categories.id"), nullable=False)
    status_id = Column(Integer, ForeignKey("incident_statuses.id"), nullable=False, default=STATUS_OPEN)
    priority = Column(Integer, nullable=False, default=3)  # 1 (very low) .. 5 (critical)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)
    updated_at = Column(DateTime, nullable=True)
    closed_at = Column(DateTime, nullable=True)

    # Relationships
    user = relationship("User", back_populates="incidents", foreign_keys=[user_id])
    category = relationship("IncidentCategory", back_populates="incidents")
    status = relationship("IncidentStatus", back_populates="incidents")
    updates = relationship(
        "IncidentUpdate",
        back_populates="incident",
        cascade="all, delete-orphan",
        order_by="IncidentUpdate.created_at",
    )

    __table_args__ = (
        Index("ix_incidents_user_id", "user_id"),
        Index("ix_incidents_category_id", "category_id"),
        Index("ix_incidents_status_id", "status_id"),
        CheckConstraint("priority BETWEEN 1 AND 5", name="ck_incidents_priority"),
    )

    def __repr__(self):
        return f"<Incident {self.title}>"


class IncidentUpdate(Base):
    """Comment or change-history entry on an incident."""

    __tablename__ = "incident_updates"

    id = Column(Uuid, primary_key=True, default=uuid.uuid4)
    incident_id = Column(Uuid, ForeignKey("incidents.id", ondelete="CASCADE"), nullable=False, index=True)
    author_id = Column(Uuid, ForeignKey("users.id"), nullable=False)
    comment = Column(Text, nullable=False)
    update_type = Column(String(50), nullable=False)
    old_value = Column(Text, nullable=True)
    new_value = Column(Text, nullable=True)
    created_at = Column(DateTime, default=datetime.utcnow, nullable=False)

    incident = relationship("Incident", back_populates="updates")
    author = relationship("User")
