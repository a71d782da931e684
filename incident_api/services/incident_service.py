from datetime import datetime
import logging
from typing import Optional
from uuid import UUID

from sqlalchemy.orm import Session

from incident_api.core.exceptions import ForbiddenError, NotFoundError, ValidationFailedError
from incident_api.core.sanitization import sanitize_comment, sanitize_description, sanitize_title
from incident_api.models import Incident, IncidentCategory, IncidentStatus, IncidentUpdate, User
from incident_api.models.incident import (
    STATUS_CLOSED,
    STATUS_OPEN,
    UPDATE_TYPE_ASSIGNMENT,
    UPDATE_TYPE_COMMENT,
    UPDATE_TYPE_FIELD_UPDATE,
    UPDATE_TYPE_STATUS_CHANGE,
)
from incident_api.schemas.incidents import AssignIncidentRequest, IncidentCreate, IncidentUpdateRequest

logger = logging.getLogger(__name__)


PRIORITIES = {
    1: "Very Low",
    2: "Low",
    3: "Medium",
    4: "High",
    5: "Critical",
}

DEFAULT_STATUSES = [
    {"id": 1, "name": "OPEN", "display_name": "Open", "description": "Newly reported incident", "order_sequence": 1},
    {"id": 2, "name": "IN_PROGRESS", "display_name": "In Progress", "description": "Incident is being worked on", "order_sequence": 2},
    {"id": 3, "name": "CLOSED", "display_name": "Closed", "description": "Incident resolved and closed", "order_sequence": 3},
]

DEFAULT_CATEGORIES = [
    {"name": "Infrastructure", "description": "Servers, network and hosting", "color": "#1f77b4"},
    {"name": "Application", "description": "Bugs and outages in applications", "color": "#ff7f0e"},
    {"name": "Security", "description": "Security events and vulnerabilities", "color": "#d62728"},
    {"name": "Access", "description": "Accounts, permissions and credentials", "color": "#2ca02c"},
]


def seed_reference_data(db: Session) -> None:
    """Insert the fixed statuses and starter categories if missing."""
    for status in DEFAULT_STATUSES:
        if not db.query(IncidentStatus).filter(IncidentStatus.id == status["id"]).first():
            db.add(IncidentStatus(**status, is_active=True))
    if not db.query(IncidentCategory).first():
        for category in DEFAULT_CATEGORIES:
            db.add(IncidentCategory(**category, is_active=True))
    db.commit()


class IncidentService:
    """Service for handling Incident business logic."""

    @staticmethod
    def _can_modify(incident: Incident, user: User) -> bool:
        return user.role == "Admin" or incident.user_id == user.id

    @staticmethod
    def _record(
        db: Session,
        incident: Incident,
        author: User,
        update_type: str,
        comment: str,
        old_value: Optional[str] = None,
        new_value: Optional[str] = None,
    ) -> IncidentUpdate:
        entry = IncidentUpdate(
            incident_id=incident.id,
            author_id=author.id,
            comment=comment,
            update_type=update_type,
            old_value=old_value,
            new_value=new_value,
        )
        db.add(entry)
        return entry

    @staticmethod
    def list_incidents(
        db: Session,
        user_id: Optional[UUID] = None,
        category_id: Optional[UUID] = None,
        status_id: Optional[int] = None,
        skip: int = 0,
        limit: int = 50,
    ) -> tuple[list[Incident], int]:
        """List incidents, newest first, optionally filtered by owner, category or status."""
        query = db.query(Incident)
        if user_id is not None:
            query = query.filter(Incident.user_id == user_id)
        if category_id is not None:
            query = query.filter(Incident.category_id == category_id)
        if status_id is not None:
            query = query.filter(Incident.status_id == status_id)

        total = query.count()
        incidents = query.order_by(Incident.created_at.desc()).offset(skip).limit(limit).all()
        return incidents, total

    @staticmethod
    def get_incident(db: Session, incident_id: UUID) -> Incident:
        incident = db.query(Incident).filter(Incident.id == incident_id).first()
        if not incident:
            raise NotFoundError("Incident")
        return incident

    @staticmethod
    def get_active_category(db: Session, category_id: UUID) -> IncidentCategory:
        category = db.query(IncidentCategory).filter(
            IncidentCategory.id == category_id,
            IncidentCategory.is_active == True,
        ).first()
        if not category:
            raise NotFoundError("Category")
        return category

    @staticmethod
    def create_incident(db: Session, user: User, data: IncidentCreate) -> Incident:
        IncidentService.get_active_category(db, data.category_id)

        title = sanitize_title(data.title)
        description = sanitize_description(data.description)
        if not title or not description:
            raise ValidationFailedError("Title and description are required")

        incident = Incident(
            title=title,
            description=description,
            user_id=user.id,
            category_id=data.category_id,
            status_id=STATUS_OPEN,
            priority=data.priority,
            created_at=datetime.utcnow(),
        )
        db.add(incident)
        db.commit()
        db.refresh(incident)
        logger.info(f"Incident {incident.id} created by user {user.id}")
        return incident

    @staticmethod
    def update_incident(
        db: Session,
        incident: Incident,
        user: User,
        data: IncidentUpdateRequest,
    ) -> Incident:
        """
        Apply a partial update. Every changed field leaves a history entry;
        moving to Closed stamps ``closed_at`` and reopening clears it.
        """
        if not IncidentService._can_modify(incident, user):
            raise ForbiddenError("Only the owner or an administrator can update this incident")

        now = datetime.utcnow()
        changed = False

        if data.title is not None:
            title = sanitize_title(data.title)
            if title != incident.title:
                IncidentService._record(db, incident, user, UPDATE_TYPE_FIELD_UPDATE, "Title updated", incident.title, title)
                incident.title = title
                changed = True

        if data.description is not None:
            description = sanitize_description(data.description)
            if description != incident.description:
                IncidentService._record(db, incident, user, UPDATE_TYPE_FIELD_UPDATE, "Description updated")
                incident.description = description
                changed = True

        if data.category_id is not None and data.category_id != incident.category_id:
            category = IncidentService.get_active_category(db, data.category_id)
            IncidentService._record(
                db, incident, user, UPDATE_TYPE_FIELD_UPDATE, "Category updated",
                str(incident.category_id), str(category.id),
            )
            incident.category_id = category.id
            changed = True

        if data.priority is not None and data.priority != incident.priority:
            IncidentService._record(
                db, incident, user, UPDATE_TYPE_FIELD_UPDATE, "Priority updated",
                PRIORITIES[incident.priority], PRIORITIES[data.priority],
            )
            incident.priority = data.priority
            changed = True

        if data.status_id is not None and data.status_id != incident.status_id:
            status = db.query(IncidentStatus).filter(
                IncidentStatus.id == data.status_id,
                IncidentStatus.is_active == True,
            ).first()
            if not status:
                raise NotFoundError("Status")
            old_status = incident.status.display_name if incident.status else str(incident.status_id)
            IncidentService._record(
                db, incident, user, UPDATE_TYPE_STATUS_CHANGE,
                f"Status changed to {status.display_name}", old_status, status.display_name,
            )
            incident.status_id = status.id
            incident.closed_at = now if status.id == STATUS_CLOSED else None
            changed = True

        if changed:
            incident.updated_at = now
            db.commit()
            db.refresh(incident)
        return incident

    @staticmethod
    def assign_incident(
        db: Session,
        incident: Incident,
        user: User,
        data: AssignIncidentRequest,
    ) -> Incident:
        """Hand an incident over to another active user."""
        if not IncidentService._can_modify(incident, user):
            raise ForbiddenError("Only the owner or an administrator can reassign this incident")

        assignee = db.query(User).filter(User.id == data.user_id, User.is_active == True).first()
        if not assignee:
            raise NotFoundError("User")

        if assignee.id != incident.user_id:
            comment = sanitize_comment(data.comment) if data.comment else f"Assigned to {assignee.username}"
            IncidentService._record(
                db, incident, user, UPDATE_TYPE_ASSIGNMENT, comment,
                str(incident.user_id), str(assignee.id),
            )
            incident.user_id = assignee.id
            incident.updated_at = datetime.utcnow()
            db.commit()
            db.refresh(incident)
            logger.info(f"Incident {incident.id} assigned to user {assignee.id}")
        return incident

    @staticmethod
    def delete_incident(db: Session, incident: Incident, user: User) -> None:
        if not IncidentService._can_modify(incident, user):
            raise ForbiddenError("Only the owner or an administrator can delete this incident")
        db.delete(incident)
        db.commit()
        logger.info(f"Incident {incident.id} deleted by user {user.id}")

    @staticmethod
    def add_comment(db: Session, incident: Incident, user: User, comment: str) -> IncidentUpdate:
        text = sanitize_comment(comment)
        if not text:
            raise ValidationFailedError("Comment cannot be empty")
        entry = IncidentService._record(db, incident, user, UPDATE_TYPE_COMMENT, text)
        incident.updated_at = datetime.utcnow()
        db.commit()
        db.refresh(entry)
        return entry

    @staticmethod
    def get_updates(db: Session, incident_id: UUID) -> list[IncidentUpdate]:
        return db.query(IncidentUpdate).filter(
            IncidentUpdate.incident_id == incident_id
        ).order_by(IncidentUpdate.created_at).all()

    @staticmethod
    def get_categories(db: Session, include_inactive: bool = False) -> list[IncidentCategory]:
        query = db.query(IncidentCategory)
        if not include_inactive:
            query = query.filter(IncidentCategory.is_active == True)
        return query.order_by(IncidentCategory.name).all()

    @staticmethod
    def get_statuses(db: Session) -> list[IncidentStatus]:
        return db.query(IncidentStatus).filter(
            IncidentStatus.is_active == True
        ).order_by(IncidentStatus.order_sequence).all()

    @staticmethod
    def get_priorities() -> list[dict]:
        return [{"value": value, "name": name} for value, name in PRIORITIES.items()]
