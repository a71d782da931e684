from typing import List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.orm import Session

from incident_api.api.deps import get_db, get_current_user
from incident_api.models import User
from incident_api.schemas.incidents import (
    AssignIncidentRequest,
    CategoryResponse,
    CommentCreate,
    IncidentCreate,
    IncidentListResponse,
    IncidentResponse,
    IncidentUpdateRequest,
    IncidentUpdateResponse,
    PriorityResponse,
    StatusResponse,
)
from incident_api.services.incident_service import IncidentService


router = APIRouter(prefix="/incidents", tags=["Incidents"])


# Reference data routes come first so they are not captured by /{incident_id}
@router.get("/categories", response_model=List[CategoryResponse])
def list_categories(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return IncidentService.get_categories(db)


@router.get("/statuses", response_model=List[StatusResponse])
def list_statuses(
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return IncidentService.get_statuses(db)


@router.get("/priorities", response_model=List[PriorityResponse])
def list_priorities(
    current_user: User = Depends(get_current_user),
):
    return IncidentService.get_priorities()


@router.get("", response_model=IncidentListResponse)
def list_incidents(
    mine: bool = Query(False, description="Only incidents owned by the current user"),
    category_id: Optional[UUID] = Query(None),
    status_id: Optional[int] = Query(None),
    skip: int = Query(0, ge=0),
    limit: int = Query(50, ge=1, le=200),
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """List incidents, newest first."""
    incidents, total = IncidentService.list_incidents(
        db,
        user_id=current_user.id if mine else None,
        category_id=category_id,
        status_id=status_id,
        skip=skip,
        limit=limit,
    )
    return IncidentListResponse(
        incidents=[IncidentResponse.model_validate(i) for i in incidents],
        total=total,
    )


@router.post("", response_model=IncidentResponse, status_code=status.HTTP_201_CREATED)
def create_incident(
    data: IncidentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Report a new incident. It starts in the Open status."""
    return IncidentService.create_incident(db, current_user, data)


@router.get("/{incident_id}", response_model=IncidentResponse)
def get_incident(
    incident_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    return IncidentService.get_incident(db, incident_id)


@router.put("/{incident_id}", response_model=IncidentResponse)
def update_incident(
    incident_id: UUID,
    data: IncidentUpdateRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Update fields and/or status. Only the owner or an admin may do this."""
    incident = IncidentService.get_incident(db, incident_id)
    return IncidentService.update_incident(db, incident, current_user, data)


@router.delete("/{incident_id}", status_code=status.HTTP_204_NO_CONTENT)
def delete_incident(
    incident_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    incident = IncidentService.get_incident(db, incident_id)
    IncidentService.delete_incident(db, incident, current_user)


@router.put("/{incident_id}/assign", response_model=IncidentResponse)
def assign_incident(
    incident_id: UUID,
    data: AssignIncidentRequest,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    incident = IncidentService.get_incident(db, incident_id)
    return IncidentService.assign_incident(db, incident, current_user, data)


@router.post(
    "/{incident_id}/comments",
    response_model=IncidentUpdateResponse,
    status_code=status.HTTP_201_CREATED,
)
def add_comment(
    incident_id: UUID,
    data: CommentCreate,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    incident = IncidentService.get_incident(db, incident_id)
    return IncidentService.add_comment(db, incident, current_user, data.comment)


@router.get("/{incident_id}/updates", response_model=List[IncidentUpdateResponse])
def list_updates(
    incident_id: UUID,
    db: Session = Depends(get_db),
    current_user: User = Depends(get_current_user),
):
    """Comments and change history, oldest first."""
    IncidentService.get_incident(db, incident_id)
    return IncidentService.get_updates(db, incident_id)
