from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, Field


class IncidentCreate(BaseModel):
    title: str = Field(..., min_length=5, max_length=200)
    description: str = Field(..., min_length=10, max_length=5000)
    category_id: UUID
    priority: int = Field(default=3, ge=1, le=5)


class IncidentUpdateRequest(BaseModel):
    """Partial update; omitted fields are left unchanged."""
    title: Optional[str] = Field(None, min_length=5, max_length=200)
    description: Optional[str] = Field(None, min_length=10, max_length=5000)
    category_id: Optional[UUID] = None
    priority: Optional[int] = Field(None, ge=1, le=5)
    status_id: Optional[int] = Field(None, ge=1)


class AssignIncidentRequest(BaseModel):
    user_id: UUID
    comment: Optional[str] = Field(None, max_length=2000)


class CommentCreate(BaseModel):
    comment: str = Field(..., min_length=1, max_length=2000)


class CategoryResponse(BaseModel):
    id: UUID
    name: str
    description: Optional[str] = None
    color: Optional[str] = None
    is_active: bool

    model_config = {"from_attributes": True}


class StatusResponse(BaseModel):
    id: int
    name: str
    display_name: str
    description: Optional[str] = None
    order_sequence: int

    model_config = {"from_attributes": True}


class PriorityResponse(BaseModel):
    value: int
    name: str


class IncidentUpdateResponse(BaseModel):
    id: UUID
    incident_id: UUID
    author_id: UUID
    comment: str
    update_type: str
    old_value: Optional[str] = None
    new_value: Optional[str] = None
    created_at: datetime

    model_config = {"from_attributes": True}


class IncidentResponse(BaseModel):
    id: UUID
    title: str
    description: str
    user_id: UUID
    category_id: UUID
    status_id: int
    priority: int
    created_at: datetime
    updated_at: Optional[datetime] = None
    closed_at: Optional[datetime] = None
    category: Optional[CategoryResponse] = None
    status: Optional[StatusResponse] = None

    model_config = {"from_attributes": True}


class IncidentListResponse(BaseModel):
    incidents: List[IncidentResponse]
    total: int
