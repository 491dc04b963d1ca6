"""Pydantic models for API requests and responses."""
from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from fireline.db.models import MAX_ID


class IncidentType(str, Enum):
    fire = "fire"
    ems = "ems"
    rescue = "rescue"
    hazmat = "hazmat"
    public_assist = "public_assist"
    other = "other"


class Priority(str, Enum):
    high = "high"
    medium = "medium"
    low = "low"


class IncidentStatus(str, Enum):
    active = "active"
    pending = "pending"
    closed = "closed"


# --- Incident writes ---


class CrewMemberIn(BaseModel):
    user_id: int = Field(..., gt=0, le=MAX_ID)
    role_on_incident: str | None = None  # "Firefighter" when missing or empty


class IncidentFields(BaseModel):
    title: str | None = None
    incident_type: IncidentType
    priority: Priority
    address: str
    city: str
    state: str
    zip_code: str
    latitude: float | None = Field(None, ge=-90, le=90)
    longitude: float | None = Field(None, ge=-180, le=180)
    description: str
    reported_at: datetime | None = None  # create: now when omitted; update: unchanged
    initial_crew: list[CrewMemberIn] = Field(default_factory=list)


class IncidentCreateRequest(IncidentFields):
    status: IncidentStatus = IncidentStatus.active
    created_by_user_id: int = Field(..., gt=0, le=MAX_ID)


class IncidentUpdateRequest(IncidentFields):
    status: IncidentStatus | None = None  # unchanged when omitted


class IncidentCreatedResponse(BaseModel):
    message: str = "Incident created successfully"
    incident_id: int
    incident_code: str


class MessageResponse(BaseModel):
    message: str
    incident_id: int | None = None


class ErrorResponse(BaseModel):
    error: str
    details: str | None = None


class DetailResponse(BaseModel):
    """Body of FastAPI's HTTPException responses (404, search 400)."""

    detail: str


class NoteCreateRequest(BaseModel):
    content: str = Field(..., min_length=1)
    user_id: int | None = Field(None, gt=0, le=MAX_ID)


class NoteCreatedResponse(BaseModel):
    message: str = "Note added"
    note_id: int


# --- Incident reads ---


class CrewAssignmentOut(BaseModel):
    id: int
    user_id: int
    user_name: str | None = None
    role_on_incident: str
    assigned_at: str
    released_at: str | None = None


class AttachmentOut(BaseModel):
    id: int
    incident_id: int
    user_id: int | None = None
    original_file_name: str
    file_name_on_disk: str
    file_path_relative: str
    mime_type: str | None = None
    file_size_bytes: int | None = None
    uploaded_at: str


class NoteOut(BaseModel):
    id: int
    user_id: int | None = None
    content: str
    created_at: str


class IncidentOut(BaseModel):
    id: int
    incident_code: str | None = None
    title: str | None = None
    incident_type: str
    priority: str
    status: str
    address: str
    city: str | None = None
    state: str | None = None
    zip_code: str | None = None
    latitude: float | None = None
    longitude: float | None = None
    description: str | None = None
    reported_at: str
    created_by_user_id: int
    created_at: str
    updated_at: str


class IncidentDetail(IncidentOut):
    assigned_personnel: list[CrewAssignmentOut] = Field(default_factory=list)
    assigned_attachments: list[AttachmentOut] = Field(default_factory=list)
    notes: list[NoteOut] = Field(default_factory=list)


class RecentActivityItem(BaseModel):
    id: int
    incident_code: str | None = None
    title: str | None = None
    status: str
    updated_at: str


# --- Personnel / dashboard ---


class PersonnelItem(BaseModel):
    id: int
    full_name: str
    role: str


class IncidentTypeCount(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    incident_type: str
    count: int


class DashboardStats(BaseModel):
    """Serialized with camelCase keys for the dashboard widgets."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    active_incidents: int = 0
    pending_incidents: int = 0
    incidents_today: int = 0
    crews_available: int = 0
    equipment_in_use: int = 0
    total_incidents: int = 0
    incident_type_breakdown: list[IncidentTypeCount] = Field(default_factory=list)


class HealthResponse(BaseModel):
    status: str = "ok"
    database: bool = False
