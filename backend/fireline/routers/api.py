"""API routes for Fireline."""
import logging
from typing import Annotated, Any

from fastapi import APIRouter, Depends, HTTPException, Path, Query, Request
from sqlalchemy import text
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from fireline import incident_service
from fireline.config import settings
from fireline.db.models import MAX_ID
from fireline.errors import IncidentNotFound
from fireline.models import (
    DashboardStats,
    DetailResponse,
    ErrorResponse,
    HealthResponse,
    IncidentCreatedResponse,
    IncidentCreateRequest,
    IncidentDetail,
    IncidentOut,
    IncidentStatus,
    IncidentType,
    IncidentUpdateRequest,
    MessageResponse,
    NoteCreatedResponse,
    NoteCreateRequest,
    PersonnelItem,
    Priority,
    RecentActivityItem,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1", tags=["api"])

# Ids above MAX_ID overflow the database driver; reject them as 422 up front
IncidentId = Annotated[int, Path(gt=0, le=MAX_ID)]
NOT_FOUND = {404: {"model": DetailResponse}}


def get_session_maker(request: Request) -> sessionmaker[AsyncSession]:
    """Session factory created in the app lifespan."""
    return request.app.state.session_maker


def get_creation_workflow(
    session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> incident_service.IncidentCreationWorkflow:
    return incident_service.IncidentCreationWorkflow(session_maker)


def get_update_workflow(
    session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> incident_service.IncidentUpdateWorkflow:
    return incident_service.IncidentUpdateWorkflow(session_maker)


@router.get("/health", response_model=HealthResponse)
async def health(session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker)) -> HealthResponse:
    database = False
    try:
        async with session_maker() as session:
            await session.execute(text("SELECT 1"))
        database = True
    except SQLAlchemyError as e:
        logger.warning("health check database failed: %s", e)
    return HealthResponse(status="ok", database=database)


# --- Incidents ---


@router.get("/incidents", response_model=list[IncidentOut])
async def incidents_list(
    limit: int | None = Query(None, ge=1),
    status: IncidentStatus | None = None,
    priority: Priority | None = None,
    incident_type: IncidentType | None = None,
    session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> list[dict[str, Any]]:
    return await incident_service.list_incidents(
        session_maker,
        limit=min(limit or settings.list_limit, settings.list_limit),
        status=status.value if status else None,
        priority=priority.value if priority else None,
        incident_type=incident_type.value if incident_type else None,
    )


@router.get("/incidents/recent-activity", response_model=list[RecentActivityItem])
async def incidents_recent_activity(
    session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> list[dict[str, Any]]:
    return await incident_service.recent_activity(session_maker, limit=settings.recent_activity_limit)


@router.get("/incidents/search", response_model=list[IncidentOut], responses={400: {"model": DetailResponse}})
async def incidents_search(
    q: str | None = None,
    session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> list[dict[str, Any]]:
    if not q or not q.strip():
        raise HTTPException(status_code=400, detail="Search term 'q' is required")
    return await incident_service.search_incidents(session_maker, q, limit=settings.search_limit)


@router.post(
    "/incidents/create",
    response_model=IncidentCreatedResponse,
    status_code=201,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def incidents_create(
    req: IncidentCreateRequest,
    workflow: incident_service.IncidentCreationWorkflow = Depends(get_creation_workflow),
) -> IncidentCreatedResponse:
    # ValidationError and CreationFailed are rendered by the handlers in fireline.main
    result = await workflow.create_incident(req)
    return IncidentCreatedResponse(incident_id=result.incident_id, incident_code=result.incident_code)


@router.get("/incidents/{incident_id}", response_model=IncidentDetail, responses=NOT_FOUND)
async def incidents_get(
    incident_id: IncidentId,
    session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> dict[str, Any]:
    row = await incident_service.get_incident_detail(session_maker, incident_id)
    if not row:
        raise HTTPException(status_code=404, detail="Incident not found")
    return row


@router.put(
    "/incidents/{incident_id}",
    response_model=MessageResponse,
    responses={**NOT_FOUND, 400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def incidents_update(
    incident_id: IncidentId,
    req: IncidentUpdateRequest,
    workflow: incident_service.IncidentUpdateWorkflow = Depends(get_update_workflow),
) -> MessageResponse:
    try:
        await workflow.update_incident(incident_id, req)
    except IncidentNotFound:
        raise HTTPException(status_code=404, detail="Incident not found")
    return MessageResponse(message="Incident updated successfully", incident_id=incident_id)


@router.delete("/incidents/{incident_id}", response_model=MessageResponse, responses=NOT_FOUND)
async def incidents_delete(
    incident_id: IncidentId,
    session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> MessageResponse:
    if not await incident_service.delete_incident(session_maker, incident_id):
        raise HTTPException(status_code=404, detail="Incident not found")
    return MessageResponse(message="Incident and all related data deleted successfully", incident_id=incident_id)


@router.post(
    "/incidents/{incident_id}/notes",
    response_model=NoteCreatedResponse,
    status_code=201,
    responses=NOT_FOUND,
)
async def incidents_add_note(
    incident_id: IncidentId,
    req: NoteCreateRequest,
    session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> NoteCreatedResponse:
    note_id = await incident_service.add_incident_note(session_maker, incident_id, req.content, user_id=req.user_id)
    if note_id is None:
        raise HTTPException(status_code=404, detail="Incident not found")
    return NoteCreatedResponse(note_id=note_id)


# --- Personnel / dashboard ---


@router.get("/personnel", response_model=list[PersonnelItem])
async def personnel_list(
    status: str | None = None,
    station_id: int | None = Query(None, ge=0, le=MAX_ID),
    session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> list[dict[str, Any]]:
    return await incident_service.list_personnel(session_maker, status=status, station_id=station_id)


@router.get("/dashboard/stats", response_model=DashboardStats)
async def dashboard_stats(
    session_maker: sessionmaker[AsyncSession] = Depends(get_session_maker),
) -> DashboardStats:
    return DashboardStats(**await incident_service.dashboard_stats(session_maker))
