"""Repository pattern for incidents, crew assignments, personnel and dashboard counts.

Every statement is built with SQLAlchemy constructs, so user input is always
sent as bound parameters. Repositories never commit: the caller owns the
transaction (see fireline.transaction).
"""
from __future__ import annotations

import logging
from contextlib import contextmanager
from datetime import datetime, timedelta, timezone
from typing import Any, Iterator

from sqlalchemy import delete, func, insert, or_, select, update
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from fireline.db.models import MAX_ID, Equipment, Incident, IncidentPersonnel, Note, User
from fireline.errors import StorageError

logger = logging.getLogger(__name__)


def to_iso(dt: datetime) -> str:
    """UTC ISO timestamp with a Z suffix. Naive datetimes are taken as UTC."""
    if dt.tzinfo is not None:
        dt = dt.astimezone(timezone.utc).replace(tzinfo=None)
    return dt.replace(microsecond=0).isoformat() + "Z"


def utc_now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def format_incident_code(incident_id: int, reported_at: str) -> str:
    """INC-<year>-<id padded to 5 digits>, year taken from reported_at."""
    return f"INC-{reported_at[:4]}-{incident_id:05d}"


@contextmanager
def _storage(operation: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as e:
        logger.warning("%s failed: %s", operation, e)
        raise StorageError(f"{operation} failed", cause=e) from e


def _incident_to_dict(inc: Incident) -> dict[str, Any]:
    return {
        "id": inc.id,
        "incident_code": inc.incident_code,
        "title": inc.title,
        "incident_type": inc.incident_type,
        "priority": inc.priority,
        "status": inc.status,
        "address": inc.address,
        "city": inc.city,
        "state": inc.state,
        "zip_code": inc.zip_code,
        "latitude": inc.latitude,
        "longitude": inc.longitude,
        "description": inc.description,
        "reported_at": inc.reported_at,
        "created_by_user_id": inc.created_by_user_id,
        "created_at": inc.created_at,
        "updated_at": inc.updated_at,
    }


class IncidentRepository:
    """Repository for incidents, crew assignments and notes."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def insert_incident(self, fields: dict[str, Any]) -> int:
        """Insert one incident row. Returns the generated id."""
        now = utc_now_iso()
        incident = Incident(**fields, created_at=now, updated_at=now)
        self.session.add(incident)
        with _storage("insert incident"):
            await self.session.flush()
        return incident.id

    async def assign_incident_code(self, incident_id: int, reported_at: str) -> str:
        """Derive and store the human-readable code once the id is known."""
        code = format_incident_code(incident_id, reported_at)
        with _storage("assign incident code"):
            await self.session.execute(
                update(Incident).where(Incident.id == incident_id).values(incident_code=code)
            )
        return code

    async def insert_crew_assignments(self, incident_id: int, members: list[dict[str, Any]]) -> None:
        """Bulk insert one crew row per member, all bound to incident_id. No-op for an empty list."""
        if not members:
            return
        assigned_at = utc_now_iso()
        rows = [
            {
                "incident_id": incident_id,
                "user_id": m["user_id"],
                "role_on_incident": m["role_on_incident"],
                "assigned_at": assigned_at,
            }
            for m in members
        ]
        with _storage("insert crew assignments"):
            await self.session.execute(insert(IncidentPersonnel), rows)

    async def replace_crew_assignments(self, incident_id: int, members: list[dict[str, Any]]) -> None:
        """Drop the incident's crew rows and insert the given list."""
        with _storage("clear crew assignments"):
            await self.session.execute(delete(IncidentPersonnel).where(IncidentPersonnel.incident_id == incident_id))
        await self.insert_crew_assignments(incident_id, members)

    async def get_incident(self, incident_id: int) -> dict[str, Any] | None:
        """Get incident row by id (no crew, notes or attachments)."""
        with _storage("get incident"):
            result = await self.session.execute(select(Incident).where(Incident.id == incident_id))
        inc = result.scalar_one_or_none()
        return _incident_to_dict(inc) if inc else None

    async def get_incident_detail(self, incident_id: int) -> dict[str, Any] | None:
        """Get incident with assigned personnel, attachments (newest first) and notes."""
        stmt = (
            select(Incident)
            .where(Incident.id == incident_id)
            .options(
                selectinload(Incident.crew).selectinload(IncidentPersonnel.user),
                selectinload(Incident.attachments),
                selectinload(Incident.notes),
            )
        )
        with _storage("get incident detail"):
            result = await self.session.execute(stmt)
        inc = result.scalar_one_or_none()
        if not inc:
            return None
        detail = _incident_to_dict(inc)
        detail["assigned_personnel"] = [
            {
                "id": c.id,
                "user_id": c.user_id,
                "user_name": c.user.full_name if c.user else None,
                "role_on_incident": c.role_on_incident,
                "assigned_at": c.assigned_at,
                "released_at": c.released_at,
            }
            for c in sorted(inc.crew, key=lambda c: c.id)
        ]
        detail["assigned_attachments"] = [
            {
                "id": a.id,
                "incident_id": a.incident_id,
                "user_id": a.user_id,
                "original_file_name": a.original_file_name,
                "file_name_on_disk": a.file_name_on_disk,
                "file_path_relative": a.file_path_relative,
                "mime_type": a.mime_type,
                "file_size_bytes": a.file_size_bytes,
                "uploaded_at": a.uploaded_at,
            }
            for a in sorted(inc.attachments, key=lambda a: (a.uploaded_at, a.id), reverse=True)
        ]
        detail["notes"] = [
            {"id": n.id, "user_id": n.user_id, "content": n.content, "created_at": n.created_at}
            for n in sorted(inc.notes, key=lambda n: (n.created_at, n.id))
        ]
        return detail

    async def list_incidents(
        self,
        limit: int = 1000,
        status: str | None = None,
        priority: str | None = None,
        incident_type: str | None = None,
    ) -> list[dict[str, Any]]:
        """List incidents, newest first. Filters are exact matches."""
        stmt = select(Incident)
        if status:
            stmt = stmt.where(Incident.status == status)
        if priority:
            stmt = stmt.where(Incident.priority == priority)
        if incident_type:
            stmt = stmt.where(Incident.incident_type == incident_type)
        stmt = stmt.order_by(Incident.id.desc()).limit(limit)
        with _storage("list incidents"):
            result = await self.session.execute(stmt)
        return [_incident_to_dict(i) for i in result.scalars().all()]

    async def recent_activity(self, limit: int = 3) -> list[dict[str, Any]]:
        """Most recently updated incidents."""
        stmt = (
            select(Incident.id, Incident.incident_code, Incident.title, Incident.status, Incident.updated_at)
            .order_by(Incident.updated_at.desc(), Incident.id.desc())
            .limit(limit)
        )
        with _storage("recent activity"):
            result = await self.session.execute(stmt)
        return [dict(row._mapping) for row in result.all()]

    async def search_incidents(self, term: str, limit: int = 100) -> list[dict[str, Any]]:
        """An all-digits term matches the id; otherwise exact code or substring of title, address, description.

        Only ASCII digits count, and a number too large to be an id is
        searched as text. Mixed terms such as "5abc" are text searches.
        """
        term = term.strip()
        if term.isascii() and term.isdigit() and int(term) <= MAX_ID:
            stmt = select(Incident).where(Incident.id == int(term))
        else:
            stmt = (
                select(Incident)
                .where(
                    or_(
                        Incident.incident_code == term,
                        Incident.title.contains(term, autoescape=True),
                        Incident.address.contains(term, autoescape=True),
                        Incident.description.contains(term, autoescape=True),
                    )
                )
                .order_by(Incident.reported_at.desc(), Incident.id.desc())
                .limit(limit)
            )
        with _storage("search incidents"):
            result = await self.session.execute(stmt)
        return [_incident_to_dict(i) for i in result.scalars().all()]

    async def update_incident(self, incident_id: int, fields: dict[str, Any]) -> bool:
        """Overwrite incident fields. Returns False when the incident does not exist."""
        with _storage("update incident"):
            result = await self.session.execute(select(Incident).where(Incident.id == incident_id))
            incident = result.scalar_one_or_none()
            if not incident:
                return False
            for key, value in fields.items():
                setattr(incident, key, value)
            incident.updated_at = utc_now_iso()
            await self.session.flush()
        return True

    async def delete_incident(self, incident_id: int) -> bool:
        """Delete incident; crew, notes and attachment rows cascade. Returns False if not found."""
        with _storage("delete incident"):
            result = await self.session.execute(delete(Incident).where(Incident.id == incident_id))
        return result.rowcount > 0

    async def add_note(self, incident_id: int, content: str, user_id: int | None = None) -> int | None:
        """Add note to incident. Returns note id or None if incident not found."""
        with _storage("add note"):
            result = await self.session.execute(select(Incident.id).where(Incident.id == incident_id))
            if result.scalar_one_or_none() is None:
                return None
            note = Note(incident_id=incident_id, user_id=user_id, content=content, created_at=utc_now_iso())
            self.session.add(note)
            await self.session.flush()
        return note.id


class PersonnelRepository:
    """Read-only access to personnel."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_personnel(self, status: str | None = None, station_id: int | None = None) -> list[dict[str, Any]]:
        """Non-admin personnel, optionally filtered by availability and station."""
        stmt = select(User.id, User.full_name, User.role).where(User.role != "Admin")
        if status:
            stmt = stmt.where(User.availability_status == status)
        if station_id is not None:
            stmt = stmt.where(User.station_id == station_id)
        stmt = stmt.order_by(User.full_name, User.id)
        with _storage("list personnel"):
            result = await self.session.execute(stmt)
        return [dict(row._mapping) for row in result.all()]


class DashboardRepository:
    """Aggregate counts for the dashboard."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def _count(self, stmt) -> int:
        result = await self.session.execute(stmt)
        return result.scalar_one()

    async def stats(self, now: datetime | None = None) -> dict[str, Any]:
        now = now or datetime.now(timezone.utc)
        since = to_iso(now - timedelta(hours=24))
        count_incidents = select(func.count()).select_from(Incident)
        with _storage("dashboard stats"):
            active = await self._count(count_incidents.where(Incident.status == "active"))
            pending = await self._count(count_incidents.where(Incident.status == "pending"))
            today = await self._count(count_incidents.where(Incident.reported_at >= since))
            crews_available = await self._count(
                select(func.count()).select_from(User).where(User.availability_status == "Available")
            )
            equipment_in_use = await self._count(
                select(func.count()).select_from(Equipment).where(Equipment.status == "In_Use")
            )
            total = await self._count(count_incidents)
            breakdown = await self.session.execute(
                select(Incident.incident_type, func.count().label("count"))
                .group_by(Incident.incident_type)
                .order_by(Incident.incident_type)
            )
        return {
            "active_incidents": active,
            "pending_incidents": pending,
            "incidents_today": today,
            "crews_available": crews_available,
            "equipment_in_use": equipment_in_use,
            "total_incidents": total,
            "incident_type_breakdown": [
                {"incident_type": incident_type, "count": count} for incident_type, count in breakdown.all()
            ],
        }
