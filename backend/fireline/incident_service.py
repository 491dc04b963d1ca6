"""Incident workflows (transactional create/update) and CRUD helpers."""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, TypeVar

from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from fireline.config import settings
from fireline.db.repository import (
    DashboardRepository,
    IncidentRepository,
    PersonnelRepository,
    to_iso,
    utc_now_iso,
)
from fireline.errors import (
    CreationFailed,
    IncidentNotFound,
    IncidentWriteFailed,
    TransactionTimeout,
    UpdateFailed,
    ValidationError,
)
from fireline.models import CrewMemberIn, IncidentCreateRequest, IncidentFields, IncidentUpdateRequest
from fireline.transaction import IncidentTransaction

logger = logging.getLogger(__name__)

T = TypeVar("T")

REQUIRED_TEXT_FIELDS = ("address", "city", "state", "zip_code", "description")


@dataclass(frozen=True)
class CreationResult:
    incident_id: int
    incident_code: str


def validate_incident_fields(payload: IncidentFields) -> None:
    """Reject blank required fields before any transaction is opened."""
    missing = [name for name in REQUIRED_TEXT_FIELDS if not (getattr(payload, name) or "").strip()]
    if missing:
        raise ValidationError(f"Missing required fields: {', '.join(missing)}", fields=missing)


def crew_rows(crew: list[CrewMemberIn], default_role: str) -> list[dict[str, Any]]:
    """Crew members as repository rows; blank roles fall back to default_role."""
    return [
        {"user_id": m.user_id, "role_on_incident": (m.role_on_incident or "").strip() or default_role}
        for m in crew
    ]


def incident_row(payload: IncidentFields, stamp_reported_at: bool = True) -> dict[str, Any]:
    """Column values for the incidents table. Enums become their string values.

    A missing reported_at becomes now when stamp_reported_at is set, and is
    left out of the row otherwise (updates keep the stored value).
    """
    row = payload.model_dump(exclude={"initial_crew", "reported_at"}, mode="json")
    if row.get("status") is None:
        row.pop("status", None)
    if payload.reported_at:
        row["reported_at"] = to_iso(payload.reported_at)
    elif stamp_reported_at:
        row["reported_at"] = utc_now_iso()
    return row


class TransactionalWorkflow:
    """Runs a unit of work inside one bounded transaction on one pooled connection.

    begin -> work -> commit, with rollback on every failure path. A rollback
    failure is logged by IncidentTransaction and never replaces the original
    error. Any Exception raised inside the transaction surfaces as `failure`,
    except IncidentNotFound. Cancellation propagates unchanged after the
    rollback.
    """

    failure: type[IncidentWriteFailed] = IncidentWriteFailed

    def __init__(
        self,
        session_maker: sessionmaker[AsyncSession],
        timeout: float | None = None,
        default_role: str | None = None,
        repository_factory: Callable[[AsyncSession], IncidentRepository] = IncidentRepository,
    ):
        self.session_maker = session_maker
        self.timeout = settings.transaction_timeout_seconds if timeout is None else timeout
        self.default_role = default_role or settings.default_crew_role
        self.repository_factory = repository_factory

    async def run(self, work: Callable[[IncidentRepository], Awaitable[T]]) -> T:
        async with self.session_maker() as session:
            tx = IncidentTransaction(session)
            repo = self.repository_factory(session)

            async def scoped() -> T:
                await tx.begin()
                result = await work(repo)
                await tx.commit()
                return result

            try:
                return await asyncio.wait_for(scoped(), timeout=self.timeout)
            except asyncio.TimeoutError as e:
                cause = TransactionTimeout(self.timeout)
                await self._abort(tx, cause)
                raise self.failure(cause) from e
            except IncidentNotFound as e:
                await self._abort(tx, e)
                raise
            except Exception as e:
                # StorageError, or a driver error outside SQLAlchemy's hierarchy
                await self._abort(tx, e)
                raise self.failure(e) from e
            except BaseException as e:
                await self._abort(tx, e)
                raise

    async def _abort(self, tx: IncidentTransaction, cause: BaseException) -> None:
        if tx.is_open:
            logger.warning("Transaction rolled back due to error: %s", cause)
            await tx.rollback()


class IncidentCreationWorkflow(TransactionalWorkflow):
    """Creates an incident and its initial crew atomically.

    Not idempotent: every call allocates a new incident id. Nothing is
    retried here, since a retried creation would duplicate the incident.
    """

    failure = CreationFailed

    async def create_incident(self, payload: IncidentCreateRequest) -> CreationResult:
        validate_incident_fields(payload)
        row = incident_row(payload)
        crew = crew_rows(payload.initial_crew, self.default_role)

        async def work(repo: IncidentRepository) -> CreationResult:
            incident_id = await repo.insert_incident(row)
            code = await repo.assign_incident_code(incident_id, row["reported_at"])
            # Crew rows reference the new id, so this strictly follows the insert
            if crew:
                await repo.insert_crew_assignments(incident_id, crew)
            return CreationResult(incident_id=incident_id, incident_code=code)

        result = await self.run(work)
        logger.info("Incident %s created (%s, %d crew)", result.incident_id, result.incident_code, len(crew))
        return result


class IncidentUpdateWorkflow(TransactionalWorkflow):
    """Overwrites incident fields and replaces its crew list atomically."""

    failure = UpdateFailed

    async def update_incident(self, incident_id: int, payload: IncidentUpdateRequest) -> None:
        validate_incident_fields(payload)
        row = incident_row(payload, stamp_reported_at=False)
        crew = crew_rows(payload.initial_crew, self.default_role)

        async def work(repo: IncidentRepository) -> None:
            if not await repo.update_incident(incident_id, row):
                raise IncidentNotFound(incident_id)
            await repo.replace_crew_assignments(incident_id, crew)

        await self.run(work)
        logger.info("Incident %s updated (%d crew)", incident_id, len(crew))


async def list_incidents(
    session_maker: sessionmaker[AsyncSession],
    limit: int = 1000,
    status: str | None = None,
    priority: str | None = None,
    incident_type: str | None = None,
) -> list[dict[str, Any]]:
    """List incidents (newest first)."""
    async with session_maker() as session:
        repo = IncidentRepository(session)
        return await repo.list_incidents(limit=limit, status=status, priority=priority, incident_type=incident_type)


async def recent_activity(session_maker: sessionmaker[AsyncSession], limit: int = 3) -> list[dict[str, Any]]:
    async with session_maker() as session:
        return await IncidentRepository(session).recent_activity(limit=limit)


async def search_incidents(session_maker: sessionmaker[AsyncSession], term: str, limit: int = 100) -> list[dict[str, Any]]:
    async with session_maker() as session:
        return await IncidentRepository(session).search_incidents(term, limit=limit)


async def get_incident_detail(session_maker: sessionmaker[AsyncSession], incident_id: int) -> dict[str, Any] | None:
    """Incident with crew, attachments and notes."""
    async with session_maker() as session:
        return await IncidentRepository(session).get_incident_detail(incident_id)


async def delete_incident(session_maker: sessionmaker[AsyncSession], incident_id: int) -> bool:
    """Delete incident and everything hanging off it. Returns False if not found."""
    async with session_maker() as session:
        async with session.begin():
            deleted = await IncidentRepository(session).delete_incident(incident_id)
    if deleted:
        logger.info("Incident %s deleted", incident_id)
    return deleted


async def add_incident_note(
    session_maker: sessionmaker[AsyncSession],
    incident_id: int,
    content: str,
    user_id: int | None = None,
) -> int | None:
    """Add note to incident. Returns note id or None."""
    async with session_maker() as session:
        async with session.begin():
            return await IncidentRepository(session).add_note(incident_id, content=content, user_id=user_id)


async def list_personnel(
    session_maker: sessionmaker[AsyncSession],
    status: str | None = None,
    station_id: int | None = None,
) -> list[dict[str, Any]]:
    async with session_maker() as session:
        return await PersonnelRepository(session).list_personnel(status=status, station_id=station_id)


async def dashboard_stats(session_maker: sessionmaker[AsyncSession]) -> dict[str, Any]:
    async with session_maker() as session:
        return await DashboardRepository(session).stats()
