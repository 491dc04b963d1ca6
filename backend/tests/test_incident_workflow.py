"""Tests for the transactional incident create/update workflows."""
import asyncio
import logging
from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock

import pytest
from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError, OperationalError

from fireline.db.models import Incident, IncidentPersonnel
from fireline.db.repository import IncidentRepository
from fireline.errors import (
    CreationFailed,
    IncidentNotFound,
    StorageError,
    TransactionTimeout,
    UpdateFailed,
    ValidationError,
)
from fireline.incident_service import (
    IncidentCreationWorkflow,
    IncidentUpdateWorkflow,
    crew_rows,
    incident_row,
)
from fireline.models import CrewMemberIn, IncidentCreateRequest, IncidentUpdateRequest


def _payload(**overrides) -> IncidentCreateRequest:
    data = {
        "incident_type": "fire",
        "priority": "high",
        "address": "123 Main St",
        "city": "Anytown",
        "state": "NY",
        "zip_code": "10001",
        "description": "Structure fire",
        "created_by_user_id": 1,
        "initial_crew": [{"user_id": 5, "role_on_incident": "Captain"}, {"user_id": 7}],
    }
    data.update(overrides)
    return IncidentCreateRequest(**data)


async def _count_incidents(session_maker) -> int:
    async with session_maker() as session:
        return (await session.execute(select(func.count()).select_from(Incident))).scalar_one()


async def _crew(session_maker, incident_id: int) -> list[tuple[int, str]]:
    async with session_maker() as session:
        result = await session.execute(
            select(IncidentPersonnel.user_id, IncidentPersonnel.role_on_incident)
            .where(IncidentPersonnel.incident_id == incident_id)
            .order_by(IncidentPersonnel.user_id)
        )
        return [tuple(row) for row in result.all()]


def _mock_session() -> MagicMock:
    session = MagicMock()
    session.begin = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


def _mock_session_maker(session: MagicMock):
    @asynccontextmanager
    async def session_maker():
        yield session

    return session_maker


@pytest.mark.asyncio
async def test_create_incident_scenario(session_maker):
    """Incident plus two crew rows, one Captain and one defaulted Firefighter."""
    workflow = IncidentCreationWorkflow(session_maker)
    result = await workflow.create_incident(_payload())

    assert result.incident_id > 0
    assert result.incident_code.startswith("INC-")
    assert result.incident_code.endswith(f"-{result.incident_id:05d}")
    assert await _crew(session_maker, result.incident_id) == [(5, "Captain"), (7, "Firefighter")]

    async with session_maker() as session:
        inc = (await session.execute(select(Incident).where(Incident.id == result.incident_id))).scalar_one()
    assert inc.status == "active"
    assert inc.incident_type == "fire"
    assert inc.incident_code == result.incident_code


@pytest.mark.asyncio
async def test_create_incident_crew_failure_rolls_back(session_maker):
    """Unknown crew user: nothing from the transaction survives."""
    workflow = IncidentCreationWorkflow(session_maker)
    payload = _payload(initial_crew=[{"user_id": 5}, {"user_id": 999, "role_on_incident": "Engineer"}])

    with pytest.raises(CreationFailed) as exc_info:
        await workflow.create_incident(payload)

    err = exc_info.value
    assert isinstance(err.cause, StorageError)
    assert err.message == "Failed to create incident"
    assert "insert crew assignments failed" in err.details
    assert "INSERT INTO" not in err.details
    assert await _count_incidents(session_maker) == 0
    async with session_maker() as session:
        crew_rows_left = (await session.execute(select(func.count()).select_from(IncidentPersonnel))).scalar_one()
    assert crew_rows_left == 0


@pytest.mark.asyncio
async def test_create_incident_duplicate_crew_member_rolls_back(session_maker):
    workflow = IncidentCreationWorkflow(session_maker)
    with pytest.raises(CreationFailed):
        await workflow.create_incident(_payload(initial_crew=[{"user_id": 5}, {"user_id": 5}]))
    assert await _count_incidents(session_maker) == 0


@pytest.mark.asyncio
async def test_create_incident_unknown_creator(session_maker):
    workflow = IncidentCreationWorkflow(session_maker)
    with pytest.raises(CreationFailed) as exc_info:
        await workflow.create_incident(_payload(created_by_user_id=404))
    assert "insert incident failed" in exc_info.value.details
    assert await _count_incidents(session_maker) == 0


@pytest.mark.asyncio
async def test_create_incident_empty_crew_skips_crew_insert(session_maker):
    calls = []

    class RecordingRepository(IncidentRepository):
        async def insert_crew_assignments(self, incident_id, members):
            calls.append(members)
            await super().insert_crew_assignments(incident_id, members)

    workflow = IncidentCreationWorkflow(session_maker, repository_factory=RecordingRepository)
    result = await workflow.create_incident(_payload(initial_crew=[]))
    assert calls == []
    assert await _crew(session_maker, result.incident_id) == []

    omitted = _payload()
    omitted = IncidentCreateRequest(**omitted.model_dump(exclude={"initial_crew"}))
    result = await workflow.create_incident(omitted)
    assert calls == []
    assert await _crew(session_maker, result.incident_id) == []


@pytest.mark.asyncio
async def test_create_incident_not_idempotent(session_maker):
    workflow = IncidentCreationWorkflow(session_maker)
    payload = _payload()
    first = await workflow.create_incident(payload)
    second = await workflow.create_incident(payload)
    assert first.incident_id != second.incident_id
    assert first.incident_code != second.incident_code
    assert await _count_incidents(session_maker) == 2


@pytest.mark.asyncio
async def test_create_incident_explicit_status_and_reported_at(session_maker):
    workflow = IncidentCreationWorkflow(session_maker)
    result = await workflow.create_incident(
        _payload(status="pending", reported_at="2024-07-04T21:30:00-04:00", latitude=40.7, longitude=-74.0)
    )
    assert result.incident_code == f"INC-2024-{result.incident_id:05d}"
    async with session_maker() as session:
        inc = (await session.execute(select(Incident).where(Incident.id == result.incident_id))).scalar_one()
    assert inc.status == "pending"
    assert inc.reported_at == "2024-07-05T01:30:00Z"
    assert inc.latitude == 40.7


@pytest.mark.asyncio
async def test_validation_error_never_begins_transaction():
    session_maker = MagicMock()
    workflow = IncidentCreationWorkflow(session_maker)
    with pytest.raises(ValidationError) as exc_info:
        await workflow.create_incident(_payload(address="   ", description=""))
    assert exc_info.value.fields == ["address", "description"]
    session_maker.assert_not_called()


@pytest.mark.asyncio
async def test_rollback_failure_does_not_mask_original_error(caplog):
    session = _mock_session()
    session.rollback.side_effect = OperationalError("ROLLBACK", {}, Exception("connection dropped"))
    original = StorageError(
        "insert crew assignments failed",
        cause=IntegrityError("INSERT INTO incident_personnel ...", {}, Exception("FOREIGN KEY constraint failed")),
    )
    repo = AsyncMock(spec=IncidentRepository)
    repo.insert_incident.return_value = 12
    repo.assign_incident_code.return_value = "INC-2025-00012"
    repo.insert_crew_assignments.side_effect = original

    workflow = IncidentCreationWorkflow(_mock_session_maker(session), repository_factory=lambda s: repo)
    with caplog.at_level(logging.WARNING):
        with pytest.raises(CreationFailed) as exc_info:
            await workflow.create_incident(_payload())

    assert exc_info.value.cause is original
    assert exc_info.value.details == "insert crew assignments failed: FOREIGN KEY constraint failed"
    session.rollback.assert_awaited_once()
    session.commit.assert_not_awaited()
    assert "Transaction rollback failed" in caplog.text


@pytest.mark.asyncio
async def test_commit_failure_rolls_back():
    session = _mock_session()
    session.commit.side_effect = OperationalError("COMMIT", {}, Exception("Deadlock found"))
    repo = AsyncMock(spec=IncidentRepository)
    repo.insert_incident.return_value = 3
    repo.assign_incident_code.return_value = "INC-2025-00003"

    workflow = IncidentCreationWorkflow(_mock_session_maker(session), repository_factory=lambda s: repo)
    with pytest.raises(CreationFailed) as exc_info:
        await workflow.create_incident(_payload())
    assert "commit failed" in exc_info.value.details
    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_steps_run_in_order():
    session = _mock_session()
    manager = MagicMock()
    repo = AsyncMock(spec=IncidentRepository)
    repo.insert_incident.return_value = 8
    repo.assign_incident_code.return_value = "INC-2025-00008"
    manager.attach_mock(session.begin, "begin")
    manager.attach_mock(repo.insert_incident, "insert_incident")
    manager.attach_mock(repo.assign_incident_code, "assign_incident_code")
    manager.attach_mock(repo.insert_crew_assignments, "insert_crew_assignments")
    manager.attach_mock(session.commit, "commit")

    workflow = IncidentCreationWorkflow(_mock_session_maker(session), repository_factory=lambda s: repo)
    await workflow.create_incident(_payload())

    assert [c[0] for c in manager.mock_calls] == [
        "begin",
        "insert_incident",
        "assign_incident_code",
        "insert_crew_assignments",
        "commit",
    ]
    repo.insert_crew_assignments.assert_awaited_once_with(
        8, [{"user_id": 5, "role_on_incident": "Captain"}, {"user_id": 7, "role_on_incident": "Firefighter"}]
    )


@pytest.mark.asyncio
async def test_timeout_rolls_back(session_maker):
    class SlowRepository(IncidentRepository):
        async def insert_crew_assignments(self, incident_id, members):
            await asyncio.sleep(5)

    workflow = IncidentCreationWorkflow(session_maker, timeout=0.05, repository_factory=SlowRepository)
    with pytest.raises(CreationFailed) as exc_info:
        await workflow.create_incident(_payload())

    assert isinstance(exc_info.value.cause, TransactionTimeout)
    assert "timeout" in exc_info.value.details
    assert await _count_incidents(session_maker) == 0


@pytest.mark.asyncio
async def test_unexpected_error_rolls_back_and_is_wrapped():
    session = _mock_session()
    repo = AsyncMock(spec=IncidentRepository)
    repo.insert_incident.side_effect = RuntimeError("boom")

    workflow = IncidentCreationWorkflow(_mock_session_maker(session), repository_factory=lambda s: repo)
    with pytest.raises(CreationFailed) as exc_info:
        await workflow.create_incident(_payload())
    assert isinstance(exc_info.value.cause, RuntimeError)
    assert exc_info.value.details == "boom"
    session.rollback.assert_awaited_once()


@pytest.mark.asyncio
async def test_driver_overflow_rolls_back_as_creation_failed(session_maker):
    """Errors outside SQLAlchemy's hierarchy still end in CreationFailed."""

    class OverflowingRepository(IncidentRepository):
        async def insert_crew_assignments(self, incident_id, members):
            raise OverflowError("Python int too large to convert to SQLite INTEGER")

    workflow = IncidentCreationWorkflow(session_maker, repository_factory=OverflowingRepository)
    with pytest.raises(CreationFailed) as exc_info:
        await workflow.create_incident(_payload())
    assert isinstance(exc_info.value.cause, OverflowError)
    assert await _count_incidents(session_maker) == 0


@pytest.mark.asyncio
async def test_cancellation_rolls_back_and_propagates():
    session = _mock_session()
    repo = AsyncMock(spec=IncidentRepository)
    repo.insert_incident.side_effect = asyncio.CancelledError()

    workflow = IncidentCreationWorkflow(_mock_session_maker(session), repository_factory=lambda s: repo)
    with pytest.raises(asyncio.CancelledError):
        await workflow.create_incident(_payload())
    session.rollback.assert_awaited_once()


def test_crew_rows_default_role():
    members = [
        CrewMemberIn(user_id=1, role_on_incident="Captain"),
        CrewMemberIn(user_id=2),
        CrewMemberIn(user_id=3, role_on_incident="  "),
    ]
    assert crew_rows(members, "Firefighter") == [
        {"user_id": 1, "role_on_incident": "Captain"},
        {"user_id": 2, "role_on_incident": "Firefighter"},
        {"user_id": 3, "role_on_incident": "Firefighter"},
    ]


def test_incident_row():
    row = incident_row(_payload(reported_at="2025-03-14T10:00:00Z"))
    assert row["incident_type"] == "fire"
    assert row["priority"] == "high"
    assert row["status"] == "active"
    assert row["reported_at"] == "2025-03-14T10:00:00Z"
    assert "initial_crew" not in row

    update = IncidentUpdateRequest(**_payload().model_dump(exclude={"status", "created_by_user_id"}))
    assert "status" not in incident_row(update)


@pytest.mark.asyncio
async def test_update_incident_replaces_crew(session_maker):
    created = await IncidentCreationWorkflow(session_maker).create_incident(_payload())
    update = IncidentUpdateRequest(
        **_payload().model_dump(exclude={"created_by_user_id", "initial_crew", "status"}),
        status="closed",
        initial_crew=[{"user_id": 1, "role_on_incident": "Incident Commander"}],
    )
    await IncidentUpdateWorkflow(session_maker).update_incident(created.incident_id, update)

    assert await _crew(session_maker, created.incident_id) == [(1, "Incident Commander")]
    async with session_maker() as session:
        inc = (await session.execute(select(Incident).where(Incident.id == created.incident_id))).scalar_one()
    assert inc.status == "closed"


@pytest.mark.asyncio
async def test_update_incident_failure_keeps_previous_crew(session_maker):
    created = await IncidentCreationWorkflow(session_maker).create_incident(_payload())
    update = IncidentUpdateRequest(
        **_payload().model_dump(exclude={"created_by_user_id", "initial_crew", "status"}),
        status="closed",
        initial_crew=[{"user_id": 999}],
    )
    with pytest.raises(UpdateFailed):
        await IncidentUpdateWorkflow(session_maker).update_incident(created.incident_id, update)

    assert await _crew(session_maker, created.incident_id) == [(5, "Captain"), (7, "Firefighter")]
    async with session_maker() as session:
        inc = (await session.execute(select(Incident).where(Incident.id == created.incident_id))).scalar_one()
    assert inc.status == "active"


@pytest.mark.asyncio
async def test_update_missing_incident(session_maker):
    update = IncidentUpdateRequest(**_payload().model_dump(exclude={"created_by_user_id", "status"}))
    with pytest.raises(IncidentNotFound):
        await IncidentUpdateWorkflow(session_maker).update_incident(12345, update)


@pytest.mark.asyncio
async def test_update_without_reported_at_keeps_stored_value(session_maker):
    created = await IncidentCreationWorkflow(session_maker).create_incident(
        _payload(reported_at="2020-01-01T00:00:00Z")
    )
    update = IncidentUpdateRequest(
        **_payload().model_dump(exclude={"created_by_user_id", "status", "reported_at", "description"}),
        description="Fire knocked down",
    )
    assert "reported_at" not in incident_row(update, stamp_reported_at=False)

    await IncidentUpdateWorkflow(session_maker).update_incident(created.incident_id, update)

    async with session_maker() as session:
        inc = (await session.execute(select(Incident).where(Incident.id == created.incident_id))).scalar_one()
    assert inc.reported_at == "2020-01-01T00:00:00Z"
    assert inc.incident_code == f"INC-2020-{created.incident_id:05d}"
    assert inc.description == "Fire knocked down"
