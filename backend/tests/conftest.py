"""Shared fixtures: a throwaway SQLite database per test, with foreign keys enforced."""
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import sessionmaker

from fireline.db.factory import create_db_engine, create_session_maker, init_database
from fireline.db.models import Equipment, User


@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """File-backed SQLite so separate sessions get separate connections."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'fireline-test.db'}")
    await init_database(engine)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def session_maker(db_engine) -> sessionmaker[AsyncSession]:
    maker = create_session_maker(db_engine)
    async with maker() as session:
        async with session.begin():
            session.add_all(
                [
                    User(id=1, full_name="John Miller", email="jmiller@example.org", role="Chief", station_id=1),
                    User(id=5, full_name="Ana Ortiz", email="aortiz@example.org", role="Captain", station_id=1),
                    User(
                        id=7,
                        full_name="Sam Reed",
                        email="sreed@example.org",
                        role="Firefighter",
                        availability_status="On_Call",
                        station_id=2,
                    ),
                    User(id=9, full_name="Dana Admin", email="admin@example.org", role="Admin"),
                    Equipment(name="Engine 1", equipment_type="engine", status="In_Use", station_id=1),
                    Equipment(name="Ladder 2", equipment_type="ladder", status="Available", station_id=2),
                ]
            )
    return maker


@pytest_asyncio.fixture
async def db_session(session_maker):
    async with session_maker() as session:
        yield session
