"""Database engine factory supporting SQLite (default) and DATABASE_URL (MySQL/Postgres)."""
from __future__ import annotations

import logging
import os

from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, create_async_engine
from sqlalchemy.orm import sessionmaker

from fireline.config import settings

logger = logging.getLogger(__name__)


def normalize_database_url(database_url: str) -> str:
    """Map sync driver URLs onto their async drivers."""
    # Convert postgres:// to postgresql+asyncpg://
    # Convert mysql:// to mysql+aiomysql://
    if database_url.startswith("postgres://"):
        return database_url.replace("postgres://", "postgresql+asyncpg://", 1)
    if database_url.startswith("postgresql://"):
        return database_url.replace("postgresql://", "postgresql+asyncpg://", 1)
    if database_url.startswith("mysql://"):
        return database_url.replace("mysql://", "mysql+aiomysql://", 1)
    if database_url.startswith("mysql+pymysql://"):
        return database_url.replace("mysql+pymysql://", "mysql+aiomysql://", 1)
    if database_url.startswith("sqlite://") and not database_url.startswith("sqlite+aiosqlite://"):
        return database_url.replace("sqlite://", "sqlite+aiosqlite://", 1)
    return database_url


def default_sqlite_url() -> str:
    db_path = settings.db_path
    if not os.path.isabs(db_path):
        db_path = os.path.join(os.path.dirname(os.path.dirname(os.path.dirname(__file__))), db_path)
    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    return f"sqlite+aiosqlite:///{db_path}"


def _enable_sqlite_foreign_keys(engine: AsyncEngine) -> None:
    # SQLite ships with foreign keys off; crew rows rely on them
    @event.listens_for(engine.sync_engine, "connect")
    def _set_pragma(dbapi_connection, connection_record):
        cursor = dbapi_connection.cursor()
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


def create_db_engine(database_url: str | None = None) -> AsyncEngine:
    """Create the async engine (connection pool). Falls back to settings, then SQLite."""
    url = database_url if database_url is not None else settings.database_url

    if url and not url.startswith("sqlite"):
        url = normalize_database_url(url)
        logger.info("Using DATABASE_URL: %s", url.split("@")[-1] if "@" in url else url)
        return create_async_engine(
            url,
            echo=False,
            pool_pre_ping=True,
            pool_size=settings.pool_size,
            max_overflow=settings.max_overflow,
        )

    url = normalize_database_url(url) if url else default_sqlite_url()
    logger.info("Using SQLite: %s", url)
    engine = create_async_engine(
        url,
        echo=False,
        connect_args={"check_same_thread": False},  # SQLite-specific
    )
    _enable_sqlite_foreign_keys(engine)
    return engine


def create_session_maker(engine: AsyncEngine) -> sessionmaker[AsyncSession]:
    """Session factory bound to the engine. One session holds one pooled connection."""
    return sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_database(engine: AsyncEngine) -> None:
    """Initialize database (create tables if needed)."""
    from fireline.db.models import Base

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    logger.info("Database initialized")


async def close_database(engine: AsyncEngine) -> None:
    """Close database connections."""
    await engine.dispose()
