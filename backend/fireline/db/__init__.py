"""Database layer with SQLAlchemy and Alembic support."""
from fireline.db.factory import close_database, create_db_engine, create_session_maker, init_database
from fireline.db.repository import IncidentRepository, PersonnelRepository, DashboardRepository

__all__ = [
    "close_database",
    "create_db_engine",
    "create_session_maker",
    "init_database",
    "IncidentRepository",
    "PersonnelRepository",
    "DashboardRepository",
]
