"""Alembic environment configuration."""
import os
from logging.config import fileConfig
from pathlib import Path
import sys

from sqlalchemy import create_engine, pool

from alembic import context

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
sys.path.insert(0, str(backend_dir))

from fireline.config import settings
from fireline.db.models import Base

# this is the Alembic Config object, which provides
# access to the values within the .ini file in use.
config = context.config

# Interpret the config file for Python logging.
if config.config_file_name is not None:
    fileConfig(config.config_file_name)

target_metadata = Base.metadata


def get_url() -> str:
    """Get a sync database URL. Prefer ALEMBIC_DATABASE_URL when migrating from the host."""
    database_url = os.environ.get("ALEMBIC_DATABASE_URL") or settings.database_url

    if database_url:
        # Alembic runs on sync drivers
        if database_url.startswith("postgresql+asyncpg://"):
            database_url = database_url.replace("postgresql+asyncpg://", "postgresql+psycopg2://", 1)
        elif database_url.startswith("mysql+aiomysql://") or database_url.startswith("mysql://"):
            database_url = database_url.replace("mysql+aiomysql://", "mysql+pymysql://", 1).replace(
                "mysql://", "mysql+pymysql://", 1
            )
        elif database_url.startswith("sqlite+aiosqlite://"):
            database_url = database_url.replace("sqlite+aiosqlite://", "sqlite://", 1)
        return database_url

    db_path = settings.db_path
    if not os.path.isabs(db_path):
        db_path = os.path.join(backend_dir, db_path)
    os.makedirs(os.path.dirname(db_path) or ".", exist_ok=True)
    return f"sqlite:///{db_path}"


def run_migrations_offline() -> None:
    """Run migrations in 'offline' mode (emit SQL to the script output)."""
    context.configure(
        url=get_url(),
        target_metadata=target_metadata,
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
    )

    with context.begin_transaction():
        context.run_migrations()


def run_migrations_online() -> None:
    """Run migrations in 'online' mode against a sync engine."""
    connectable = create_engine(get_url(), poolclass=pool.NullPool)

    with connectable.connect() as connection:
        context.configure(
            connection=connection,
            target_metadata=target_metadata,
            render_as_batch=connection.dialect.name == "sqlite",
        )
        with context.begin_transaction():
            context.run_migrations()


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
