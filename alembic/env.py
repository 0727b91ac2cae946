"""Alembic environment configuration for async SQLAlchemy.

Supports offline (SQL script generation) and online (live connection)
migrations.  All tables, and the version table, live in the fixed
``DB_SCHEMA`` when one is configured.
"""

import asyncio
from logging.config import fileConfig

from alembic import context
from sqlalchemy import text
from sqlalchemy.ext.asyncio import create_async_engine

from pulsereader.config import settings
from pulsereader.database import Base

# Import all models so Alembic can detect them via Base.metadata.
import pulsereader.models  # noqa: F401

config = context.config

if config.config_file_name is not None:
    fileConfig(config.config_file_name)

# Credentials are managed in one place (.env / environment variables).
config.set_main_option("sqlalchemy.url", settings.DATABASE_URL)

target_metadata = Base.metadata


def _configure_kwargs() -> dict:
    kwargs = {"target_metadata": target_metadata, "include_schemas": settings.DB_SCHEMA is not None}
    if settings.DB_SCHEMA:
        kwargs["version_table_schema"] = settings.DB_SCHEMA
    return kwargs


# ---------------------------------------------------------------------------
# Offline migrations (generate SQL without a live DB connection)
# ---------------------------------------------------------------------------
def run_migrations_offline() -> None:
    context.configure(
        url=config.get_main_option("sqlalchemy.url"),
        literal_binds=True,
        dialect_opts={"paramstyle": "named"},
        **_configure_kwargs(),
    )

    with context.begin_transaction():
        context.run_migrations()


# ---------------------------------------------------------------------------
# Online migrations (run against a live async DB connection)
# ---------------------------------------------------------------------------
def do_run_migrations(connection):
    if settings.DB_SCHEMA and connection.dialect.name == "postgresql":
        connection.execute(text(f'CREATE SCHEMA IF NOT EXISTS "{settings.DB_SCHEMA}"'))
    context.configure(connection=connection, **_configure_kwargs())
    with context.begin_transaction():
        context.run_migrations()


async def run_async_migrations() -> None:
    """Create an async engine and run migrations inside a sync wrapper.

    AsyncConnection.run_sync() hands a synchronous connection to Alembic's
    migration runner.
    """
    connectable = create_async_engine(settings.DATABASE_URL, echo=False, pool_pre_ping=True)

    async with connectable.connect() as connection:
        await connection.run_sync(do_run_migrations)
        await connection.commit()

    await connectable.dispose()


def run_migrations_online() -> None:
    asyncio.run(run_async_migrations())


if context.is_offline_mode():
    run_migrations_offline()
else:
    run_migrations_online()
