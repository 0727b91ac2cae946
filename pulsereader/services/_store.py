"""Small helpers shared by the service modules for talking to the store."""
import logging
from contextlib import contextmanager
from datetime import datetime

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.exceptions import DatabaseError

logger = logging.getLogger(__name__)

# SQLSTATE for unique_violation; asyncpg exposes it on the wrapped error.
_UNIQUE_VIOLATION = "23505"


@contextmanager
def store_errors(operation: str):
    """
    Re-raise unclassified SQLAlchemy failures as ``DatabaseError``.

    Callers that expect specific integrity errors must catch them inside
    the ``with`` block; anything that escapes is treated as internal.
    """
    try:
        yield
    except SQLAlchemyError as exc:
        logger.error("Store failure while trying to %s: %s", operation, exc)
        raise DatabaseError(f"Failed to {operation}") from exc


def is_unique_violation(exc: IntegrityError) -> bool:
    orig = getattr(exc, "orig", None)
    sqlstate = getattr(orig, "sqlstate", None) or getattr(orig, "pgcode", None)
    if sqlstate is not None:
        return sqlstate == _UNIQUE_VIOLATION
    # SQLite only reports the constraint kind in the message.
    return "UNIQUE constraint failed" in str(orig)


def dialect_insert(db: AsyncSession, table):
    """Return an INSERT that supports ``on_conflict_do_nothing`` for the bound dialect."""
    if db.bind.dialect.name == "postgresql":
        return postgresql.insert(table)
    return sqlite.insert(table)


def isoformat(value: datetime | None) -> str | None:
    return value.isoformat() if value else None
