from sqlalchemy import MetaData
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.orm import DeclarativeBase

from pulsereader.config import settings
from pulsereader.middleware import install_query_counter

# Module-level engine variable allows tests to override with a test engine.
engine = create_async_engine(
    settings.DATABASE_URL,
    echo=settings.DEBUG,
    pool_pre_ping=True,
)

# Register the per-request SQL query counter on the production engine.
install_query_counter(engine)

async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


class Base(DeclarativeBase):
    # The target schema comes from configuration, not from runtime discovery.
    metadata = MetaData(schema=settings.DB_SCHEMA)


async def get_db():
    """
    Yield a session for one request.

    Services commit each write step themselves (see
    ``article_service``), so the final commit here only flushes any
    read-side state; a failure still rolls back whatever is pending.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise
