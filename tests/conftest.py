"""
Test infrastructure for the PulseReader API.

Strategy
--------
- SQLite in-memory via aiosqlite, so the suite needs no running Postgres.
- StaticPool makes every task share the one in-memory connection; a new
  connection would see an empty database.
- Foreign keys are switched on for every connection so the
  ``ON DELETE CASCADE`` rules behave as they do on Postgres.
- The app's get_db dependency is overridden with the test session factory.
- Tables are created before and dropped after each test.
- Redis is disabled by setting ``cache._redis = None``; the CacheManager
  treats that as a permanent miss.  Tests that exercise caching use the
  ``redis_cache`` fixture, which plugs in an in-memory key store.
"""
import fnmatch
import uuid
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from pulsereader.cache import cache
from pulsereader.database import Base, get_db
from pulsereader.main import app
from pulsereader.middleware import install_query_counter
from pulsereader.models import Article, Profile, RssSource, Sentiment, Topic

# ---------------------------------------------------------------------------
# Test database engine: SQLite in-memory with aiosqlite
# ---------------------------------------------------------------------------

TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

engine_test = create_async_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)


@event.listens_for(engine_test.sync_engine, "connect")
def _enable_sqlite_foreign_keys(dbapi_connection, connection_record):
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


install_query_counter(engine_test)

async_session_test = async_sessionmaker(
    engine_test,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def override_get_db():
    async with async_session_test() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


app.dependency_overrides[get_db] = override_get_db


class InMemoryRedis:
    """The slice of the redis.asyncio API that CacheManager calls."""

    def __init__(self) -> None:
        self.store: dict[str, str] = {}

    async def get(self, key):
        return self.store.get(key)

    async def set(self, key, value, ex=None):
        self.store[key] = value

    async def scan_iter(self, match="*"):
        for key in list(self.store):
            if fnmatch.fnmatchcase(key, match):
                yield key

    async def delete(self, *keys):
        return sum(1 for key in keys if self.store.pop(key, None) is not None)


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after to guarantee isolation."""
    cache._redis = None
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with engine_test.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest_asyncio.fixture
async def db_session() -> AsyncSession:
    async with async_session_test() as session:
        yield session


@pytest.fixture
def redis_cache() -> InMemoryRedis:
    store = InMemoryRedis()
    cache._redis = store
    yield store
    cache._redis = None


@pytest_asyncio.fixture
async def async_client() -> AsyncClient:
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest_asyncio.fixture
async def source(db_session: AsyncSession) -> RssSource:
    src = RssSource(name="Example News", url="https://news.example.com/rss")
    db_session.add(src)
    await db_session.commit()
    return src


@pytest_asyncio.fixture
async def make_topic(db_session: AsyncSession):
    async def _make(name: str) -> Topic:
        topic = Topic(name=name)
        db_session.add(topic)
        await db_session.commit()
        return topic

    return _make


@pytest_asyncio.fixture
async def make_article(db_session: AsyncSession, source: RssSource):
    """
    Insert an article row directly.  ``age_hours`` orders articles by
    publication date (larger is older).
    """
    counter = {"n": 0}

    async def _make(
        title: str = "Article",
        description: str | None = None,
        link: str | None = None,
        sentiment: Sentiment | None = None,
        age_hours: int = 0,
        topics: list[Topic] | None = None,
    ) -> Article:
        counter["n"] += 1
        article = Article(
            source_id=source.id,
            title=title,
            description=description,
            link=link or f"https://news.example.com/items/{counter['n']}",
            publication_date=datetime(2024, 6, 1, tzinfo=timezone.utc) - timedelta(hours=age_hours),
            sentiment=sentiment,
        )
        if topics:
            article.topics.extend(topics)
        db_session.add(article)
        await db_session.commit()
        return article

    return _make


@pytest_asyncio.fixture
async def make_profile(db_session: AsyncSession):
    async def _make(
        user_id: uuid.UUID | None = None,
        mood: Sentiment | None = None,
        blocklist: list[str] | None = None,
        personalization_enabled: bool = True,
    ) -> Profile:
        profile = Profile(
            user_id=user_id or uuid.uuid4(),
            mood=mood,
            blocklist=blocklist or [],
            personalization_enabled=personalization_enabled,
        )
        db_session.add(profile)
        await db_session.commit()
        return profile

    return _make


@pytest.fixture
def service_headers() -> dict:
    return {"X-Caller-Role": "service"}


@pytest.fixture
def reader_id() -> uuid.UUID:
    return uuid.uuid4()


@pytest.fixture
def reader_headers(reader_id: uuid.UUID) -> dict:
    return {"X-User-Id": str(reader_id), "X-Caller-Role": "user"}
