"""
Topic registry.

Topic names are unique under case-insensitive comparison, enforced by the
``uq_topics_name_lower`` index.  ``find_or_create_topic`` checks first and
falls back to re-reading when a concurrent writer wins the insert race.
"""
import logging
import uuid

from sqlalchemy import delete, func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.cache import cache
from pulsereader.exceptions import DatabaseError, TopicNotFound
from pulsereader.models import Topic
from pulsereader.services._store import is_unique_violation, isoformat, store_errors

logger = logging.getLogger(__name__)


def _topic_to_dict(topic: Topic) -> dict:
    return {
        "id": str(topic.id),
        "name": topic.name,
        "createdAt": isoformat(topic.created_at),
        "updatedAt": isoformat(topic.updated_at),
    }


async def _find_by_name(db: AsyncSession, name: str) -> Topic | None:
    with store_errors("find topic by name"):
        result = await db.execute(select(Topic).where(func.lower(Topic.name) == name.lower()))
        return result.scalar_one_or_none()


async def list_topics(
    db: AsyncSession,
    limit: int = 100,
    offset: int = 0,
    search: str | None = None,
) -> dict:
    """Return topics ordered by name, optionally filtered by a substring."""
    count_q = select(func.count()).select_from(Topic)
    rows_q = select(Topic).order_by(Topic.name.asc(), Topic.id).offset(offset).limit(limit)
    if search:
        count_q = count_q.where(Topic.name.icontains(search, autoescape=True))
        rows_q = rows_q.where(Topic.name.icontains(search, autoescape=True))

    with store_errors("fetch topics"):
        total: int = (await db.execute(count_q)).scalar_one()
        topics = (await db.execute(rows_q)).scalars().all()

    return {
        "data": [_topic_to_dict(t) for t in topics],
        "pagination": {
            "limit": limit,
            "offset": offset,
            "total": total,
            "hasMore": offset + limit < total,
        },
    }


async def get_topic(db: AsyncSession, topic_id: uuid.UUID) -> dict:
    with store_errors("fetch topic"):
        topic = await db.get(Topic, topic_id)
    if topic is None:
        raise TopicNotFound()
    return _topic_to_dict(topic)


async def find_or_create_topic(db: AsyncSession, name: str) -> tuple[dict, bool]:
    """
    Return ``(topic, created)`` for *name*, matching existing topics
    case-insensitively.  ``"Climate"`` and ``"climate"`` resolve to the
    same row; the first spelling seen is the one stored.
    """
    clean = name.strip()
    existing = await _find_by_name(db, clean)
    if existing is not None:
        return _topic_to_dict(existing), False

    topic = Topic(name=clean)
    db.add(topic)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if not is_unique_violation(exc):
            raise DatabaseError("Failed to create topic") from exc
        # Another writer created the same name between our check and insert.
        existing = await _find_by_name(db, clean)
        if existing is None:
            raise DatabaseError("Failed to create topic") from exc
        return _topic_to_dict(existing), False

    with store_errors("reload topic"):
        await db.refresh(topic)
    logger.debug("Created topic %r (%s)", topic.name, topic.id)
    return _topic_to_dict(topic), True


async def delete_topic(db: AsyncSession, topic_id: uuid.UUID) -> None:
    """
    Delete a topic.  Article associations go with it through the
    ``ON DELETE CASCADE`` foreign key.
    """
    with store_errors("delete topic"):
        result = await db.execute(delete(Topic).where(Topic.id == topic_id))
        if result.rowcount == 0:
            await db.rollback()
            raise TopicNotFound()
        await db.commit()
    await cache.invalidate_articles()
