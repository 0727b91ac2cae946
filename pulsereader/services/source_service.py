"""
RSS source service: CRUD for the feeds articles are ingested from.

Feed URLs are unique.  Article views embed the source name and URL, so any
update purges the article cache; deleting a source also removes its
articles through the ``ON DELETE CASCADE`` foreign key.
"""
import uuid
from datetime import datetime, timezone

from sqlalchemy import func, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.cache import cache
from pulsereader.exceptions import DatabaseError, SourceNotFound, SourceUrlConflict
from pulsereader.models import RssSource
from pulsereader.schemas import SourceCreate, SourceUpdate
from pulsereader.services._store import is_unique_violation, isoformat, store_errors


def _source_to_dict(source: RssSource) -> dict:
    return {
        "id": str(source.id),
        "name": source.name,
        "url": source.url,
        "isActive": source.is_active,
        "lastFetchedAt": isoformat(source.last_fetched_at),
        "lastFetchError": source.last_fetch_error,
        "createdAt": isoformat(source.created_at),
        "updatedAt": isoformat(source.updated_at),
    }


async def _get_or_raise(db: AsyncSession, source_id: uuid.UUID) -> RssSource:
    with store_errors("fetch RSS source"):
        source = await db.get(RssSource, source_id)
    if source is None:
        raise SourceNotFound()
    return source


async def _commit_or_conflict(db: AsyncSession, operation: str) -> None:
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if is_unique_violation(exc):
            raise SourceUrlConflict() from exc
        raise DatabaseError(f"Failed to {operation}") from exc


async def list_sources(db: AsyncSession, limit: int = 50, offset: int = 0) -> dict:
    with store_errors("fetch RSS sources"):
        total: int = (await db.execute(select(func.count()).select_from(RssSource))).scalar_one()
        result = await db.execute(
            select(RssSource)
            .order_by(RssSource.created_at.desc(), RssSource.id)
            .offset(offset)
            .limit(limit)
        )
        sources = result.scalars().all()
    return {
        "data": [_source_to_dict(s) for s in sources],
        "pagination": {
            "limit": limit,
            "offset": offset,
            "total": total,
            "hasMore": offset + limit < total,
        },
    }


async def get_source(db: AsyncSession, source_id: uuid.UUID) -> dict:
    return _source_to_dict(await _get_or_raise(db, source_id))


async def create_source(db: AsyncSession, data: SourceCreate) -> dict:
    with store_errors("check RSS source URL"):
        existing = await db.execute(select(RssSource.id).where(RssSource.url == data.url))
    if existing.scalar_one_or_none() is not None:
        raise SourceUrlConflict()

    source = RssSource(name=data.name, url=data.url)
    db.add(source)
    await _commit_or_conflict(db, "create RSS source")
    with store_errors("reload RSS source"):
        await db.refresh(source)
    return _source_to_dict(source)


async def update_source(db: AsyncSession, source_id: uuid.UUID, data: SourceUpdate) -> dict:
    source = await _get_or_raise(db, source_id)
    for field, value in data.model_dump(exclude_unset=True).items():
        if value is None:
            # name/url/is_active are not nullable; null means "leave as is".
            continue
        setattr(source, field, value)
    await _commit_or_conflict(db, "update RSS source")
    with store_errors("reload RSS source"):
        await db.refresh(source)
    await cache.invalidate_articles()
    return _source_to_dict(source)


async def delete_source(db: AsyncSession, source_id: uuid.UUID) -> None:
    source = await _get_or_raise(db, source_id)
    with store_errors("delete RSS source"):
        await db.delete(source)
        await db.commit()
    await cache.invalidate_articles()


async def list_active_sources(db: AsyncSession) -> list[dict]:
    """Active sources, least recently fetched first (never-fetched sources lead)."""
    with store_errors("fetch active RSS sources"):
        result = await db.execute(
            select(RssSource)
            .where(RssSource.is_active.is_(True))
            .order_by(RssSource.last_fetched_at.asc().nulls_first(), RssSource.id)
        )
        return [_source_to_dict(s) for s in result.scalars().all()]


async def record_fetch_result(
    db: AsyncSession, source_id: uuid.UUID, error: str | None = None
) -> dict:
    """Stamp a successful fetch, or keep the last success and store *error*."""
    source = await _get_or_raise(db, source_id)
    if error is None:
        source.last_fetched_at = datetime.now(timezone.utc)
        source.last_fetch_error = None
    else:
        source.last_fetch_error = error
    with store_errors("record RSS fetch result"):
        await db.commit()
        await db.refresh(source)
    return _source_to_dict(source)
