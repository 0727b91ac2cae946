"""
Article service: retrieval with personalization, and ingestion with
compensation.

Design notes
------------
- Retrieval pushes every filter the database can evaluate (sentiment or
  mood, source, topic) into SQL.  The reader's blocklist is substring
  matching over title, description and link, so it runs here after the
  fetch.  To keep pages reasonably full the fetch window is widened to
  ``limit * BLOCKLIST_OVERFETCH_MULTIPLIER`` rows (capped) and then cut
  back to ``limit``.  A page can still come back short when more than
  that share of the window is blocked; ``blockedItemsCount`` and
  ``totalIsUpperBound`` let callers detect it.
- Source and topics are loaded with ``joinedload`` in the same SELECT as
  the article rows; ``unique()`` collapses the joined collection rows.
- Writes do not rely on one transaction spanning several statements.
  Each forward step commits on its own, and when the topic-association
  step fails an explicit compensating step undoes the earlier ones
  before ``TopicAssociationFailed`` is raised.  A concurrent reader may
  briefly see the article without its topics.
- Only the anonymous list and the detail view are cached; personalized
  pages depend on the reader and always hit the database.
"""
import logging
import uuid
from dataclasses import dataclass, field
from typing import Optional

from sqlalchemy import asc, delete, desc, func, insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import joinedload

from pulsereader.cache import ARTICLE_DETAIL_PREFIX, ARTICLE_LIST_PREFIX, cache
from pulsereader.config import settings
from pulsereader.exceptions import (
    ArticleAlreadyExists,
    ArticleNotFound,
    DatabaseError,
    InvalidSourceId,
    InvalidTopicIds,
    MixedSourceBatch,
    ProfileNotFound,
    TopicAssociationFailed,
)
from pulsereader.models import Article, RssSource, Sentiment, Topic, article_topics
from pulsereader.schemas import (
    ArticleCreate,
    ArticleListResponse,
    ArticleQuery,
    ArticleUpdate,
    BatchCreateResponse,
    FiltersApplied,
    Pagination,
)
from pulsereader.services import profile_service
from pulsereader.services._store import dialect_insert, is_unique_violation, isoformat, store_errors

logger = logging.getLogger(__name__)

_SORT_COLUMNS = {
    "publication_date": Article.publication_date,
    "created_at": Article.created_at,
}


# ---------------------------------------------------------------------------
# Serialisation helpers
# ---------------------------------------------------------------------------

def _article_to_entity(article: Article) -> dict:
    """Serialise the article row itself (create/update responses)."""
    return {
        "id": str(article.id),
        "sourceId": str(article.source_id),
        "title": article.title,
        "description": article.description,
        "link": article.link,
        "publicationDate": isoformat(article.publication_date),
        "sentiment": article.sentiment.value if article.sentiment else None,
        "createdAt": isoformat(article.created_at),
        "updatedAt": isoformat(article.updated_at),
    }


def _article_to_dict(article: Article) -> dict:
    """Serialise an article with its nested source and topic summaries."""
    source = article.source
    return {
        "id": str(article.id),
        "title": article.title,
        "description": article.description,
        "link": article.link,
        "publicationDate": isoformat(article.publication_date),
        "sentiment": article.sentiment.value if article.sentiment else None,
        "source": {
            "id": str(source.id),
            "name": source.name,
            "url": source.url,
        } if source is not None else None,
        "topics": [
            {"id": str(t.id), "name": t.name}
            for t in sorted(article.topics, key=lambda t: t.name.lower())
        ],
        "createdAt": isoformat(article.created_at),
        "updatedAt": isoformat(article.updated_at),
    }


# ---------------------------------------------------------------------------
# Blocklist filtering
# ---------------------------------------------------------------------------

def is_blocked(article: Article, fragments: list[str]) -> bool:
    """True when any fragment occurs (case-insensitively) in title, description or link."""
    haystacks = (
        (article.title or "").lower(),
        (article.description or "").lower(),
        (article.link or "").lower(),
    )
    return any(fragment in text for fragment in fragments for text in haystacks)


def apply_blocklist(articles: list[Article], blocklist: list[str]) -> list[Article]:
    fragments = [f.lower() for f in blocklist if f and f.strip()]
    if not fragments:
        return list(articles)
    return [a for a in articles if not is_blocked(a, fragments)]


def overfetch_limit(limit: int) -> int:
    """Rows to read when a blocklist will discard some of them."""
    ceiling = max(settings.BLOCKLIST_OVERFETCH_MAX, limit)
    return min(limit * settings.BLOCKLIST_OVERFETCH_MULTIPLIER, ceiling)


# ---------------------------------------------------------------------------
# Validation helpers (run before any write)
# ---------------------------------------------------------------------------

async def validate_source(db: AsyncSession, source_id: uuid.UUID) -> bool:
    with store_errors("validate RSS source"):
        result = await db.execute(select(RssSource.id).where(RssSource.id == source_id))
        return result.scalar_one_or_none() is not None


async def find_invalid_topic_ids(db: AsyncSession, topic_ids: list[uuid.UUID]) -> list[uuid.UUID]:
    """Return the ids in *topic_ids* that have no topic row, in input order."""
    if not topic_ids:
        return []
    with store_errors("validate topics"):
        result = await db.execute(select(Topic.id).where(Topic.id.in_(set(topic_ids))))
        found = set(result.scalars().all())
    return [tid for tid in topic_ids if tid not in found]


def _dedupe(ids: list[uuid.UUID]) -> list[uuid.UUID]:
    return list(dict.fromkeys(ids))


# ---------------------------------------------------------------------------
# Write steps and their compensations
# ---------------------------------------------------------------------------

async def _insert_topic_associations(
    db: AsyncSession, article_id: uuid.UUID, topic_ids: list[uuid.UUID]
) -> None:
    """Insert all association rows in one statement and commit."""
    if not topic_ids:
        return
    await db.execute(
        insert(article_topics),
        [{"article_id": article_id, "topic_id": tid} for tid in topic_ids],
    )
    await db.commit()


async def _undo_article_insert(db: AsyncSession, article_id: uuid.UUID) -> None:
    """Compensation for a failed association step after ``create_article``."""
    await db.rollback()
    await db.execute(delete(Article).where(Article.id == article_id))
    await db.commit()


@dataclass
class _ArticleSnapshot:
    """Field values and associations captured before an update."""

    article_id: uuid.UUID
    sentiment: Optional[Sentiment]
    topic_ids: list[uuid.UUID] = field(default_factory=list)


async def _restore_article(db: AsyncSession, snapshot: _ArticleSnapshot) -> None:
    """Compensation for a failed association step after ``update_article``."""
    await db.rollback()
    await db.execute(
        update(Article)
        .where(Article.id == snapshot.article_id)
        .values(sentiment=snapshot.sentiment)
    )
    await db.execute(delete(article_topics).where(article_topics.c.article_id == snapshot.article_id))
    if snapshot.topic_ids:
        await db.execute(
            insert(article_topics),
            [{"article_id": snapshot.article_id, "topic_id": tid} for tid in snapshot.topic_ids],
        )
    await db.commit()


async def _run_compensation(db: AsyncSession, undo, target, article_id: uuid.UUID) -> None:
    try:
        await undo(db, target)
    except SQLAlchemyError:
        # The caller still gets TopicAssociationFailed; this log line is
        # the only trace of an article left in an intermediate state.
        logger.exception("Compensation failed for article %s", article_id)
        await db.rollback()
    else:
        logger.warning("Compensation applied for article %s", article_id)


# ---------------------------------------------------------------------------
# Public service functions: retrieval
# ---------------------------------------------------------------------------

async def get_articles(
    db: AsyncSession,
    query: ArticleQuery,
    user_id: uuid.UUID | None = None,
) -> ArticleListResponse:
    """
    Return one page of articles with nested source and topics.

    When ``query.apply_personalization`` is set the caller's profile must
    exist (``ProfileNotFound`` otherwise, including anonymous callers).
    The profile mood replaces any explicit sentiment filter and the
    blocklist is applied in memory over an over-fetched window.

    ``pagination.total`` is the database count before blocklist
    filtering; it is exact without a blocklist and an upper bound with
    one.
    """
    profile = None
    if query.apply_personalization:
        if user_id is None:
            raise ProfileNotFound()
        profile = await profile_service.find_profile(db, user_id)
        if profile is None:
            raise ProfileNotFound()

    personalized = profile is not None and profile.personalization_enabled
    blocklist = list(profile.blocklist or []) if personalized else []
    use_blocklist = any(item.strip() for item in blocklist)

    sentiment = query.sentiment
    if personalized and profile.mood is not None:
        sentiment = profile.mood

    cache_key = None
    if not query.apply_personalization:
        cache_key = (
            f"{ARTICLE_LIST_PREFIX}{query.limit}:{query.offset}:{sentiment and sentiment.value}:"
            f"{query.topic_id}:{query.source_id}:{query.sort_by}:{query.sort_order}"
        )
        cached = await cache.get(cache_key)
        if cached:
            return ArticleListResponse(**cached)

    conditions = []
    if sentiment is not None:
        conditions.append(Article.sentiment == sentiment)
    if query.source_id is not None:
        conditions.append(Article.source_id == query.source_id)
    if query.topic_id is not None:
        conditions.append(
            Article.id.in_(
                select(article_topics.c.article_id).where(article_topics.c.topic_id == query.topic_id)
            )
        )

    fetch_limit = overfetch_limit(query.limit) if use_blocklist else query.limit

    sort_col = _SORT_COLUMNS[query.sort_by]
    direction = asc if query.sort_order == "asc" else desc
    rows_q = (
        select(Article)
        .where(*conditions)
        .options(joinedload(Article.source), joinedload(Article.topics))
        .execution_options(populate_existing=True)
        # id breaks ties so consecutive pages never overlap.
        .order_by(direction(sort_col), direction(Article.id))
        .offset(query.offset)
        .limit(fetch_limit)
    )
    count_q = select(func.count()).select_from(Article).where(*conditions)

    with store_errors("fetch articles"):
        total: int = (await db.execute(count_q)).scalar_one()
        result = await db.execute(rows_q)
        articles = list(result.unique().scalars().all())

    blocked_count = 0
    if use_blocklist:
        kept = apply_blocklist(articles, blocklist)
        blocked_count = len(articles) - len(kept)
        articles = kept[: query.limit]
        if blocked_count:
            logger.debug(
                "Blocklist removed %d of %d fetched articles for user %s",
                blocked_count, blocked_count + len(kept), user_id,
            )

    response = ArticleListResponse(
        data=[_article_to_dict(a) for a in articles],
        pagination=Pagination(
            limit=query.limit,
            offset=query.offset,
            total=total,
            has_more=query.offset + query.limit < total,
        ),
        filters_applied=FiltersApplied(
            sentiment=sentiment,
            topic_id=query.topic_id,
            source_id=query.source_id,
            personalization=personalized,
            blocked_items_count=blocked_count,
            total_is_upper_bound=use_blocklist,
        ),
    )
    if cache_key is not None:
        await cache.set(cache_key, response.model_dump(mode="json"), ttl=settings.CACHE_TTL_LIST)
    return response


async def get_article(db: AsyncSession, article_id: uuid.UUID) -> dict:
    """Return one article with nested source and topics, or raise ``ArticleNotFound``."""
    cache_key = f"{ARTICLE_DETAIL_PREFIX}{article_id}"
    cached = await cache.get(cache_key)
    if cached:
        return cached

    q = (
        select(Article)
        .where(Article.id == article_id)
        .options(joinedload(Article.source), joinedload(Article.topics))
        .execution_options(populate_existing=True)
    )
    with store_errors("fetch article"):
        result = await db.execute(q)
        article = result.unique().scalar_one_or_none()
    if article is None:
        raise ArticleNotFound()

    data = _article_to_dict(article)
    await cache.set(cache_key, data, ttl=settings.CACHE_TTL_DETAIL)
    return data


async def find_articles_pending_analysis(db: AsyncSession, limit: int = 20) -> list[dict]:
    """Articles that have no sentiment yet, oldest first."""
    q = (
        select(Article)
        .where(Article.sentiment.is_(None))
        .order_by(Article.created_at.asc(), Article.id)
        .limit(limit)
    )
    with store_errors("fetch articles pending analysis"):
        result = await db.execute(q)
        return [_article_to_entity(a) for a in result.scalars().all()]


# ---------------------------------------------------------------------------
# Public service functions: ingestion
# ---------------------------------------------------------------------------

async def create_article(db: AsyncSession, data: ArticleCreate) -> dict:
    """
    Create one article and its topic associations.

    Steps:
    1. the source must exist (``InvalidSourceId``);
    2. every topic id must exist, checked in one query
       (``InvalidTopicIds`` lists the missing ones);
    3. insert the article (duplicate link → ``ArticleAlreadyExists``);
    4. insert the associations; on failure the article is deleted again
       and ``TopicAssociationFailed`` is raised.

    Steps 1 and 2 fail before anything is written.
    """
    if not await validate_source(db, data.source_id):
        raise InvalidSourceId()

    topic_ids = _dedupe(data.topic_ids or [])
    invalid = await find_invalid_topic_ids(db, topic_ids)
    if invalid:
        raise InvalidTopicIds(invalid)

    article = Article(
        source_id=data.source_id,
        title=data.title,
        description=data.description,
        link=data.link,
        publication_date=data.publication_date,
        sentiment=data.sentiment,
    )
    db.add(article)
    try:
        await db.commit()
    except IntegrityError as exc:
        await db.rollback()
        if is_unique_violation(exc):
            logger.info("Duplicate article link skipped: %s", data.link)
            raise ArticleAlreadyExists() from exc
        raise DatabaseError("Failed to create article") from exc

    article_id = article.id
    if topic_ids:
        try:
            await _insert_topic_associations(db, article_id, topic_ids)
        except SQLAlchemyError as exc:
            logger.error("Topic association failed for new article %s: %s", article_id, exc)
            await _run_compensation(db, _undo_article_insert, article_id, article_id)
            raise TopicAssociationFailed() from exc

    with store_errors("reload article"):
        await db.refresh(article)
    await cache.invalidate_articles(article_id)
    return _article_to_entity(article)


async def create_articles_batch(
    db: AsyncSession,
    commands: list[ArticleCreate],
    skip_source_validation: bool = False,
) -> BatchCreateResponse:
    """
    Insert one feed's new items in a single statement.

    All commands must share one ``source_id``.  Rows whose link already
    exists are skipped by ``ON CONFLICT DO NOTHING``, so re-ingesting a
    feed is idempotent; ``duplicates_skipped`` counts them.  Topic ids and
    sentiment on batch commands are ignored (analysis fills them later).
    """
    if not commands:
        return BatchCreateResponse(articles=[], duplicates_skipped=0)

    source_ids = {c.source_id for c in commands}
    if len(source_ids) > 1:
        raise MixedSourceBatch()
    source_id = source_ids.pop()

    if not skip_source_validation and not await validate_source(db, source_id):
        raise InvalidSourceId()

    rows = [
        {
            "id": uuid.uuid4(),
            "source_id": source_id,
            "title": c.title,
            "description": c.description,
            "link": c.link,
            "publication_date": c.publication_date,
            "sentiment": c.sentiment,
        }
        for c in commands
    ]
    stmt = (
        dialect_insert(db, Article)
        .values(rows)
        .on_conflict_do_nothing(index_elements=["link"])
        .returning(Article.id)
    )
    with store_errors("insert article batch"):
        inserted_ids = list((await db.execute(stmt)).scalars().all())
        await db.commit()
        created = []
        if inserted_ids:
            result = await db.execute(
                select(Article)
                .where(Article.id.in_(inserted_ids))
                .order_by(Article.publication_date.desc(), Article.id)
            )
            created = list(result.scalars().all())

    duplicates = len(commands) - len(inserted_ids)
    logger.info(
        "Batch insert for source %s: %d created, %d duplicates skipped",
        source_id, len(inserted_ids), duplicates,
    )
    if inserted_ids:
        await cache.invalidate_articles()
    return BatchCreateResponse(
        articles=[_article_to_entity(a) for a in created],
        duplicates_skipped=duplicates,
    )


async def update_article(db: AsyncSession, article_id: uuid.UUID, data: ArticleUpdate) -> dict:
    """
    Apply a partial update of sentiment and/or the topic set.

    ``sentiment`` is written only when the client sent it (explicit null
    clears it).  ``topic_ids``, when sent, replaces the association set
    wholesale: existing rows are deleted and the new ones inserted.  If
    that step fails the previous sentiment and associations are restored
    before ``TopicAssociationFailed`` is raised.
    """
    with store_errors("fetch article"):
        article = await db.get(Article, article_id)
    if article is None:
        raise ArticleNotFound()

    fields = data.model_fields_set
    replace_topics = "topic_ids" in fields
    new_topic_ids = _dedupe(data.topic_ids) if replace_topics else []

    if replace_topics:
        invalid = await find_invalid_topic_ids(db, new_topic_ids)
        if invalid:
            raise InvalidTopicIds(invalid)

    snapshot = _ArticleSnapshot(article_id=article_id, sentiment=article.sentiment)
    if replace_topics:
        with store_errors("fetch article topics"):
            result = await db.execute(
                select(article_topics.c.topic_id).where(article_topics.c.article_id == article_id)
            )
            snapshot.topic_ids = list(result.scalars().all())

    if "sentiment" in fields:
        article.sentiment = data.sentiment
        with store_errors("update article"):
            await db.commit()

    if replace_topics:
        try:
            await db.execute(delete(article_topics).where(article_topics.c.article_id == article_id))
            await _insert_topic_associations(db, article_id, new_topic_ids)
            # An empty new set still needs the delete committed.
            await db.commit()
        except SQLAlchemyError as exc:
            logger.error("Topic re-association failed for article %s: %s", article_id, exc)
            await _run_compensation(db, _restore_article, snapshot, article_id)
            raise TopicAssociationFailed() from exc

    with store_errors("reload article"):
        await db.refresh(article)
    await cache.invalidate_articles(article_id)
    return _article_to_entity(article)


async def delete_article(db: AsyncSession, article_id: uuid.UUID) -> None:
    """Delete an article; its topic associations go with it (cascade)."""
    with store_errors("delete article"):
        result = await db.execute(delete(Article).where(Article.id == article_id))
        if result.rowcount == 0:
            await db.rollback()
            raise ArticleNotFound()
        await db.commit()
    await cache.invalidate_articles(article_id)
