"""
Metrics service: row counts, the sentiment distribution and cache counters
for the operational metrics endpoint.
"""
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.cache import cache
from pulsereader.models import Article, Profile, RssSource, Topic
from pulsereader.schemas import MetricsResponse
from pulsereader.services._store import store_errors


async def _count(db: AsyncSession, model) -> int:
    return (await db.execute(select(func.count()).select_from(model))).scalar_one()


async def get_metrics(db: AsyncSession) -> MetricsResponse:
    with store_errors("collect metrics"):
        total_articles = await _count(db, Article)
        total_topics = await _count(db, Topic)
        total_sources = await _count(db, RssSource)
        total_profiles = await _count(db, Profile)
        rows = (
            await db.execute(select(Article.sentiment, func.count()).group_by(Article.sentiment))
        ).all()

    distribution = {"positive": 0, "neutral": 0, "negative": 0}
    pending = 0
    for sentiment, count in rows:
        # Unanalyzed articles have no sentiment yet.
        if sentiment is None:
            pending = count
        else:
            distribution[sentiment.value] = count

    return MetricsResponse(
        total_articles=total_articles,
        total_topics=total_topics,
        total_sources=total_sources,
        total_profiles=total_profiles,
        sentiment_distribution=distribution,
        pending_analysis=pending,
        cache_info=cache.stats,
    )
