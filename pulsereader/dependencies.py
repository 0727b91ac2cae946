import uuid
from typing import Literal

from fastapi import Depends, Header, Query

from pulsereader.config import settings
from pulsereader.exceptions import AuthenticationRequired, Forbidden
from pulsereader.models import Sentiment
from pulsereader.schemas import ArticleQuery, Caller
from pulsereader.services.openrouter_client import OpenRouterClient


def get_caller(
    x_user_id: uuid.UUID | None = Header(None, description="Authenticated user id."),
    x_caller_role: Literal["service", "user"] | None = Header(
        None, description="'service' for trusted ingestion jobs, 'user' for readers."
    ),
) -> Caller:
    """
    Resolve the calling identity from headers set by the upstream gateway.

    The gateway has already verified the token; this only maps its
    result onto a ``Caller``.  A user id without an explicit role is a
    reader.
    """
    if x_caller_role == "service":
        return Caller(user_id=x_user_id, role="service")
    if x_user_id is not None:
        return Caller(user_id=x_user_id, role="user")
    return Caller()


def require_service(caller: Caller = Depends(get_caller)) -> Caller:
    """Writes to articles, topics and sources are reserved for the ingestion service."""
    if caller.role == "anonymous":
        raise AuthenticationRequired()
    if not caller.is_service:
        raise Forbidden("This operation requires the service role")
    return caller


def require_user(caller: Caller = Depends(get_caller)) -> Caller:
    if caller.user_id is None:
        raise AuthenticationRequired()
    return caller


class PaginationParams:
    """
    Reusable limit/offset dependency for the registry listings.

    ``limit`` is clamped to ``settings.MAX_PAGE_SIZE`` so a settings
    change is enough to tighten it.
    """

    def __init__(
        self,
        limit: int = Query(50, ge=1, le=500, description="Number of items to return."),
        offset: int = Query(0, ge=0, description="Number of items to skip."),
    ) -> None:
        self.limit = min(limit, settings.MAX_PAGE_SIZE)
        self.offset = offset


def article_query(
    limit: int = Query(settings.DEFAULT_PAGE_SIZE, ge=1, le=500),
    offset: int = Query(0, ge=0),
    sentiment: Sentiment | None = Query(None),
    topic_id: uuid.UUID | None = Query(None, alias="topicId"),
    source_id: uuid.UUID | None = Query(None, alias="sourceId"),
    apply_personalization: bool = Query(False, alias="applyPersonalization"),
    sort_by: Literal["publication_date", "created_at"] = Query("publication_date", alias="sortBy"),
    sort_order: Literal["asc", "desc"] = Query("desc", alias="sortOrder"),
) -> ArticleQuery:
    """Parse the article list query string into an ``ArticleQuery``."""
    return ArticleQuery(
        limit=min(limit, settings.MAX_PAGE_SIZE),
        offset=offset,
        sentiment=sentiment,
        topic_id=topic_id,
        source_id=source_id,
        apply_personalization=apply_personalization,
        sort_by=sort_by,
        sort_order=sort_order,
    )


_ai_client: OpenRouterClient | None = None


def get_ai_client() -> OpenRouterClient:
    """Process-wide OpenRouter client; closed by the application lifespan."""
    global _ai_client
    if _ai_client is None:
        _ai_client = OpenRouterClient()
    return _ai_client


async def close_ai_client() -> None:
    global _ai_client
    if _ai_client is not None:
        await _ai_client.close()
        _ai_client = None
