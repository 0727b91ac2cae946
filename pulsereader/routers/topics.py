import uuid

from fastapi import APIRouter, Depends, Query, Response
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.database import get_db
from pulsereader.dependencies import PaginationParams, require_service
from pulsereader.schemas import Caller, TopicCreate, TopicListQuery
from pulsereader.services import topic_service

router = APIRouter(prefix="/api/v1/topics", tags=["topics"])


@router.get("")
async def list_topics(
    pagination: PaginationParams = Depends(),
    search: str | None = Query(None, max_length=200, description="Case-insensitive name filter."),
    db: AsyncSession = Depends(get_db),
):
    query = TopicListQuery(limit=pagination.limit, offset=pagination.offset, search=search)
    return await topic_service.list_topics(db, query.limit, query.offset, query.search)


@router.get("/{topic_id}")
async def get_topic(topic_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return await topic_service.get_topic(db, topic_id)


@router.post("")
async def find_or_create_topic(
    data: TopicCreate,
    response: Response,
    _: Caller = Depends(require_service),
    db: AsyncSession = Depends(get_db),
):
    """201 when the topic was created, 200 when an existing one matched."""
    topic, created = await topic_service.find_or_create_topic(db, data.name)
    response.status_code = 201 if created else 200
    return topic


@router.delete("/{topic_id}", status_code=204)
async def delete_topic(
    topic_id: uuid.UUID,
    _: Caller = Depends(require_service),
    db: AsyncSession = Depends(get_db),
):
    await topic_service.delete_topic(db, topic_id)
    return Response(status_code=204)
