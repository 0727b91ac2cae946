import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.database import get_db
from pulsereader.dependencies import article_query, get_ai_client, get_caller, require_service
from pulsereader.schemas import (
    AnalysisOutcome,
    ArticleBatchCreate,
    ArticleCreate,
    ArticleListResponse,
    ArticleQuery,
    ArticleUpdate,
    BatchCreateResponse,
    Caller,
)
from pulsereader.services import analysis_service, article_service
from pulsereader.services.openrouter_client import OpenRouterClient

router = APIRouter(prefix="/api/v1/articles", tags=["articles"])


@router.get("", response_model=ArticleListResponse)
async def list_articles(
    query: ArticleQuery = Depends(article_query),
    caller: Caller = Depends(get_caller),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.get_articles(db, query, user_id=caller.user_id)


@router.post("/batch", status_code=201, response_model=BatchCreateResponse)
async def create_articles_batch(
    data: ArticleBatchCreate,
    _: Caller = Depends(require_service),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.create_articles_batch(
        db, data.articles, skip_source_validation=data.skip_source_validation
    )


@router.get("/{article_id}")
async def get_article(article_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return await article_service.get_article(db, article_id)


@router.post("", status_code=201)
async def create_article(
    data: ArticleCreate,
    _: Caller = Depends(require_service),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.create_article(db, data)


@router.patch("/{article_id}")
async def update_article(
    article_id: uuid.UUID,
    data: ArticleUpdate,
    _: Caller = Depends(require_service),
    db: AsyncSession = Depends(get_db),
):
    return await article_service.update_article(db, article_id, data)


@router.delete("/{article_id}", status_code=204)
async def delete_article(
    article_id: uuid.UUID,
    _: Caller = Depends(require_service),
    db: AsyncSession = Depends(get_db),
):
    await article_service.delete_article(db, article_id)
    return Response(status_code=204)


@router.post("/{article_id}/analyze", response_model=AnalysisOutcome)
async def analyze_article(
    article_id: uuid.UUID,
    _: Caller = Depends(require_service),
    client: OpenRouterClient = Depends(get_ai_client),
    db: AsyncSession = Depends(get_db),
):
    return await analysis_service.analyze_article(db, client, article_id)
