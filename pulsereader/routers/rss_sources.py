import uuid

from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.database import get_db
from pulsereader.dependencies import PaginationParams, require_service
from pulsereader.schemas import Caller, SourceCreate, SourceUpdate
from pulsereader.services import source_service

router = APIRouter(prefix="/api/v1/rss-sources", tags=["rss-sources"])


@router.get("")
async def list_sources(
    pagination: PaginationParams = Depends(),
    db: AsyncSession = Depends(get_db),
):
    return await source_service.list_sources(db, pagination.limit, pagination.offset)


@router.get("/{source_id}")
async def get_source(source_id: uuid.UUID, db: AsyncSession = Depends(get_db)):
    return await source_service.get_source(db, source_id)


@router.post("", status_code=201)
async def create_source(
    data: SourceCreate,
    _: Caller = Depends(require_service),
    db: AsyncSession = Depends(get_db),
):
    return await source_service.create_source(db, data)


@router.patch("/{source_id}")
async def update_source(
    source_id: uuid.UUID,
    data: SourceUpdate,
    _: Caller = Depends(require_service),
    db: AsyncSession = Depends(get_db),
):
    return await source_service.update_source(db, source_id, data)


@router.delete("/{source_id}", status_code=204)
async def delete_source(
    source_id: uuid.UUID,
    _: Caller = Depends(require_service),
    db: AsyncSession = Depends(get_db),
):
    await source_service.delete_source(db, source_id)
    return Response(status_code=204)
