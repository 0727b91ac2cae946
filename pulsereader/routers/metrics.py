from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from pulsereader.database import get_db
from pulsereader.schemas import MetricsResponse
from pulsereader.services import metrics_service

router = APIRouter(prefix="/api/v1/metrics", tags=["metrics"])


@router.get("", response_model=MetricsResponse)
async def get_metrics(db: AsyncSession = Depends(get_db)):
    return await metrics_service.get_metrics(db)
