"""Statistics routes."""

from __future__ import annotations

from typing import Annotated

from fastapi import APIRouter, Depends, Query

from ..core.dependencies import get_statistics_service
from ..services.statistics_service import StatisticsService
from ..schemas.statistics import ErrorHistogramResponse, OverviewResponse, TrendsResponse

router = APIRouter(prefix="/statistics")

StatisticsServiceDep = Annotated[StatisticsService, Depends(get_statistics_service)]


@router.get("/overview", response_model=OverviewResponse)
async def overview(service: StatisticsServiceDep) -> OverviewResponse:
    """Engine-wide counts for the last 24 hours."""
    return await service.overview()


@router.get("/errors", response_model=ErrorHistogramResponse)
async def errors(
    service: StatisticsServiceDep,
    days: int = Query(7, ge=1, le=90),
    workflow_id: str | None = None,
    limit: int = Query(10, ge=1, le=50),
) -> ErrorHistogramResponse:
    return await service.errors(days=days, workflow_id=workflow_id, limit=limit)


@router.get("/trends", response_model=TrendsResponse)
async def trends(
    service: StatisticsServiceDep,
    days: int = Query(7, ge=1, le=90),
    workflow_id: str | None = None,
) -> TrendsResponse:
    return await service.trends(days=days, workflow_id=workflow_id)
