"""Execution routes."""

from __future__ import annotations

from datetime import datetime
from typing import Annotated, Literal

from fastapi import APIRouter, Depends, HTTPException, Query

from ..core.exceptions import ExecutionNotFoundError
from ..core.dependencies import get_execution_service
from ..engine.types import ExecutionStatus, TriggerSource
from ..services.execution_service import ExecutionService
from ..schemas.execution import (
    ExecutionCancelResponse,
    ExecutionDetailResponse,
    ExecutionListItem,
)
from ..schemas.common import PaginatedResponse

router = APIRouter(prefix="/executions")


# Type alias for dependency injection
ExecutionServiceDep = Annotated[ExecutionService, Depends(get_execution_service)]


@router.get("", response_model=PaginatedResponse[ExecutionListItem])
async def list_executions(
    service: ExecutionServiceDep,
    workflow_id: str | None = None,
    status: ExecutionStatus | None = None,
    triggered_by: TriggerSource | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_order: Literal["asc", "desc"] = "desc",
) -> PaginatedResponse[ExecutionListItem]:
    """List execution history, optionally filtered."""
    return await service.list_executions(
        workflow_id=workflow_id,
        status=status,
        triggered_by=triggered_by,
        date_from=date_from,
        date_to=date_to,
        page=page,
        page_size=page_size,
        sort_order=sort_order,
    )


@router.get("/recent", response_model=list[ExecutionListItem])
async def recent_executions(
    service: ExecutionServiceDep,
    limit: int = Query(20, ge=1, le=100),
) -> list[ExecutionListItem]:
    """Most recent executions across all workflows."""
    return await service.recent_executions(limit)


@router.get("/{execution_id}", response_model=ExecutionDetailResponse)
async def get_execution(
    execution_id: str,
    service: ExecutionServiceDep,
) -> ExecutionDetailResponse:
    """Get execution details."""
    try:
        return await service.get_execution(execution_id)
    except ExecutionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.post("/{execution_id}/cancel", response_model=ExecutionCancelResponse)
async def cancel_execution(
    execution_id: str,
    service: ExecutionServiceDep,
) -> ExecutionCancelResponse:
    """Request cancellation of a running execution."""
    try:
        return await service.cancel_execution(execution_id)
    except ExecutionNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
