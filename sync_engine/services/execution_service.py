"""Execution service for business logic."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from ..core.exceptions import ExecutionNotFoundError
from ..engine.types import ExecutionStatus, TriggerSource
from ..schemas.common import PaginatedResponse
from ..schemas.execution import (
    ExecutionCancelResponse,
    ExecutionDetailResponse,
    ExecutionListItem,
)

if TYPE_CHECKING:
    from ..engine.scheduler import Scheduler
    from ..repositories import ExecutionRepository


class ExecutionService:
    """Service for execution history and cancellation."""

    def __init__(self, execution_repo: ExecutionRepository, scheduler: Scheduler) -> None:
        self._execution_repo = execution_repo
        self._scheduler = scheduler

    async def list_executions(
        self,
        workflow_id: str | None = None,
        status: ExecutionStatus | None = None,
        triggered_by: TriggerSource | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        page_size: int = 20,
        sort_order: str = "desc",
    ) -> PaginatedResponse[ExecutionListItem]:
        """List execution history."""
        executions, total = await self._execution_repo.list(
            workflow_id=workflow_id,
            status=status,
            triggered_by=triggered_by,
            date_from=date_from,
            date_to=date_to,
            page=page,
            page_size=page_size,
            sort_order=sort_order,
        )
        return PaginatedResponse[ExecutionListItem](
            items=[ExecutionListItem.model_validate(e) for e in executions],
            total=total,
            page=page,
            page_size=page_size,
            has_next=page * page_size < total,
            has_prev=page > 1,
        )

    async def recent_executions(self, limit: int = 20) -> list[ExecutionListItem]:
        """Most recent executions across all workflows."""
        return [ExecutionListItem.model_validate(e) for e in await self._execution_repo.recent(limit)]

    async def get_execution(self, execution_id: str) -> ExecutionDetailResponse:
        """Get execution details."""
        execution = await self._execution_repo.get(execution_id)
        if not execution:
            raise ExecutionNotFoundError(execution_id)
        return ExecutionDetailResponse.model_validate(execution)

    async def cancel_execution(self, execution_id: str) -> ExecutionCancelResponse:
        """Request cooperative cancellation of an in-flight execution."""
        execution = await self._execution_repo.get(execution_id)
        if not execution:
            raise ExecutionNotFoundError(execution_id)
        cancelled = self._scheduler.cancel_execution(execution_id)
        return ExecutionCancelResponse(execution_id=execution_id, cancelled=cancelled)
