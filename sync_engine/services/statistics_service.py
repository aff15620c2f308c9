"""Engine-wide statistics."""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

from ..engine.schedule import utc_now
from ..engine.statistics import daily_trends, error_histogram, most_common_errors
from ..engine.types import ExecutionStatus
from ..schemas.statistics import (
    ErrorCount,
    ErrorHistogramResponse,
    OverviewResponse,
    TrendPoint,
    TrendsResponse,
)

if TYPE_CHECKING:
    from ..engine.scheduler import Scheduler
    from ..repositories import ExecutionRepository, WorkflowRepository


class StatisticsService:
    """Overview, error histogram and daily trends across workflows."""

    def __init__(
        self,
        workflow_repo: WorkflowRepository,
        execution_repo: ExecutionRepository,
        scheduler: Scheduler,
    ) -> None:
        self._workflow_repo = workflow_repo
        self._execution_repo = execution_repo
        self._scheduler = scheduler

    async def overview(self) -> OverviewResponse:
        now = utc_now()
        by_status = await self._workflow_repo.count_by_status()
        executions = await self._execution_repo.between(now - timedelta(hours=24), now)

        finished = [
            e for e in executions if e.status in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)
        ]
        successful = sum(1 for e in finished if e.status == ExecutionStatus.COMPLETED)
        durations = [e.duration_ms for e in finished if e.duration_ms is not None]

        return OverviewResponse(
            total_workflows=sum(by_status.values()),
            workflows_by_status=by_status,
            running_executions=len(self._scheduler.running),
            executions_last_24h=len(finished),
            successful_last_24h=successful,
            failed_last_24h=len(finished) - successful,
            success_rate_24h=round(successful / len(finished) * 100, 2) if finished else None,
            average_duration_ms_24h=round(sum(durations) / len(durations)) if durations else None,
        )

    async def errors(
        self, days: int = 7, workflow_id: str | None = None, limit: int = 10
    ) -> ErrorHistogramResponse:
        """Error kinds over the last `days` days, most frequent first."""
        end = utc_now()
        start = end - timedelta(days=days)
        executions = await self._execution_repo.between(start, end, workflow_id)
        errors = most_common_errors(executions, limit=limit)
        return ErrorHistogramResponse(
            period_start=start,
            period_end=end,
            total_errors=sum(error_histogram(executions).values()),
            errors=[ErrorCount(**e) for e in errors],
        )

    async def trends(self, days: int = 7, workflow_id: str | None = None) -> TrendsResponse:
        """Daily run counts for the last `days` days, oldest first."""
        end = utc_now()
        start = (end - timedelta(days=days - 1)).replace(hour=0, minute=0, second=0, microsecond=0)
        executions = await self._execution_repo.between(start, end, workflow_id)
        return TrendsResponse(
            days=days,
            workflow_id=workflow_id,
            points=[TrendPoint(**point) for point in daily_trends(executions, end, days)],
        )
