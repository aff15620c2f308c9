"""Statistics aggregation over execution history."""

from __future__ import annotations

from collections import Counter
from datetime import date, datetime, timedelta
from typing import Any, Iterable

from .schedule import as_utc
from .types import ExecutionStatus, WorkflowExecution, WorkflowStatistics

_FINAL_RUN_STATUSES = (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED)


class StatisticsAggregator:
    """
    Derives success rates, durations and error breakdowns from executions.

    The rolling window is the newest `window_size` finalized runs that
    started within the last `period_days`. Skipped triggers never count.
    """

    def __init__(self, window_size: int = 50, period_days: int = 30) -> None:
        self._window_size = window_size
        self._period_days = period_days

    def window(
        self, executions: Iterable[WorkflowExecution], now: datetime
    ) -> list[WorkflowExecution]:
        """Executions inside the rolling window, newest first."""
        period_start = now - timedelta(days=self._period_days)
        finalized = [
            e
            for e in _newest_first(executions)
            if e.status in _FINAL_RUN_STATUSES and as_utc(e.started_at) >= period_start
        ]
        return finalized[: self._window_size]

    def compute(
        self,
        workflow_id: str,
        executions: Iterable[WorkflowExecution],
        now: datetime,
        next_execution: datetime | None = None,
    ) -> WorkflowStatistics:
        history = _newest_first(executions)
        window = self.window(history, now)

        stats = WorkflowStatistics(
            workflow_id=workflow_id,
            consecutive_failures=consecutive_failures(history),
            next_execution_at=next_execution,
            period_start=now - timedelta(days=self._period_days),
            period_end=now,
        )
        if history:
            stats.last_execution_at = history[0].started_at
        if not window:
            return stats

        successful = [e for e in window if e.status == ExecutionStatus.COMPLETED]
        durations = [e.duration_ms for e in window if e.duration_ms is not None]

        stats.total_executions = len(window)
        stats.successful_executions = len(successful)
        stats.failed_executions = len(window) - len(successful)
        stats.success_rate = round(len(successful) / len(window) * 100, 2)
        if durations:
            stats.average_duration_ms = round(sum(durations) / len(durations))
            stats.min_duration_ms = min(durations)
            stats.max_duration_ms = max(durations)
        stats.total_records_processed = sum(e.summary.total_records_processed for e in window)
        stats.total_api_calls = sum(e.summary.total_api_calls for e in window)
        stats.average_records_per_execution = round(
            stats.total_records_processed / len(window), 2
        )
        stats.most_common_errors = most_common_errors(window)
        return stats


def consecutive_failures(executions: Iterable[WorkflowExecution]) -> int:
    """Number of failed runs since the most recent completed one."""
    count = 0
    for execution in _newest_first(executions):
        if execution.status == ExecutionStatus.FAILED:
            count += 1
        elif execution.status == ExecutionStatus.COMPLETED:
            break
    return count


def error_histogram(executions: Iterable[WorkflowExecution]) -> dict[str, int]:
    """Sum of error breakdowns across executions."""
    histogram: Counter[str] = Counter()
    for execution in executions:
        histogram.update(execution.summary.error_breakdown)
    return dict(histogram.most_common())


def most_common_errors(
    executions: Iterable[WorkflowExecution], limit: int = 5
) -> list[dict[str, Any]]:
    histogram = error_histogram(executions)
    total = sum(histogram.values())
    return [
        {
            "error_type": kind,
            "count": count,
            "percentage": round(count / total * 100) if total else 0,
        }
        for kind, count in list(histogram.items())[:limit]
    ]


def daily_trends(
    executions: Iterable[WorkflowExecution], end: datetime, days: int
) -> list[dict[str, Any]]:
    """Per-day counts of successful, failed and total runs for the last `days` days."""
    first_day = end.date() - timedelta(days=days - 1)
    buckets: dict[date, Counter[str]] = {
        first_day + timedelta(days=i): Counter() for i in range(days)
    }
    for execution in executions:
        if execution.status not in _FINAL_RUN_STATUSES:
            continue
        day = as_utc(execution.started_at).date()
        if day in buckets:
            buckets[day]["total"] += 1
            key = "successful" if execution.status == ExecutionStatus.COMPLETED else "failed"
            buckets[day][key] += 1

    return [
        {
            "date": day.isoformat(),
            "successful": counts["successful"],
            "failed": counts["failed"],
            "total": counts["total"],
        }
        for day, counts in buckets.items()
    ]


def _newest_first(executions: Iterable[WorkflowExecution]) -> list[WorkflowExecution]:
    return sorted(executions, key=lambda e: as_utc(e.started_at), reverse=True)
