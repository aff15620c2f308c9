"""Statistics-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field


class ErrorCount(BaseModel):
    error_type: str
    count: int
    percentage: int = Field(..., description="Share of all failed calls, rounded")


class WorkflowStatisticsResponse(BaseModel):
    """Rolling statistics for one workflow."""

    model_config = ConfigDict(from_attributes=True)

    workflow_id: str
    total_executions: int
    successful_executions: int
    failed_executions: int
    success_rate: float | None = Field(..., description="Percent; null without executions")
    average_duration_ms: int | None
    min_duration_ms: int | None
    max_duration_ms: int | None
    consecutive_failures: int
    total_records_processed: int
    total_api_calls: int
    average_records_per_execution: float | None
    most_common_errors: list[ErrorCount]
    last_execution_at: datetime | None
    next_execution_at: datetime | None
    period_start: datetime | None
    period_end: datetime | None


class OverviewResponse(BaseModel):
    """Engine-wide overview."""

    total_workflows: int
    workflows_by_status: dict[str, int]
    running_executions: int
    executions_last_24h: int
    successful_last_24h: int
    failed_last_24h: int
    success_rate_24h: float | None
    average_duration_ms_24h: int | None


class ErrorHistogramResponse(BaseModel):
    period_start: datetime
    period_end: datetime
    total_errors: int
    errors: list[ErrorCount]


class TrendPoint(BaseModel):
    date: str
    total: int
    successful: int
    failed: int


class TrendsResponse(BaseModel):
    days: int
    workflow_id: str | None = None
    points: list[TrendPoint]
