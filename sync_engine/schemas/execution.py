"""Execution-related Pydantic schemas."""

from datetime import datetime

from pydantic import BaseModel, ConfigDict, Field

from ..engine.types import ErrorKind, ExecutionStatus, TargetScope, TriggerSource


class TargetResultSchema(BaseModel):
    """Outcome of one endpoint call against one target."""

    model_config = ConfigDict(from_attributes=True)

    target_id: str
    target_type: TargetScope
    status: ExecutionStatus
    attempts: int
    http_status: int | None
    response_time_ms: int | None
    records_created: int
    records_updated: int
    records_deleted: int
    records_processed: int
    error_kind: ErrorKind | None
    error_message: str | None


class EndpointExecutionSchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    template_id: str
    template_version: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None
    duration_ms: int | None
    retry_attempts: int
    error_message: str | None
    target_results: list[TargetResultSchema]


class ExecutionSummarySchema(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    total_api_calls: int
    successful_api_calls: int
    failed_api_calls: int
    total_records_processed: int
    records_updated: int
    records_created: int
    records_deleted: int
    average_response_time_ms: float
    total_data_transferred_mb: float
    error_breakdown: dict[str, int]


class ExecutionListItem(BaseModel):
    """Schema for execution in list response."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    workflow_id: str
    workflow_name: str
    status: ExecutionStatus
    triggered_by: TriggerSource
    triggered_by_user: str | None
    started_at: datetime
    completed_at: datetime | None
    duration_ms: int | None
    targets_processed: int
    targets_successful: int
    targets_failed: int
    error_kind: ErrorKind | None
    error_message: str | None


class ExecutionDetailResponse(ExecutionListItem):
    """Detailed execution response."""

    endpoints_executed: list[EndpointExecutionSchema]
    summary: ExecutionSummarySchema
    warnings: list[str] = Field(default_factory=list)


class ExecutionCancelResponse(BaseModel):
    execution_id: str
    cancelled: bool = Field(..., description="False when the run had already finished")
