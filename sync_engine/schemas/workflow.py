"""Workflow-related Pydantic schemas."""

from datetime import datetime
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from ..engine.schedule import validate_schedule
from ..engine.types import (
    BackoffKind,
    ScheduleConfig,
    ScheduleFrequency,
    TargetScope,
    WorkflowStatus,
    WorkflowType,
)


class ScheduleSchema(BaseModel):
    """Schema for a workflow schedule."""

    model_config = ConfigDict(from_attributes=True)

    frequency: ScheduleFrequency = Field(..., description="Unit of the interval")
    interval: int = Field(1, ge=1, description="Run every N units")
    start_time: str | None = Field(
        None, pattern=r"^\d{2}:\d{2}$", description="Anchor time HH:MM in the schedule timezone"
    )
    timezone: str = Field("UTC", description="IANA timezone name")
    days_of_week: list[int] = Field(default_factory=list, description="Weekly runs: 0-6, Sunday=0")
    day_of_month: int | None = Field(None, ge=1, le=31, description="Monthly runs: day of month")

    @model_validator(mode="after")
    def check_schedule(self) -> "ScheduleSchema":
        validate_schedule(self.to_config())
        return self

    def to_config(self) -> ScheduleConfig:
        return ScheduleConfig(
            frequency=self.frequency,
            interval=self.interval,
            start_time=self.start_time,
            timezone=self.timezone,
            days_of_week=list(self.days_of_week),
            day_of_month=self.day_of_month,
        )


class EndpointSchema(BaseModel):
    """Schema for a versioned API template reference."""

    model_config = ConfigDict(from_attributes=True)

    template_id: str = Field(..., min_length=1, description="API template identifier")
    template_version: str = Field(..., min_length=1, description="Pinned template version")
    enabled: bool = Field(True, description="Disabled endpoints are skipped")
    priority: int = Field(5, ge=1, le=10, description="Execution order, lower runs first")
    parameters: dict[str, Any] = Field(default_factory=dict, description="Call parameters")


class TargetSchema(BaseModel):
    """Schema for the target selection."""

    model_config = ConfigDict(from_attributes=True)

    scope: TargetScope
    include_all: bool = Field(False, description="Target every entity at the scope")
    network_ids: list[str] = Field(default_factory=list)
    trading_point_ids: list[str] = Field(default_factory=list)
    equipment_ids: list[str] = Field(default_factory=list)
    component_ids: list[str] = Field(default_factory=list)


class RetryPolicySchema(BaseModel):
    """Schema for the retry policy."""

    model_config = ConfigDict(from_attributes=True)

    max_attempts: int = Field(3, ge=1, le=10, description="Total attempts, first call included")
    backoff: BackoffKind = BackoffKind.EXPONENTIAL
    initial_delay_ms: int = Field(1000, gt=0)
    max_delay_ms: int = Field(30000, ge=0)
    retry_on_status_codes: list[int] = Field(
        default_factory=lambda: [408, 429, 500, 502, 503, 504]
    )
    jitter: bool = False

    @field_validator("retry_on_status_codes", mode="before")
    @classmethod
    def sort_codes(cls, value: Any) -> Any:
        if isinstance(value, (set, frozenset)):
            return sorted(value)
        return value

    @model_validator(mode="after")
    def check_delays(self) -> "RetryPolicySchema":
        if self.max_delay_ms < self.initial_delay_ms:
            raise ValueError("max_delay_ms must be greater than or equal to initial_delay_ms")
        return self


class NotificationSchema(BaseModel):
    """Schema for notification settings."""

    model_config = ConfigDict(from_attributes=True)

    enabled: bool = True
    on_success: bool = False
    on_failure: bool = True
    on_critical_failure: bool = True
    email_recipients: list[str] = Field(default_factory=list)
    critical_recipients: list[str] = Field(default_factory=list)

    @field_validator("email_recipients", "critical_recipients")
    @classmethod
    def check_addresses(cls, value: list[str]) -> list[str]:
        for address in value:
            if "@" not in address:
                raise ValueError(f"invalid email address: {address}")
        return value


class WorkflowCreateRequest(BaseModel):
    """Request schema for creating a workflow."""

    name: str = Field(..., min_length=1, max_length=255, description="Workflow name")
    description: str = Field("", max_length=1000, description="Workflow description")
    type: WorkflowType = Field(..., description="Workflow category")
    status: Literal["active", "inactive", "draft"] = Field("draft", description="Initial status")
    schedule: ScheduleSchema
    endpoints: list[EndpointSchema] = Field(..., min_length=1, description="API templates to call")
    targets: TargetSchema
    retry_policy: RetryPolicySchema = Field(default_factory=RetryPolicySchema)
    timeout_ms: int = Field(30000, ge=1000, le=300000, description="Per-call timeout")
    max_concurrent_executions: int = Field(5, ge=1, le=50, description="Concurrent calls per run")
    notifications: NotificationSchema = Field(default_factory=NotificationSchema)
    tags: list[str] = Field(default_factory=list)

    class Config:
        json_schema_extra = {
            "example": {
                "name": "Hourly price sync",
                "type": "price_sync",
                "status": "active",
                "schedule": {"frequency": "hours", "interval": 1},
                "endpoints": [{"template_id": "set-prices", "template_version": "1.0"}],
                "targets": {"scope": "trading_point", "include_all": True},
            }
        }


class WorkflowUpdateRequest(BaseModel):
    """Request schema for updating a workflow. Omitted fields keep their value."""

    version: int = Field(..., ge=1, description="Version the edit is based on")
    name: str | None = Field(None, min_length=1, max_length=255)
    description: str | None = Field(None, max_length=1000)
    type: WorkflowType | None = None
    schedule: ScheduleSchema | None = None
    endpoints: list[EndpointSchema] | None = Field(None, min_length=1)
    targets: TargetSchema | None = None
    retry_policy: RetryPolicySchema | None = None
    timeout_ms: int | None = Field(None, ge=1000, le=300000)
    max_concurrent_executions: int | None = Field(None, ge=1, le=50)
    notifications: NotificationSchema | None = None
    tags: list[str] | None = None


class ActiveToggleRequest(BaseModel):
    """Request schema for toggling workflow active state."""

    active: bool


class CloneRequest(BaseModel):
    """Request schema for cloning a workflow."""

    name: str | None = Field(None, min_length=1, max_length=255, description="Defaults to '<name> (copy)'")


class ExecuteRequest(BaseModel):
    """Request schema for a manual run."""

    override_schedule: bool = Field(False, description="Allow running a non-active workflow")
    custom_parameters: dict[str, Any] = Field(
        default_factory=dict, description="Extra call parameters for every endpoint"
    )
    target_override: TargetSchema | None = Field(None, description="Targets for this run only")


class WorkflowResponse(BaseModel):
    """Full workflow definition with derived fields."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    name: str
    description: str
    type: WorkflowType
    status: WorkflowStatus
    schedule: ScheduleSchema
    endpoints: list[EndpointSchema]
    targets: TargetSchema
    retry_policy: RetryPolicySchema
    timeout_ms: int
    max_concurrent_executions: int
    notifications: NotificationSchema
    tags: list[str]
    next_execution: datetime | None
    last_execution_id: str | None
    success_rate: float | None
    average_duration_ms: int | None
    consecutive_failures: int
    version: int
    created_at: datetime | None
    updated_at: datetime | None
    created_by: str | None
    updated_by: str | None


class WorkflowListItem(BaseModel):
    """Schema for workflow in list response."""

    id: str
    name: str
    description: str
    type: WorkflowType
    status: WorkflowStatus
    scope: TargetScope
    endpoint_count: int
    next_execution: datetime | None
    last_execution_id: str | None
    success_rate: float | None
    consecutive_failures: int
    tags: list[str]
    version: int
    updated_at: datetime | None


class WorkflowActiveResponse(BaseModel):
    """Response schema for active toggle."""

    id: str
    status: WorkflowStatus
    next_execution: datetime | None
    version: int


class ValidationIssue(BaseModel):
    field: str | None
    message: str


class WorkflowValidationResponse(BaseModel):
    """Result of validating a stored workflow against its collaborators."""

    valid: bool
    errors: list[ValidationIssue] = Field(default_factory=list)
    warnings: list[ValidationIssue] = Field(default_factory=list)
