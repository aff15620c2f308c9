"""Core type definitions for the sync engine."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any


# --- Enumerations ---


class WorkflowType(str, Enum):
    """Category of a synchronization workflow."""

    PRICE_SYNC = "price_sync"
    EQUIPMENT_MONITOR = "equipment_monitor"
    INVENTORY_SYNC = "inventory_sync"
    FULL_SYNC = "full_sync"
    CUSTOM = "custom"


class WorkflowStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    ERROR = "error"
    DRAFT = "draft"


class ExecutionStatus(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_final(self) -> bool:
        return self in (ExecutionStatus.COMPLETED, ExecutionStatus.FAILED, ExecutionStatus.SKIPPED)


class ScheduleFrequency(str, Enum):
    MINUTES = "minutes"
    HOURS = "hours"
    DAYS = "days"
    WEEKS = "weeks"
    MONTHS = "months"


class BackoffKind(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


class TargetScope(str, Enum):
    NETWORK = "network"
    TRADING_POINT = "trading_point"
    EQUIPMENT = "equipment"
    COMPONENT = "component"


class TriggerSource(str, Enum):
    SCHEDULE = "schedule"
    MANUAL = "manual"


class ErrorKind(str, Enum):
    """Coarse failure classification used in error breakdowns."""

    CONNECTION_ERROR = "connection_error"
    TIMEOUT = "timeout"
    AUTHENTICATION_FAILED = "authentication_failed"
    RATE_LIMIT = "rate_limit"
    VALIDATION = "validation"
    TEMPLATE_UNAVAILABLE = "template_unavailable"
    CANCELLED = "cancelled"
    UNKNOWN = "unknown"


class TemplateStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"
    DEPRECATED = "deprecated"


class NotificationSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    CRITICAL = "critical"


# --- Workflow definition ---


@dataclass
class ScheduleConfig:
    """When a workflow runs: every `interval` units of `frequency`."""

    frequency: ScheduleFrequency
    interval: int = 1
    start_time: str | None = None  # "HH:MM" in `timezone`
    timezone: str = "UTC"
    days_of_week: list[int] = field(default_factory=list)  # 0-6, Sunday=0
    day_of_month: int | None = None


@dataclass
class WorkflowEndpoint:
    """Reference to a versioned API template plus call parameters."""

    template_id: str
    template_version: str
    enabled: bool = True
    priority: int = 5
    parameters: dict[str, Any] = field(default_factory=dict)


@dataclass
class WorkflowTarget:
    """Target selection expanded into concrete ids at run time."""

    scope: TargetScope
    include_all: bool = False
    network_ids: list[str] = field(default_factory=list)
    trading_point_ids: list[str] = field(default_factory=list)
    equipment_ids: list[str] = field(default_factory=list)
    component_ids: list[str] = field(default_factory=list)

    def ids_for_scope(self) -> list[str]:
        return {
            TargetScope.NETWORK: self.network_ids,
            TargetScope.TRADING_POINT: self.trading_point_ids,
            TargetScope.EQUIPMENT: self.equipment_ids,
            TargetScope.COMPONENT: self.component_ids,
        }[self.scope]


@dataclass
class RetryPolicy:
    max_attempts: int = 3
    backoff: BackoffKind = BackoffKind.EXPONENTIAL
    initial_delay_ms: int = 1000
    max_delay_ms: int = 30000
    retry_on_status_codes: set[int] = field(
        default_factory=lambda: {408, 429, 500, 502, 503, 504}
    )
    jitter: bool = False


@dataclass
class NotificationConfig:
    enabled: bool = True
    on_success: bool = False
    on_failure: bool = True
    on_critical_failure: bool = True
    email_recipients: list[str] = field(default_factory=list)
    critical_recipients: list[str] = field(default_factory=list)


@dataclass
class Workflow:
    """Workflow definition with derived scheduling and statistics fields."""

    id: str
    name: str
    type: WorkflowType
    schedule: ScheduleConfig
    endpoints: list[WorkflowEndpoint]
    targets: WorkflowTarget
    description: str = ""
    status: WorkflowStatus = WorkflowStatus.DRAFT
    retry_policy: RetryPolicy = field(default_factory=RetryPolicy)
    timeout_ms: int = 30000
    max_concurrent_executions: int = 5
    notifications: NotificationConfig = field(default_factory=NotificationConfig)
    tags: list[str] = field(default_factory=list)

    # Derived
    next_execution: datetime | None = None
    last_execution_id: str | None = None
    success_rate: float | None = None
    average_duration_ms: int | None = None
    consecutive_failures: int = 0

    # Audit
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None
    created_by: str | None = None
    updated_by: str | None = None

    def enabled_endpoints(self) -> list[WorkflowEndpoint]:
        """Enabled endpoints in execution order (lower priority first)."""
        return sorted((e for e in self.endpoints if e.enabled), key=lambda e: e.priority)


# --- Execution records ---


@dataclass
class TargetResult:
    """Outcome of one endpoint invocation against one target."""

    target_id: str
    target_type: TargetScope
    status: ExecutionStatus
    attempts: int = 0
    http_status: int | None = None
    response_time_ms: int | None = None
    records_created: int = 0
    records_updated: int = 0
    records_deleted: int = 0
    records_processed: int = 0
    error_kind: ErrorKind | None = None
    error_message: str | None = None


@dataclass
class EndpointExecution:
    template_id: str
    template_version: str
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime | None = None
    duration_ms: int | None = None
    retry_attempts: int = 0
    error_message: str | None = None
    target_results: list[TargetResult] = field(default_factory=list)


@dataclass
class ExecutionSummary:
    total_api_calls: int = 0
    successful_api_calls: int = 0
    failed_api_calls: int = 0
    total_records_processed: int = 0
    records_updated: int = 0
    records_created: int = 0
    records_deleted: int = 0
    average_response_time_ms: float = 0.0
    total_data_transferred_mb: float = 0.0
    error_breakdown: dict[str, int] = field(default_factory=dict)


@dataclass
class WorkflowExecution:
    """One run of a workflow."""

    id: str
    workflow_id: str
    workflow_name: str
    status: ExecutionStatus
    started_at: datetime
    triggered_by: TriggerSource
    triggered_by_user: str | None = None
    completed_at: datetime | None = None
    duration_ms: int | None = None
    endpoints_executed: list[EndpointExecution] = field(default_factory=list)
    targets_processed: int = 0
    targets_successful: int = 0
    targets_failed: int = 0
    error_message: str | None = None
    error_kind: ErrorKind | None = None
    warnings: list[str] = field(default_factory=list)
    summary: ExecutionSummary = field(default_factory=ExecutionSummary)
    idempotency_key: str | None = None


# --- Collaborator contracts ---


@dataclass
class ApiTemplate:
    """Resolved API command template from the external catalog."""

    id: str
    version: str
    method: str
    endpoint: str
    provider_ref: str
    status: TemplateStatus = TemplateStatus.ACTIVE
    default_timeout_ms: int | None = None


@dataclass
class ConnectionSettings:
    """Provider connection resolved from a template's provider_ref."""

    base_url: str
    headers: dict[str, str] = field(default_factory=dict)
    rate_limit_per_minute: int | None = None


@dataclass
class ResolvedTarget:
    id: str
    scope: TargetScope

    def parameters(self) -> dict[str, Any]:
        """Call parameters derived from the target."""
        return {
            "target_id": self.id,
            "target_type": self.scope.value,
            f"{self.scope.value}_id": self.id,
        }


@dataclass
class InvocationResult:
    """Terminal outcome of one (target, endpoint) invocation, retries included."""

    target: ResolvedTarget
    status: ExecutionStatus
    started_at: datetime
    completed_at: datetime
    attempts: int
    successful_calls: int = 0
    failed_calls: int = 0
    http_status: int | None = None
    response_time_ms: int | None = None
    records_created: int = 0
    records_updated: int = 0
    records_deleted: int = 0
    records_processed: int = 0
    bytes_transferred: int = 0
    error_kind: ErrorKind | None = None
    error_message: str | None = None
    response_times_ms: list[int] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.status == ExecutionStatus.COMPLETED

    @property
    def retry_attempts(self) -> int:
        return max(self.attempts - 1, 0)

    @property
    def duration_ms(self) -> int:
        return int((self.completed_at - self.started_at).total_seconds() * 1000)


@dataclass
class Notification:
    """A notice decided by the notification dispatcher."""

    severity: NotificationSeverity
    recipients: list[str]
    subject: str
    body: str


@dataclass
class WorkflowStatistics:
    """Rolling statistics for one workflow."""

    workflow_id: str
    total_executions: int = 0
    successful_executions: int = 0
    failed_executions: int = 0
    success_rate: float | None = None
    average_duration_ms: int | None = None
    min_duration_ms: int | None = None
    max_duration_ms: int | None = None
    consecutive_failures: int = 0
    total_records_processed: int = 0
    total_api_calls: int = 0
    average_records_per_execution: float | None = None
    most_common_errors: list[dict[str, Any]] = field(default_factory=list)
    last_execution_at: datetime | None = None
    next_execution_at: datetime | None = None
    period_start: datetime | None = None
    period_end: datetime | None = None
