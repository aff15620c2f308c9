"""Pydantic schemas for API request/response validation."""

from .workflow import (
    ScheduleSchema,
    EndpointSchema,
    TargetSchema,
    RetryPolicySchema,
    NotificationSchema,
    WorkflowCreateRequest,
    WorkflowUpdateRequest,
    ActiveToggleRequest,
    CloneRequest,
    ExecuteRequest,
    WorkflowResponse,
    WorkflowListItem,
    WorkflowActiveResponse,
    WorkflowValidationResponse,
)
from .execution import (
    ExecutionListItem,
    ExecutionDetailResponse,
    ExecutionCancelResponse,
)
from .statistics import (
    WorkflowStatisticsResponse,
    OverviewResponse,
    ErrorHistogramResponse,
    TrendsResponse,
)
from .common import (
    SuccessResponse,
    PaginatedResponse,
    HealthResponse,
    RootResponse,
)

__all__ = [
    # Workflow schemas
    "ScheduleSchema",
    "EndpointSchema",
    "TargetSchema",
    "RetryPolicySchema",
    "NotificationSchema",
    "WorkflowCreateRequest",
    "WorkflowUpdateRequest",
    "ActiveToggleRequest",
    "CloneRequest",
    "ExecuteRequest",
    "WorkflowResponse",
    "WorkflowListItem",
    "WorkflowActiveResponse",
    "WorkflowValidationResponse",
    # Execution schemas
    "ExecutionListItem",
    "ExecutionDetailResponse",
    "ExecutionCancelResponse",
    # Statistics schemas
    "WorkflowStatisticsResponse",
    "OverviewResponse",
    "ErrorHistogramResponse",
    "TrendsResponse",
    # Common schemas
    "SuccessResponse",
    "PaginatedResponse",
    "HealthResponse",
    "RootResponse",
]
