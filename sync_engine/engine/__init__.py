"""Core sync engine components."""

from .types import (
    Workflow,
    WorkflowExecution,
    WorkflowStatistics,
    ExecutionStatus,
    WorkflowStatus,
    TriggerSource,
    ErrorKind,
)
from .retry_policy import RetryPolicyEvaluator, RetryDecision, AttemptOutcome
from .target_resolver import TargetResolver, TargetResolution
from .endpoint_invoker import EndpointInvoker, CancelToken
from .orchestrator import ExecutionOrchestrator
from .statistics import StatisticsAggregator
from .notifications import NotificationDispatcher

__all__ = [
    "Workflow",
    "WorkflowExecution",
    "WorkflowStatistics",
    "ExecutionStatus",
    "WorkflowStatus",
    "TriggerSource",
    "ErrorKind",
    "RetryPolicyEvaluator",
    "RetryDecision",
    "AttemptOutcome",
    "TargetResolver",
    "TargetResolution",
    "EndpointInvoker",
    "CancelToken",
    "ExecutionOrchestrator",
    "StatisticsAggregator",
    "NotificationDispatcher",
]
