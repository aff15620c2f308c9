"""Core module for the sync engine - config, exceptions, and dependencies."""

from .config import settings, Settings
from .exceptions import (
    WorkflowEngineError,
    WorkflowNotFoundError,
    ExecutionNotFoundError,
    ValidationError,
    TemplateUnavailableError,
    VersionConflictError,
    WorkflowInactiveError,
    WorkflowActiveError,
    ExecutionInProgressError,
    TargetResolutionError,
    CollaboratorError,
)
from .dependencies import (
    get_workflow_repository,
    get_execution_repository,
    get_scheduler,
    get_template_catalog,
    get_statistics_aggregator,
    get_workflow_service,
    get_execution_service,
    get_statistics_service,
)

__all__ = [
    # Config
    "settings",
    "Settings",
    # Exceptions
    "WorkflowEngineError",
    "WorkflowNotFoundError",
    "ExecutionNotFoundError",
    "ValidationError",
    "TemplateUnavailableError",
    "VersionConflictError",
    "WorkflowInactiveError",
    "WorkflowActiveError",
    "ExecutionInProgressError",
    "TargetResolutionError",
    "CollaboratorError",
    # Dependencies
    "get_workflow_repository",
    "get_execution_repository",
    "get_scheduler",
    "get_template_catalog",
    "get_statistics_aggregator",
    "get_workflow_service",
    "get_execution_service",
    "get_statistics_service",
]
