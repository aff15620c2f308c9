"""Service layer for sync engine business logic."""

from .workflow_service import WorkflowService
from .execution_service import ExecutionService
from .statistics_service import StatisticsService

__all__ = [
    "WorkflowService",
    "ExecutionService",
    "StatisticsService",
]
