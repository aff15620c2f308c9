"""Repository layer for data persistence."""

from .workflow_repository import WorkflowRepository
from .execution_repository import ExecutionRepository

__all__ = [
    "WorkflowRepository",
    "ExecutionRepository",
]
