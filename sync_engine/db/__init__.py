"""Database configuration and models."""

from .session import engine, async_session_factory, init_db
from .models import WorkflowModel, ExecutionModel

__all__ = [
    "engine",
    "async_session_factory",
    "init_db",
    "WorkflowModel",
    "ExecutionModel",
]
