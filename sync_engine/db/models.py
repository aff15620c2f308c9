"""SQLModel database models."""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from sqlmodel import Column, Field, SQLModel
from sqlalchemy import JSON, DateTime


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


class WorkflowModel(SQLModel, table=True):
    """Workflow database model."""

    __tablename__ = "workflows"

    id: str = Field(primary_key=True)
    name: str = Field(index=True)
    description: str = Field(default="")
    type: str = Field(index=True)
    status: str = Field(default="draft", index=True)

    # Store the definition as JSON
    # This includes: schedule, endpoints, targets, retry_policy, notifications, limits
    definition: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    tags: list[str] = Field(default_factory=list, sa_column=Column(JSON))

    # Derived scheduling and statistics fields
    next_execution: datetime | None = Field(
        default=None, index=True, sa_type=DateTime(timezone=True)
    )
    last_execution_id: str | None = Field(default=None)
    success_rate: float | None = Field(default=None)
    average_duration_ms: int | None = Field(default=None)
    consecutive_failures: int = Field(default=0)

    version: int = Field(default=1)
    idempotency_key: str | None = Field(default=None, unique=True)

    created_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
    updated_at: datetime = Field(default_factory=_utc_now, sa_type=DateTime(timezone=True))
    created_by: str | None = Field(default=None)
    updated_by: str | None = Field(default=None)


class ExecutionModel(SQLModel, table=True):
    """Execution history database model."""

    __tablename__ = "workflow_executions"

    id: str = Field(primary_key=True)
    workflow_id: str = Field(index=True)
    workflow_name: str

    status: str = Field(index=True)  # pending, running, completed, failed, skipped
    triggered_by: str = Field(index=True)  # schedule, manual
    triggered_by_user: str | None = Field(default=None)
    idempotency_key: str | None = Field(default=None, unique=True)

    started_at: datetime = Field(
        default_factory=_utc_now, index=True, sa_type=DateTime(timezone=True)
    )
    completed_at: datetime | None = Field(default=None, sa_type=DateTime(timezone=True))
    duration_ms: int | None = Field(default=None)

    targets_processed: int = Field(default=0)
    targets_successful: int = Field(default=0)
    targets_failed: int = Field(default=0)

    error_message: str | None = Field(default=None)
    error_kind: str | None = Field(default=None)

    # Per-endpoint details, summary and warnings as JSON
    endpoints_executed: list[dict[str, Any]] = Field(default_factory=list, sa_column=Column(JSON))
    summary: dict[str, Any] = Field(default_factory=dict, sa_column=Column(JSON))
    warnings: list[str] = Field(default_factory=list, sa_column=Column(JSON))
