"""Execution repository for database persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from sqlalchemy import delete, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..core.exceptions import ExecutionNotFoundError, WorkflowEngineError
from ..db.models import ExecutionModel
from ..engine.schedule import as_utc, utc_now
from ..engine.types import (
    EndpointExecution,
    ErrorKind,
    ExecutionStatus,
    ExecutionSummary,
    TargetResult,
    TargetScope,
    TriggerSource,
    WorkflowExecution,
)

_OPEN_STATUSES = (ExecutionStatus.PENDING.value, ExecutionStatus.RUNNING.value)


class ExecutionRepository:
    """Repository for execution history persistence."""

    def __init__(self, session: AsyncSession, max_records_per_workflow: int = 500) -> None:
        self._session = session
        self._max_records = max_records_per_workflow

    async def add(self, execution: WorkflowExecution) -> WorkflowExecution:
        """Insert a new execution record."""
        db_execution = ExecutionModel(id=execution.id, workflow_id=execution.workflow_id,
                                      workflow_name=execution.workflow_name,
                                      status=execution.status.value,
                                      triggered_by=execution.triggered_by.value)
        self._apply(db_execution, execution)

        self._session.add(db_execution)
        await self._session.commit()
        await self._session.refresh(db_execution)

        # Cleanup old records
        await self._cleanup(execution.workflow_id)

        return self._to_execution(db_execution)

    async def save(self, execution: WorkflowExecution) -> WorkflowExecution:
        """
        Persist the current state of an execution.

        Raises:
            ExecutionNotFoundError: if the record no longer exists.
            WorkflowEngineError: if the stored record is already finalized.
        """
        db_execution = await self._session.get(ExecutionModel, execution.id, populate_existing=True)
        if not db_execution:
            raise ExecutionNotFoundError(execution.id)
        if db_execution.completed_at is not None:
            raise WorkflowEngineError(
                f"Execution {execution.id} is finalized and cannot be modified",
                details={"execution_id": execution.id},
            )

        self._apply(db_execution, execution)
        await self._session.commit()
        await self._session.refresh(db_execution)
        return self._to_execution(db_execution)

    async def get(self, execution_id: str) -> WorkflowExecution | None:
        """Get an execution record by ID."""
        db_execution = await self._session.get(ExecutionModel, execution_id, populate_existing=True)
        if not db_execution:
            return None
        return self._to_execution(db_execution)

    async def get_by_idempotency_key(self, key: str) -> WorkflowExecution | None:
        statement = select(ExecutionModel).where(ExecutionModel.idempotency_key == key)
        result = await self._session.execute(statement)
        db_execution = result.scalars().first()
        return self._to_execution(db_execution) if db_execution else None

    async def list(
        self,
        workflow_id: str | None = None,
        status: ExecutionStatus | None = None,
        triggered_by: TriggerSource | None = None,
        date_from: datetime | None = None,
        date_to: datetime | None = None,
        page: int = 1,
        page_size: int = 50,
        sort_order: str = "desc",
    ) -> tuple[list[WorkflowExecution], int]:
        """List execution records matching the filters; returns (page items, total)."""
        conditions = []
        if workflow_id:
            conditions.append(ExecutionModel.workflow_id == workflow_id)
        if status:
            conditions.append(ExecutionModel.status == status.value)
        if triggered_by:
            conditions.append(ExecutionModel.triggered_by == triggered_by.value)
        if date_from:
            conditions.append(ExecutionModel.started_at >= as_utc(date_from))
        if date_to:
            conditions.append(ExecutionModel.started_at <= as_utc(date_to))

        count_statement = select(func.count()).select_from(ExecutionModel).where(*conditions)
        total = (await self._session.execute(count_statement)).scalar_one()

        order = (
            ExecutionModel.started_at.asc()
            if sort_order == "asc"
            else ExecutionModel.started_at.desc()
        )
        statement = (
            select(ExecutionModel)
            .where(*conditions)
            .order_by(order)
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        result = await self._session.execute(statement)
        return [self._to_execution(e) for e in result.scalars().all()], total

    async def recent(self, limit: int = 20) -> list[WorkflowExecution]:
        """Most recent executions across all workflows."""
        items, _ = await self.list(page=1, page_size=limit)
        return items

    async def for_workflow(self, workflow_id: str, limit: int | None = None) -> list[WorkflowExecution]:
        """Executions of one workflow, newest first."""
        statement = (
            select(ExecutionModel)
            .where(ExecutionModel.workflow_id == workflow_id)
            .order_by(ExecutionModel.started_at.desc())
        )
        if limit:
            statement = statement.limit(limit)
        result = await self._session.execute(statement)
        return [self._to_execution(e) for e in result.scalars().all()]

    async def between(
        self,
        start: datetime,
        end: datetime,
        workflow_id: str | None = None,
    ) -> list[WorkflowExecution]:
        """Executions started within [start, end], newest first."""
        statement = (
            select(ExecutionModel)
            .where(ExecutionModel.started_at >= as_utc(start), ExecutionModel.started_at <= as_utc(end))
            .order_by(ExecutionModel.started_at.desc())
        )
        if workflow_id:
            statement = statement.where(ExecutionModel.workflow_id == workflow_id)
        result = await self._session.execute(statement)
        return [self._to_execution(e) for e in result.scalars().all()]

    async def fail_interrupted(self, reason: str) -> int:
        """Finalize pending/running records left behind by a previous process."""
        statement = select(ExecutionModel).where(ExecutionModel.status.in_(_OPEN_STATUSES))
        result = await self._session.execute(statement)
        interrupted = result.scalars().all()

        now = utc_now()
        for db_execution in interrupted:
            started = as_utc(db_execution.started_at)
            db_execution.status = ExecutionStatus.FAILED.value
            db_execution.error_kind = ErrorKind.CANCELLED.value
            db_execution.error_message = reason
            db_execution.completed_at = as_utc(now)
            db_execution.duration_ms = int((now - started).total_seconds() * 1000)

        await self._session.commit()
        return len(interrupted)

    async def delete_for_workflow(self, workflow_id: str) -> int:
        statement = delete(ExecutionModel).where(ExecutionModel.workflow_id == workflow_id)
        result = await self._session.execute(statement)
        await self._session.commit()
        return result.rowcount

    async def _cleanup(self, workflow_id: str) -> None:
        """Remove the oldest finalized records of a workflow if over max."""
        statement = (
            select(ExecutionModel.id)
            .where(
                ExecutionModel.workflow_id == workflow_id,
                ExecutionModel.status.not_in(_OPEN_STATUSES),
            )
            .order_by(ExecutionModel.started_at.desc())
            .offset(self._max_records)
        )
        result = await self._session.execute(statement)
        to_delete = list(result.scalars().all())

        if to_delete:
            await self._session.execute(
                delete(ExecutionModel).where(ExecutionModel.id.in_(to_delete))
            )
            await self._session.commit()

    def _apply(self, db_execution: ExecutionModel, execution: WorkflowExecution) -> None:
        """Copy execution state onto the database model."""
        db_execution.status = execution.status.value
        db_execution.triggered_by = execution.triggered_by.value
        db_execution.triggered_by_user = execution.triggered_by_user
        db_execution.idempotency_key = execution.idempotency_key
        db_execution.started_at = as_utc(execution.started_at)
        db_execution.completed_at = as_utc(execution.completed_at)
        db_execution.duration_ms = execution.duration_ms
        db_execution.targets_processed = execution.targets_processed
        db_execution.targets_successful = execution.targets_successful
        db_execution.targets_failed = execution.targets_failed
        db_execution.error_message = execution.error_message
        db_execution.error_kind = execution.error_kind.value if execution.error_kind else None
        db_execution.endpoints_executed = [_endpoint_to_dict(e) for e in execution.endpoints_executed]
        db_execution.summary = _summary_to_dict(execution.summary)
        db_execution.warnings = list(execution.warnings)

    def _to_execution(self, db_execution: ExecutionModel) -> WorkflowExecution:
        """Convert database model to WorkflowExecution."""
        summary = db_execution.summary or {}
        return WorkflowExecution(
            id=db_execution.id,
            workflow_id=db_execution.workflow_id,
            workflow_name=db_execution.workflow_name,
            status=ExecutionStatus(db_execution.status),
            started_at=as_utc(db_execution.started_at),
            triggered_by=TriggerSource(db_execution.triggered_by),
            triggered_by_user=db_execution.triggered_by_user,
            completed_at=as_utc(db_execution.completed_at),
            duration_ms=db_execution.duration_ms,
            endpoints_executed=[_endpoint_from_dict(e) for e in db_execution.endpoints_executed or []],
            targets_processed=db_execution.targets_processed,
            targets_successful=db_execution.targets_successful,
            targets_failed=db_execution.targets_failed,
            error_message=db_execution.error_message,
            error_kind=ErrorKind(db_execution.error_kind) if db_execution.error_kind else None,
            warnings=list(db_execution.warnings or []),
            summary=ExecutionSummary(
                total_api_calls=summary.get("total_api_calls", 0),
                successful_api_calls=summary.get("successful_api_calls", 0),
                failed_api_calls=summary.get("failed_api_calls", 0),
                total_records_processed=summary.get("total_records_processed", 0),
                records_updated=summary.get("records_updated", 0),
                records_created=summary.get("records_created", 0),
                records_deleted=summary.get("records_deleted", 0),
                average_response_time_ms=summary.get("average_response_time_ms", 0.0),
                total_data_transferred_mb=summary.get("total_data_transferred_mb", 0.0),
                error_breakdown=dict(summary.get("error_breakdown", {})),
            ),
            idempotency_key=db_execution.idempotency_key,
        )


def _summary_to_dict(summary: ExecutionSummary) -> dict[str, Any]:
    return {
        "total_api_calls": summary.total_api_calls,
        "successful_api_calls": summary.successful_api_calls,
        "failed_api_calls": summary.failed_api_calls,
        "total_records_processed": summary.total_records_processed,
        "records_updated": summary.records_updated,
        "records_created": summary.records_created,
        "records_deleted": summary.records_deleted,
        "average_response_time_ms": summary.average_response_time_ms,
        "total_data_transferred_mb": summary.total_data_transferred_mb,
        "error_breakdown": dict(summary.error_breakdown),
    }


def _endpoint_to_dict(endpoint: EndpointExecution) -> dict[str, Any]:
    return {
        "template_id": endpoint.template_id,
        "template_version": endpoint.template_version,
        "status": endpoint.status.value,
        "started_at": endpoint.started_at.isoformat(),
        "completed_at": endpoint.completed_at.isoformat() if endpoint.completed_at else None,
        "duration_ms": endpoint.duration_ms,
        "retry_attempts": endpoint.retry_attempts,
        "error_message": endpoint.error_message,
        "target_results": [
            {
                "target_id": r.target_id,
                "target_type": r.target_type.value,
                "status": r.status.value,
                "attempts": r.attempts,
                "http_status": r.http_status,
                "response_time_ms": r.response_time_ms,
                "records_created": r.records_created,
                "records_updated": r.records_updated,
                "records_deleted": r.records_deleted,
                "records_processed": r.records_processed,
                "error_kind": r.error_kind.value if r.error_kind else None,
                "error_message": r.error_message,
            }
            for r in endpoint.target_results
        ],
    }


def _endpoint_from_dict(data: dict[str, Any]) -> EndpointExecution:
    return EndpointExecution(
        template_id=data["template_id"],
        template_version=data["template_version"],
        status=ExecutionStatus(data["status"]),
        started_at=as_utc(datetime.fromisoformat(data["started_at"])),
        completed_at=(
            as_utc(datetime.fromisoformat(data["completed_at"])) if data.get("completed_at") else None
        ),
        duration_ms=data.get("duration_ms"),
        retry_attempts=data.get("retry_attempts", 0),
        error_message=data.get("error_message"),
        target_results=[
            TargetResult(
                target_id=r["target_id"],
                target_type=TargetScope(r["target_type"]),
                status=ExecutionStatus(r["status"]),
                attempts=r.get("attempts", 0),
                http_status=r.get("http_status"),
                response_time_ms=r.get("response_time_ms"),
                records_created=r.get("records_created", 0),
                records_updated=r.get("records_updated", 0),
                records_deleted=r.get("records_deleted", 0),
                records_processed=r.get("records_processed", 0),
                error_kind=ErrorKind(r["error_kind"]) if r.get("error_kind") else None,
                error_message=r.get("error_message"),
            )
            for r in data.get("target_results", [])
        ],
    )
