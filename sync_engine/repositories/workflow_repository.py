"""Workflow repository for database persistence."""

from __future__ import annotations

import time
import uuid
from datetime import datetime
from typing import Any

from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from ..core.exceptions import VersionConflictError
from ..db.models import WorkflowModel
from ..engine.schedule import as_utc, utc_now
from ..engine.types import (
    BackoffKind,
    NotificationConfig,
    RetryPolicy,
    ScheduleConfig,
    ScheduleFrequency,
    TargetScope,
    Workflow,
    WorkflowEndpoint,
    WorkflowStatus,
    WorkflowTarget,
    WorkflowType,
)

# Sentinel for "leave this column unchanged"
UNSET: Any = object()

_SORTABLE = {"name", "type", "status", "created_at", "updated_at", "next_execution", "success_rate"}

_DERIVED_UPDATE_ATTEMPTS = 3


class WorkflowRepository:
    """Repository for workflow persistence."""

    def __init__(self, session: AsyncSession) -> None:
        self._session = session

    async def create(self, workflow: Workflow, idempotency_key: str | None = None) -> Workflow:
        """Create a new workflow; the id is generated when empty."""
        now = utc_now()
        db_workflow = WorkflowModel(
            id=workflow.id or self._generate_id(),
            name=workflow.name,
            description=workflow.description,
            type=workflow.type.value,
            status=workflow.status.value,
            definition=definition_to_dict(workflow),
            tags=list(workflow.tags),
            next_execution=as_utc(workflow.next_execution),
            version=1,
            idempotency_key=idempotency_key,
            created_at=as_utc(now),
            updated_at=as_utc(now),
            created_by=workflow.created_by,
            updated_by=workflow.created_by,
        )

        self._session.add(db_workflow)
        await self._session.commit()
        await self._session.refresh(db_workflow)

        return self._to_workflow(db_workflow)

    async def get(self, workflow_id: str) -> Workflow | None:
        """Get a workflow by ID."""
        result = await self._session.get(WorkflowModel, workflow_id, populate_existing=True)
        if not result:
            return None
        return self._to_workflow(result)

    async def get_by_idempotency_key(self, key: str) -> Workflow | None:
        statement = select(WorkflowModel).where(WorkflowModel.idempotency_key == key)
        result = await self._session.execute(statement)
        db_workflow = result.scalars().first()
        return self._to_workflow(db_workflow) if db_workflow else None

    async def list(
        self,
        workflow_type: WorkflowType | None = None,
        status: WorkflowStatus | None = None,
        scope: TargetScope | None = None,
        search: str | None = None,
        tags: list[str] | None = None,
        page: int = 1,
        page_size: int = 50,
        sort_by: str = "updated_at",
        sort_order: str = "desc",
    ) -> tuple[list[Workflow], int]:
        """List workflows matching the filters; returns (page items, total)."""
        column = getattr(WorkflowModel, sort_by if sort_by in _SORTABLE else "updated_at")
        statement = select(WorkflowModel).order_by(
            column.asc() if sort_order == "asc" else column.desc()
        )
        if workflow_type:
            statement = statement.where(WorkflowModel.type == workflow_type.value)
        if status:
            statement = statement.where(WorkflowModel.status == status.value)
        if search:
            pattern = f"%{search.lower()}%"
            statement = statement.where(
                or_(
                    func.lower(WorkflowModel.name).like(pattern),
                    func.lower(WorkflowModel.description).like(pattern),
                )
            )

        result = await self._session.execute(statement)
        workflows = [self._to_workflow(w) for w in result.scalars().all()]

        # Scope and tags live in JSON columns
        if scope:
            workflows = [w for w in workflows if w.targets.scope == scope]
        if tags:
            workflows = [w for w in workflows if any(tag in w.tags for tag in tags)]

        start = (page - 1) * page_size
        return workflows[start : start + page_size], len(workflows)

    async def list_active(self) -> list[Workflow]:
        statement = select(WorkflowModel).where(WorkflowModel.status == WorkflowStatus.ACTIVE.value)
        result = await self._session.execute(statement)
        return [self._to_workflow(w) for w in result.scalars().all()]

    async def count_by_status(self) -> dict[str, int]:
        statement = select(WorkflowModel.status, func.count()).group_by(WorkflowModel.status)
        result = await self._session.execute(statement)
        return {status: count for status, count in result.all()}

    async def update_definition(
        self,
        workflow: Workflow,
        expected_version: int,
        updated_by: str | None = None,
        reschedule: bool = False,
    ) -> Workflow | None:
        """
        Replace the definition if the stored version still equals `expected_version`.

        next_execution is engine-owned and is written only when `reschedule`
        is set, i.e. the schedule itself changed.

        Raises:
            VersionConflictError: if the workflow was modified meanwhile.
        """
        values = {
            "name": workflow.name,
            "description": workflow.description,
            "type": workflow.type.value,
            "status": workflow.status.value,
            "definition": definition_to_dict(workflow),
            "tags": list(workflow.tags),
            "version": expected_version + 1,
            "updated_at": as_utc(utc_now()),
            "updated_by": updated_by,
        }
        if reschedule:
            values["next_execution"] = as_utc(workflow.next_execution)
        return await self._compare_and_set(workflow.id, expected_version, values)

    async def set_status(
        self,
        workflow_id: str,
        status: WorkflowStatus,
        next_execution: datetime | None,
        updated_by: str | None = None,
    ) -> Workflow | None:
        """Change status (an edit: bumps the version)."""
        for _ in range(_DERIVED_UPDATE_ATTEMPTS):
            current = await self._session.get(WorkflowModel, workflow_id, populate_existing=True)
            if not current:
                return None
            values = {
                "status": status.value,
                "next_execution": as_utc(next_execution),
                "version": current.version + 1,
                "updated_at": as_utc(utc_now()),
                "updated_by": updated_by,
            }
            updated = await self._try_update(workflow_id, current.version, values)
            if updated:
                return updated
        raise VersionConflictError(workflow_id, current.version, None)

    async def update_derived(
        self,
        workflow_id: str,
        next_execution: datetime | None = UNSET,
        last_execution_id: str = UNSET,
        success_rate: float | None = UNSET,
        average_duration_ms: int | None = UNSET,
        consecutive_failures: int = UNSET,
        status: WorkflowStatus = UNSET,
    ) -> Workflow | None:
        """
        Write engine-owned fields without bumping the version.

        Guarded by a compare-and-set on the version read just before the
        write, retried when an administrative edit lands in between. A
        status change is an edit and does bump the version.
        """
        for _ in range(_DERIVED_UPDATE_ATTEMPTS):
            current = await self._session.get(WorkflowModel, workflow_id, populate_existing=True)
            if not current:
                return None

            values: dict[str, Any] = {}
            if next_execution is not UNSET:
                values["next_execution"] = as_utc(next_execution)
            if last_execution_id is not UNSET:
                values["last_execution_id"] = last_execution_id
            if success_rate is not UNSET:
                values["success_rate"] = success_rate
            if average_duration_ms is not UNSET:
                values["average_duration_ms"] = average_duration_ms
            if consecutive_failures is not UNSET:
                values["consecutive_failures"] = consecutive_failures
            if status is not UNSET and status.value != current.status:
                values["status"] = status.value
                values["version"] = current.version + 1
                values["updated_at"] = as_utc(utc_now())
            if not values:
                return self._to_workflow(current)

            updated = await self._try_update(workflow_id, current.version, values)
            if updated:
                return updated
        raise VersionConflictError(workflow_id, current.version, None)

    async def delete(self, workflow_id: str) -> bool:
        """Delete a workflow."""
        db_workflow = await self._session.get(WorkflowModel, workflow_id)
        if not db_workflow:
            return False

        await self._session.delete(db_workflow)
        await self._session.commit()
        return True

    async def _compare_and_set(
        self, workflow_id: str, expected_version: int, values: dict[str, Any]
    ) -> Workflow | None:
        updated = await self._try_update(workflow_id, expected_version, values)
        if updated:
            return updated
        current = await self._session.get(WorkflowModel, workflow_id, populate_existing=True)
        if not current:
            return None
        raise VersionConflictError(workflow_id, expected_version, current.version)

    async def _try_update(
        self, workflow_id: str, expected_version: int, values: dict[str, Any]
    ) -> Workflow | None:
        statement = (
            update(WorkflowModel)
            .where(WorkflowModel.id == workflow_id, WorkflowModel.version == expected_version)
            .values(**values)
        )
        result = await self._session.execute(statement)
        await self._session.commit()
        if result.rowcount == 0:
            return None
        db_workflow = await self._session.get(WorkflowModel, workflow_id, populate_existing=True)
        return self._to_workflow(db_workflow)

    def _generate_id(self) -> str:
        """Generate a unique workflow ID."""
        return f"wf_{int(time.time() * 1000)}_{uuid.uuid4().hex[:7]}"

    def _to_workflow(self, db_workflow: WorkflowModel) -> Workflow:
        """Convert database model to Workflow."""
        definition = db_workflow.definition or {}
        workflow = definition_from_dict(definition)
        workflow.id = db_workflow.id
        workflow.name = db_workflow.name
        workflow.description = db_workflow.description
        workflow.type = WorkflowType(db_workflow.type)
        workflow.status = WorkflowStatus(db_workflow.status)
        workflow.tags = list(db_workflow.tags or [])
        workflow.next_execution = as_utc(db_workflow.next_execution)
        workflow.last_execution_id = db_workflow.last_execution_id
        workflow.success_rate = db_workflow.success_rate
        workflow.average_duration_ms = db_workflow.average_duration_ms
        workflow.consecutive_failures = db_workflow.consecutive_failures
        workflow.version = db_workflow.version
        workflow.created_at = as_utc(db_workflow.created_at)
        workflow.updated_at = as_utc(db_workflow.updated_at)
        workflow.created_by = db_workflow.created_by
        workflow.updated_by = db_workflow.updated_by
        return workflow


def definition_to_dict(workflow: Workflow) -> dict[str, Any]:
    """Serialize the definition part of a workflow for the JSON column."""
    schedule = workflow.schedule
    policy = workflow.retry_policy
    targets = workflow.targets
    notifications = workflow.notifications
    return {
        "schedule": {
            "frequency": schedule.frequency.value,
            "interval": schedule.interval,
            "start_time": schedule.start_time,
            "timezone": schedule.timezone,
            "days_of_week": list(schedule.days_of_week),
            "day_of_month": schedule.day_of_month,
        },
        "endpoints": [
            {
                "template_id": e.template_id,
                "template_version": e.template_version,
                "enabled": e.enabled,
                "priority": e.priority,
                "parameters": dict(e.parameters),
            }
            for e in workflow.endpoints
        ],
        "targets": {
            "scope": targets.scope.value,
            "include_all": targets.include_all,
            "network_ids": list(targets.network_ids),
            "trading_point_ids": list(targets.trading_point_ids),
            "equipment_ids": list(targets.equipment_ids),
            "component_ids": list(targets.component_ids),
        },
        "retry_policy": {
            "max_attempts": policy.max_attempts,
            "backoff": policy.backoff.value,
            "initial_delay_ms": policy.initial_delay_ms,
            "max_delay_ms": policy.max_delay_ms,
            "retry_on_status_codes": sorted(policy.retry_on_status_codes),
            "jitter": policy.jitter,
        },
        "notifications": {
            "enabled": notifications.enabled,
            "on_success": notifications.on_success,
            "on_failure": notifications.on_failure,
            "on_critical_failure": notifications.on_critical_failure,
            "email_recipients": list(notifications.email_recipients),
            "critical_recipients": list(notifications.critical_recipients),
        },
        "timeout_ms": workflow.timeout_ms,
        "max_concurrent_executions": workflow.max_concurrent_executions,
    }


def definition_from_dict(definition: dict[str, Any]) -> Workflow:
    """Rebuild a Workflow (identity and derived fields left empty) from its JSON definition."""
    schedule = definition.get("schedule", {})
    targets = definition.get("targets", {})
    policy = definition.get("retry_policy", {})
    notifications = definition.get("notifications", {})
    defaults = RetryPolicy()

    return Workflow(
        id="",
        name="",
        type=WorkflowType.CUSTOM,
        schedule=ScheduleConfig(
            frequency=ScheduleFrequency(schedule.get("frequency", "hours")),
            interval=schedule.get("interval", 1),
            start_time=schedule.get("start_time"),
            timezone=schedule.get("timezone", "UTC"),
            days_of_week=list(schedule.get("days_of_week", [])),
            day_of_month=schedule.get("day_of_month"),
        ),
        endpoints=[
            WorkflowEndpoint(
                template_id=e["template_id"],
                template_version=e["template_version"],
                enabled=e.get("enabled", True),
                priority=e.get("priority", 5),
                parameters=dict(e.get("parameters", {})),
            )
            for e in definition.get("endpoints", [])
        ],
        targets=WorkflowTarget(
            scope=TargetScope(targets.get("scope", "trading_point")),
            include_all=targets.get("include_all", False),
            network_ids=list(targets.get("network_ids", [])),
            trading_point_ids=list(targets.get("trading_point_ids", [])),
            equipment_ids=list(targets.get("equipment_ids", [])),
            component_ids=list(targets.get("component_ids", [])),
        ),
        retry_policy=RetryPolicy(
            max_attempts=policy.get("max_attempts", defaults.max_attempts),
            backoff=BackoffKind(policy.get("backoff", defaults.backoff.value)),
            initial_delay_ms=policy.get("initial_delay_ms", defaults.initial_delay_ms),
            max_delay_ms=policy.get("max_delay_ms", defaults.max_delay_ms),
            retry_on_status_codes=set(
                policy.get("retry_on_status_codes", defaults.retry_on_status_codes)
            ),
            jitter=policy.get("jitter", False),
        ),
        notifications=NotificationConfig(
            enabled=notifications.get("enabled", True),
            on_success=notifications.get("on_success", False),
            on_failure=notifications.get("on_failure", True),
            on_critical_failure=notifications.get("on_critical_failure", True),
            email_recipients=list(notifications.get("email_recipients", [])),
            critical_recipients=list(notifications.get("critical_recipients", [])),
        ),
        timeout_ms=definition.get("timeout_ms", 30000),
        max_concurrent_executions=definition.get("max_concurrent_executions", 5),
    )
