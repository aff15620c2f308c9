"""
Scheduler - triggers due workflows and owns their in-flight runs.

A single tick loop fires every active workflow whose next_execution has
passed. Each run is an independent asyncio task; at most one run per
workflow is in flight at a time.
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from ..core.exceptions import (
    ExecutionInProgressError,
    WorkflowInactiveError,
    WorkflowNotFoundError,
)
from ..repositories import ExecutionRepository, WorkflowRepository
from .endpoint_invoker import CancelToken
from .notifications import NotificationDispatcher
from .orchestrator import ExecutionOrchestrator
from .schedule import advance_past, first_due, utc_now
from .statistics import StatisticsAggregator
from .types import (
    ErrorKind,
    ExecutionStatus,
    TriggerSource,
    Workflow,
    WorkflowExecution,
    WorkflowStatus,
    WorkflowTarget,
)

logger = logging.getLogger(__name__)


@dataclass
class _RunHandle:
    execution_id: str
    cancel: CancelToken
    task: asyncio.Task | None = None


class Scheduler:
    """Time-driven and manual triggering of workflow runs."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        orchestrator: ExecutionOrchestrator,
        dispatcher: NotificationDispatcher,
        aggregator: StatisticsAggregator,
        tick_seconds: float = 1.0,
        error_status_threshold: int = 5,
        max_records_per_workflow: int = 500,
    ) -> None:
        self._session_factory = session_factory
        self._orchestrator = orchestrator
        self._dispatcher = dispatcher
        self._aggregator = aggregator
        self._tick_seconds = tick_seconds
        self._error_status_threshold = error_status_threshold
        self._max_records = max_records_per_workflow

        self._running: dict[str, _RunHandle] = {}
        self._loop_task: asyncio.Task | None = None

    # --- Lifecycle ---

    async def recover(self) -> int:
        """Fail executions left pending/running by a previous process."""
        async with self._session_factory() as session:
            count = await self._executions(session).fail_interrupted(
                "Interrupted by engine restart"
            )
        if count:
            logger.warning("Marked %d interrupted execution(s) as failed", count)
        return count

    def start(self) -> None:
        """Start the tick loop."""
        if self._loop_task and not self._loop_task.done():
            return
        self._loop_task = asyncio.create_task(self._loop(), name="scheduler-loop")
        logger.info("Scheduler started (tick every %.1fs)", self._tick_seconds)

    async def stop(self) -> None:
        """Stop the tick loop, cancel in-flight runs and wait for them to finalize."""
        if self._loop_task:
            self._loop_task.cancel()
            try:
                await self._loop_task
            except asyncio.CancelledError:
                pass
            self._loop_task = None

        for handle in self._running.values():
            handle.cancel.cancel("Engine shutting down")
        await self.drain()
        logger.info("Scheduler stopped")

    async def drain(self) -> None:
        """Wait until no run is in flight."""
        tasks = [h.task for h in self._running.values() if h.task]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    @property
    def is_running(self) -> bool:
        return self._loop_task is not None and not self._loop_task.done()

    @property
    def running(self) -> dict[str, str]:
        """In-flight runs as workflow_id -> execution_id."""
        return {workflow_id: h.execution_id for workflow_id, h in self._running.items()}

    async def _loop(self) -> None:
        while True:
            try:
                await self.tick()
            except Exception:
                logger.exception("Scheduler tick failed")
            await asyncio.sleep(self._tick_seconds)

    # --- Triggering ---

    async def tick(self, now: datetime | None = None) -> list[WorkflowExecution]:
        """
        Trigger every active workflow that is due.

        The following due time is computed from the original due time, so
        missed slots collapse into this one run.

        Returns:
            Executions created by this tick (started or skipped)
        """
        now = now or utc_now()
        async with self._session_factory() as session:
            workflows = await self._workflows(session).list_active()

        created: list[WorkflowExecution] = []
        for workflow in workflows:
            due = workflow.next_execution
            if due is None:
                await self._set_next_execution(workflow.id, first_due(workflow.schedule, now))
                continue
            if due > now:
                continue

            following = advance_past(workflow.schedule, due, now)
            await self._set_next_execution(workflow.id, following)

            handle = self._running.get(workflow.id)
            if handle:
                logger.info(
                    "Workflow %s is still running (%s); skipping scheduled trigger",
                    workflow.id,
                    handle.execution_id,
                )
                skipped = ExecutionOrchestrator.skipped_execution(
                    workflow, f"Previous execution {handle.execution_id} still running"
                )
                async with self._session_factory() as session:
                    created.append(await self._executions(session).add(skipped))
                continue

            created.append(await self._launch(workflow, TriggerSource.SCHEDULE))
        return created

    async def trigger(
        self,
        workflow_id: str,
        triggered_by: TriggerSource = TriggerSource.MANUAL,
        user: str | None = None,
        override_schedule: bool = False,
        custom_parameters: dict[str, Any] | None = None,
        target_override: WorkflowTarget | None = None,
        idempotency_key: str | None = None,
    ) -> WorkflowExecution:
        """
        Start a run outside the schedule.

        Does not touch next_execution.

        Raises:
            WorkflowNotFoundError: if the workflow does not exist
            WorkflowInactiveError: if the workflow is not active and
                override_schedule is false
            ExecutionInProgressError: if a run is already in flight
        """
        async with self._session_factory() as session:
            if idempotency_key:
                existing = await self._executions(session).get_by_idempotency_key(idempotency_key)
                if existing:
                    return existing
            workflow = await self._workflows(session).get(workflow_id)

        if not workflow:
            raise WorkflowNotFoundError(workflow_id)
        if workflow.status != WorkflowStatus.ACTIVE and not override_schedule:
            raise WorkflowInactiveError(workflow_id)
        if target_override:
            workflow = replace(workflow, targets=target_override)

        return await self._launch(
            workflow, triggered_by, user, custom_parameters, idempotency_key
        )

    def cancel(self, workflow_id: str, reason: str = "Cancelled by user") -> str | None:
        """Cancel the in-flight run of a workflow; return its execution id."""
        handle = self._running.get(workflow_id)
        if not handle:
            return None
        handle.cancel.cancel(reason)
        logger.info("Cancelling execution %s of workflow %s", handle.execution_id, workflow_id)
        return handle.execution_id

    def cancel_execution(self, execution_id: str, reason: str = "Cancelled by user") -> bool:
        for workflow_id, handle in self._running.items():
            if handle.execution_id == execution_id:
                return self.cancel(workflow_id, reason) is not None
        return False

    async def _launch(
        self,
        workflow: Workflow,
        triggered_by: TriggerSource,
        user: str | None = None,
        custom_parameters: dict[str, Any] | None = None,
        idempotency_key: str | None = None,
    ) -> WorkflowExecution:
        if workflow.id in self._running:
            raise ExecutionInProgressError(workflow.id, self._running[workflow.id].execution_id)

        execution = ExecutionOrchestrator.new_execution(
            workflow, triggered_by, user, idempotency_key
        )
        # Claim the slot before the first await
        handle = _RunHandle(execution_id=execution.id, cancel=CancelToken())
        self._running[workflow.id] = handle
        try:
            async with self._session_factory() as session:
                execution = await self._executions(session).add(execution)
        except Exception:
            self._running.pop(workflow.id, None)
            raise

        logger.info(
            "Starting execution %s of workflow %s (%s)",
            execution.id,
            workflow.id,
            triggered_by.value,
        )
        handle.task = asyncio.create_task(
            self._execute(workflow, execution, handle, custom_parameters),
            name=f"execution-{execution.id}",
        )
        return execution

    # --- Run lifecycle ---

    async def _execute(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        handle: _RunHandle,
        custom_parameters: dict[str, Any] | None,
    ) -> None:
        # The record returned to the caller must not be mutated by the run
        execution = copy.deepcopy(execution)
        try:
            try:
                await self._orchestrator.run(
                    workflow, execution, handle.cancel, custom_parameters, persist=self._save
                )
            except Exception as e:
                logger.exception("Execution %s crashed", execution.id)
                execution.status = ExecutionStatus.FAILED
                execution.error_kind = ErrorKind.UNKNOWN
                execution.error_message = f"Internal error: {e}"
                execution.completed_at = utc_now()
                execution.duration_ms = int(
                    (execution.completed_at - execution.started_at).total_seconds() * 1000
                )
            await self._finalize(workflow, execution)
        except Exception:
            logger.exception("Failed to finalize execution %s", execution.id)
        finally:
            if self._running.get(workflow.id) is handle:
                del self._running[workflow.id]

    async def _save(self, execution: WorkflowExecution) -> None:
        async with self._session_factory() as session:
            await self._executions(session).save(execution)

    async def _finalize(self, workflow: Workflow, execution: WorkflowExecution) -> None:
        """Persist the finished run, refresh derived fields and notify."""
        async with self._session_factory() as session:
            workflows = self._workflows(session)
            executions = self._executions(session)

            current = await workflows.get(workflow.id)
            if not current:
                logger.info("Workflow %s was deleted during execution %s", workflow.id, execution.id)
                return

            await executions.save(execution)
            history = await executions.for_workflow(workflow.id)
            stats = self._aggregator.compute(workflow.id, history, utc_now())

            # Counted on the stored field so reactivation starts a fresh streak
            streak = (
                current.consecutive_failures + 1
                if execution.status == ExecutionStatus.FAILED
                else 0
            )
            moved_to_error = (
                current.status == WorkflowStatus.ACTIVE and streak >= self._error_status_threshold
            )
            derived: dict[str, Any] = {
                "last_execution_id": execution.id,
                "success_rate": stats.success_rate,
                "average_duration_ms": stats.average_duration_ms,
                "consecutive_failures": streak,
            }
            if moved_to_error:
                derived["status"] = WorkflowStatus.ERROR
                derived["next_execution"] = None
            current = await workflows.update_derived(workflow.id, **derived) or current

        notices = self._dispatcher.decide(current, execution, streak)
        if moved_to_error:
            logger.warning(
                "Workflow %s moved to error after %d consecutive failures", workflow.id, streak
            )
            notices.extend(self._dispatcher.decide_error_status(current, streak))
        await self._dispatcher.dispatch(notices)

    async def _set_next_execution(self, workflow_id: str, next_execution: datetime) -> None:
        async with self._session_factory() as session:
            await self._workflows(session).update_derived(
                workflow_id, next_execution=next_execution
            )

    def _workflows(self, session: AsyncSession) -> WorkflowRepository:
        return WorkflowRepository(session)

    def _executions(self, session: AsyncSession) -> ExecutionRepository:
        return ExecutionRepository(session, self._max_records)
