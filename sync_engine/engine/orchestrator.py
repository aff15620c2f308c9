"""
Execution orchestrator - runs one workflow execution end to end.

State machine per run: pending -> running -> completed | failed.
Targets fan out concurrently, bounded by the workflow's
max_concurrent_executions; within a target, enabled endpoints run in
ascending priority order.
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from collections import Counter
from datetime import datetime
from typing import Any, Awaitable, Callable

from ..core.exceptions import TargetResolutionError
from .endpoint_invoker import CancelToken, EndpointInvoker
from .schedule import utc_now
from .target_resolver import TargetResolver
from .types import (
    EndpointExecution,
    ErrorKind,
    ExecutionStatus,
    ExecutionSummary,
    InvocationResult,
    ResolvedTarget,
    TargetResult,
    TriggerSource,
    Workflow,
    WorkflowEndpoint,
    WorkflowExecution,
)

logger = logging.getLogger(__name__)

PersistCallback = Callable[[WorkflowExecution], Awaitable[None]]


class ExecutionOrchestrator:
    """Resolves targets, fans out invocations and aggregates the execution record."""

    def __init__(self, resolver: TargetResolver, invoker: EndpointInvoker) -> None:
        self._resolver = resolver
        self._invoker = invoker

    @staticmethod
    def new_execution(
        workflow: Workflow,
        triggered_by: TriggerSource,
        triggered_by_user: str | None = None,
        idempotency_key: str | None = None,
    ) -> WorkflowExecution:
        """Create a pending execution record."""
        return WorkflowExecution(
            id=_generate_id(),
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            status=ExecutionStatus.PENDING,
            started_at=utc_now(),
            triggered_by=triggered_by,
            triggered_by_user=triggered_by_user,
            idempotency_key=idempotency_key,
        )

    @staticmethod
    def skipped_execution(workflow: Workflow, reason: str) -> WorkflowExecution:
        """Record for a scheduled trigger coalesced into an in-flight run."""
        now = utc_now()
        return WorkflowExecution(
            id=_generate_id(),
            workflow_id=workflow.id,
            workflow_name=workflow.name,
            status=ExecutionStatus.SKIPPED,
            started_at=now,
            completed_at=now,
            duration_ms=0,
            triggered_by=TriggerSource.SCHEDULE,
            error_message=reason,
        )

    async def run(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        cancel: CancelToken | None = None,
        custom_parameters: dict[str, Any] | None = None,
        persist: PersistCallback | None = None,
    ) -> WorkflowExecution:
        """
        Run a pending execution to completion.

        Args:
            workflow: Workflow definition to run
            execution: Pending execution record, updated in place
            cancel: Cooperative cancellation token for this run
            custom_parameters: Extra call parameters applied to every endpoint
            persist: Called after the transition to running, unless the run
                was cancelled while targets were being resolved

        Returns:
            The finalized execution
        """
        cancel = cancel or CancelToken()

        try:
            resolution = await self._resolver.resolve(workflow.targets)
        except TargetResolutionError as e:
            logger.warning("Target resolution failed for workflow %s: %s", workflow.id, e.message)
            execution.error_message = f"Target resolution failed: {e.message}"
            execution.error_kind = ErrorKind.CONNECTION_ERROR
            execution.summary.error_breakdown[ErrorKind.CONNECTION_ERROR.value] = 1
            return self._finalize(execution, ExecutionStatus.FAILED)

        execution.warnings.extend(resolution.warnings)
        execution.status = ExecutionStatus.RUNNING
        # A run cancelled during resolution may belong to a deleted workflow
        if persist and not cancel.cancelled:
            await persist(execution)

        targets = resolution.targets
        endpoints = workflow.enabled_endpoints()
        logger.info(
            "Execution %s of workflow %s: %d target(s) x %d endpoint(s)",
            execution.id,
            workflow.id,
            len(targets),
            len(endpoints),
        )
        if not targets:
            return self._finalize(execution, ExecutionStatus.COMPLETED)

        semaphore = asyncio.Semaphore(max(workflow.max_concurrent_executions, 1))
        gathered = await asyncio.gather(
            *(
                self._run_target(workflow, endpoints, target, semaphore, cancel, custom_parameters)
                for target in targets
            ),
            return_exceptions=True,
        )

        per_target: list[list[InvocationResult]] = []
        for target, outcome in zip(targets, gathered):
            if isinstance(outcome, BaseException):
                logger.error(
                    "Internal error running target %s of workflow %s",
                    target.id,
                    workflow.id,
                    exc_info=outcome,
                )
                execution.error_message = f"Internal error: {outcome}"
                outcome = [
                    self._internal_failure(target, str(outcome)) for _ in endpoints
                ]
            per_target.append(outcome)

        self._aggregate(execution, endpoints, targets, per_target)

        if cancel.cancelled:
            execution.error_kind = ErrorKind.CANCELLED
            execution.error_message = cancel.reason or "Execution cancelled"
            return self._finalize(execution, ExecutionStatus.FAILED)

        if execution.targets_failed:
            execution.error_message = execution.error_message or (
                f"{execution.targets_failed} of {execution.targets_processed} targets failed"
            )
            return self._finalize(execution, ExecutionStatus.FAILED)
        return self._finalize(execution, ExecutionStatus.COMPLETED)

    async def _run_target(
        self,
        workflow: Workflow,
        endpoints: list[WorkflowEndpoint],
        target: ResolvedTarget,
        semaphore: asyncio.Semaphore,
        cancel: CancelToken,
        custom_parameters: dict[str, Any] | None,
    ) -> list[InvocationResult]:
        """Invoke every endpoint for one target in priority order."""
        results: list[InvocationResult] = []
        for endpoint in endpoints:
            async with semaphore:
                results.append(
                    await self._invoker.invoke(
                        workflow, endpoint, target, cancel, custom_parameters
                    )
                )
        return results

    def _aggregate(
        self,
        execution: WorkflowExecution,
        endpoints: list[WorkflowEndpoint],
        targets: list[ResolvedTarget],
        per_target: list[list[InvocationResult]],
    ) -> None:
        """Fill endpoint details, target counts and the summary."""
        for index, endpoint in enumerate(endpoints):
            results = [target_results[index] for target_results in per_target]
            failures = [r for r in results if not r.succeeded]
            started_at = min(r.started_at for r in results)
            completed_at = max(r.completed_at for r in results)
            execution.endpoints_executed.append(
                EndpointExecution(
                    template_id=endpoint.template_id,
                    template_version=endpoint.template_version,
                    status=ExecutionStatus.FAILED if failures else ExecutionStatus.COMPLETED,
                    started_at=started_at,
                    completed_at=completed_at,
                    duration_ms=_millis(started_at, completed_at),
                    retry_attempts=sum(r.retry_attempts for r in results),
                    error_message=(
                        f"{len(failures)} of {len(results)} targets failed: "
                        f"{failures[0].error_message}"
                        if failures
                        else None
                    ),
                    target_results=[_target_result(r) for r in results],
                )
            )

        execution.targets_processed = len(targets)
        execution.targets_successful = sum(
            1 for results in per_target if all(r.succeeded for r in results)
        )
        execution.targets_failed = execution.targets_processed - execution.targets_successful

        all_results = [r for results in per_target for r in results]
        response_times = [t for r in all_results for t in r.response_times_ms]
        breakdown = Counter(
            r.error_kind.value for r in all_results if not r.succeeded and r.error_kind
        )

        summary = ExecutionSummary(
            successful_api_calls=sum(r.successful_calls for r in all_results),
            failed_api_calls=sum(r.failed_calls for r in all_results),
            records_created=sum(r.records_created for r in all_results),
            records_updated=sum(r.records_updated for r in all_results),
            records_deleted=sum(r.records_deleted for r in all_results),
            total_records_processed=sum(r.records_processed for r in all_results),
            average_response_time_ms=(
                round(sum(response_times) / len(response_times), 2) if response_times else 0.0
            ),
            total_data_transferred_mb=round(
                sum(r.bytes_transferred for r in all_results) / (1024 * 1024), 4
            ),
            error_breakdown=dict(breakdown),
        )
        summary.total_api_calls = summary.successful_api_calls + summary.failed_api_calls
        execution.summary = summary

    @staticmethod
    def _internal_failure(target: ResolvedTarget, message: str) -> InvocationResult:
        now = utc_now()
        return InvocationResult(
            target=target,
            status=ExecutionStatus.FAILED,
            started_at=now,
            completed_at=now,
            attempts=0,
            error_kind=ErrorKind.UNKNOWN,
            error_message=message,
        )

    @staticmethod
    def _finalize(execution: WorkflowExecution, status: ExecutionStatus) -> WorkflowExecution:
        execution.status = status
        execution.completed_at = utc_now()
        execution.duration_ms = _millis(execution.started_at, execution.completed_at)
        logger.info(
            "Execution %s finished: %s (%d/%d targets ok, %d ms)",
            execution.id,
            status.value,
            execution.targets_successful,
            execution.targets_processed,
            execution.duration_ms,
        )
        return execution


def _target_result(result: InvocationResult) -> TargetResult:
    return TargetResult(
        target_id=result.target.id,
        target_type=result.target.scope,
        status=result.status,
        attempts=result.attempts,
        http_status=result.http_status,
        response_time_ms=result.response_time_ms,
        records_created=result.records_created,
        records_updated=result.records_updated,
        records_deleted=result.records_deleted,
        records_processed=result.records_processed,
        error_kind=result.error_kind,
        error_message=result.error_message,
    )


def _millis(start: datetime, end: datetime) -> int:
    return int((end - start).total_seconds() * 1000)


def _generate_id() -> str:
    """Generate unique execution ID."""
    return f"exec_{int(utc_now().timestamp() * 1000)}_{uuid.uuid4().hex[:7]}"
