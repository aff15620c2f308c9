"""Tests for the execution orchestrator."""

import asyncio

import httpx
import pytest

from sync_engine.engine.endpoint_invoker import CancelToken
from sync_engine.engine.orchestrator import ExecutionOrchestrator
from sync_engine.engine.types import (
    ApiTemplate,
    ErrorKind,
    ExecutionStatus,
    RetryPolicy,
    TargetScope,
    TemplateStatus,
    TriggerSource,
    WorkflowEndpoint,
    WorkflowTarget,
)

from conftest import make_workflow, price_template


def pending(workflow):
    return ExecutionOrchestrator.new_execution(workflow, TriggerSource.MANUAL, "alice")


class TestExecutionOrchestrator:
    """Tests for ExecutionOrchestrator."""

    @pytest.mark.asyncio
    async def test_one_failing_target_fails_the_run(self, orchestrator, provider_handler):
        """Four targets, one answers HTTP 500: failed with 3/1 and {unknown: 1}."""

        def handler(request):
            if "/tp3/" in request.url.path:
                return httpx.Response(500, text="provider error")
            return httpx.Response(200, json={"updated": 5})

        provider_handler.handler = handler
        workflow = make_workflow()

        execution = await orchestrator.run(workflow, pending(workflow))

        assert execution.status == ExecutionStatus.FAILED
        assert execution.targets_processed == 4
        assert execution.targets_successful == 3
        assert execution.targets_failed == 1
        assert execution.summary.error_breakdown == {"unknown": 1}
        assert execution.summary.records_updated == 15
        assert execution.summary.successful_api_calls == 3
        assert execution.summary.failed_api_calls == 3
        assert execution.summary.total_api_calls == 6
        assert execution.error_message == "1 of 4 targets failed"
        endpoint = execution.endpoints_executed[0]
        assert endpoint.status == ExecutionStatus.FAILED
        assert endpoint.retry_attempts == 2
        failed = [r for r in endpoint.target_results if r.status == ExecutionStatus.FAILED]
        assert [r.target_id for r in failed] == ["tp3"]

    @pytest.mark.asyncio
    async def test_single_attempt_without_retryable_500(self, orchestrator, provider_handler):
        """One attempt, 500 not retryable: tp3 fails once and the others succeed."""

        def handler(request):
            if "/tp3/" in request.url.path:
                return httpx.Response(500, text="provider error")
            return httpx.Response(200, json={"updated": 1})

        provider_handler.handler = handler
        workflow = make_workflow(
            retry_policy=RetryPolicy(
                max_attempts=1,
                initial_delay_ms=1,
                max_delay_ms=4,
                retry_on_status_codes={408, 429, 502, 503, 504},
            )
        )

        execution = await orchestrator.run(workflow, pending(workflow))

        assert execution.status == ExecutionStatus.FAILED
        assert execution.targets_processed == 4
        assert execution.targets_successful == 3
        assert execution.targets_failed == 1
        assert execution.summary.error_breakdown == {"unknown": 1}
        assert execution.summary.total_api_calls == 4
        assert execution.summary.failed_api_calls == 1
        assert len(provider_handler.requests) == 4
        assert execution.endpoints_executed[0].retry_attempts == 0

    @pytest.mark.asyncio
    async def test_all_targets_succeed(self, orchestrator):
        workflow = make_workflow()

        execution = await orchestrator.run(workflow, pending(workflow))

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.targets_processed == execution.targets_successful == 4
        assert execution.targets_failed == 0
        assert execution.summary.error_breakdown == {}
        assert execution.completed_at >= execution.started_at
        assert execution.duration_ms >= 0
        assert execution.error_message is None

    @pytest.mark.asyncio
    async def test_empty_explicit_targets_complete_with_zero(self, orchestrator, inventory, provider_handler):
        workflow = make_workflow(targets=WorkflowTarget(scope=TargetScope.TRADING_POINT))

        execution = await orchestrator.run(workflow, pending(workflow))

        assert execution.status == ExecutionStatus.COMPLETED
        assert execution.targets_processed == 0
        assert execution.summary.total_api_calls == 0
        assert inventory.calls == []
        assert provider_handler.requests == []

    @pytest.mark.asyncio
    async def test_deprecated_template_fails_immediately(self, orchestrator, catalog, provider_handler):
        catalog.add(price_template(status=TemplateStatus.DEPRECATED))
        workflow = make_workflow()

        execution = await orchestrator.run(workflow, pending(workflow))

        assert execution.status == ExecutionStatus.FAILED
        assert execution.targets_failed == 4
        assert execution.summary.error_breakdown == {"template_unavailable": 4}
        assert execution.summary.total_api_calls == 0
        assert provider_handler.requests == []
        assert all(r.attempts == 0 for r in execution.endpoints_executed[0].target_results)

    @pytest.mark.asyncio
    async def test_resolution_failure_aborts_run(self, orchestrator, inventory, provider_handler):
        inventory.fail = True
        workflow = make_workflow(
            targets=WorkflowTarget(scope=TargetScope.TRADING_POINT, include_all=True)
        )
        persisted = []

        async def persist(execution):
            persisted.append(execution.status)

        execution = await orchestrator.run(workflow, pending(workflow), persist=persist)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error_kind == ErrorKind.CONNECTION_ERROR
        assert execution.summary.error_breakdown == {"connection_error": 1}
        assert persisted == []
        assert provider_handler.requests == []

    @pytest.mark.asyncio
    async def test_running_state_persisted_before_invocations(self, orchestrator):
        workflow = make_workflow()
        persisted = []

        async def persist(execution):
            persisted.append(execution.status)

        await orchestrator.run(workflow, pending(workflow), persist=persist)

        assert persisted == [ExecutionStatus.RUNNING]

    @pytest.mark.asyncio
    async def test_endpoints_run_in_priority_order(self, orchestrator, catalog, provider_handler):
        catalog.add(
            ApiTemplate(
                id="read-prices",
                version="1.0",
                method="GET",
                endpoint="/trading-points/{trading_point_id}/prices",
                provider_ref="fuel-provider",
            )
        )
        workflow = make_workflow(
            endpoints=[
                WorkflowEndpoint(template_id="set-prices", template_version="1.0", priority=7),
                WorkflowEndpoint(template_id="read-prices", template_version="1.0", priority=2),
                WorkflowEndpoint(
                    template_id="set-prices", template_version="1.0", priority=1, enabled=False
                ),
            ],
            targets=WorkflowTarget(scope=TargetScope.TRADING_POINT, trading_point_ids=["tp1"]),
        )

        execution = await orchestrator.run(workflow, pending(workflow))

        assert [r.method for r in provider_handler.requests] == ["GET", "POST"]
        assert [e.template_id for e in execution.endpoints_executed] == ["read-prices", "set-prices"]

    @pytest.mark.asyncio
    async def test_fan_out_bounded_by_max_concurrency(self, orchestrator, provider_handler):
        in_flight = 0
        peak = 0

        async def handler(request):
            nonlocal in_flight, peak
            in_flight += 1
            peak = max(peak, in_flight)
            await asyncio.sleep(0.01)
            in_flight -= 1
            return httpx.Response(200, json={})

        provider_handler.handler = handler
        workflow = make_workflow(max_concurrent_executions=2)

        execution = await orchestrator.run(workflow, pending(workflow))

        assert execution.status == ExecutionStatus.COMPLETED
        assert peak == 2

    @pytest.mark.asyncio
    async def test_cancelled_run_is_failed(self, orchestrator, provider_handler):
        cancel = CancelToken()
        cancel.cancel("Cancelled by user")
        workflow = make_workflow()

        execution = await orchestrator.run(workflow, pending(workflow), cancel)

        assert execution.status == ExecutionStatus.FAILED
        assert execution.error_kind == ErrorKind.CANCELLED
        assert execution.error_message == "Cancelled by user"
        assert execution.summary.error_breakdown == {"cancelled": 4}
        assert provider_handler.requests == []

    @pytest.mark.asyncio
    async def test_cancelled_run_is_not_persisted(self, orchestrator):
        cancel = CancelToken()
        cancel.cancel("Workflow deleted")
        workflow = make_workflow()
        persisted = []

        async def persist(execution):
            persisted.append(execution.status)

        execution = await orchestrator.run(workflow, pending(workflow), cancel, persist=persist)

        assert persisted == []
        assert execution.error_kind == ErrorKind.CANCELLED

    @pytest.mark.asyncio
    async def test_custom_parameters_reach_every_call(self, orchestrator, provider_handler):
        workflow = make_workflow(
            targets=WorkflowTarget(scope=TargetScope.TRADING_POINT, trading_point_ids=["tp1", "tp2"])
        )

        await orchestrator.run(workflow, pending(workflow), custom_parameters={"batch": "B-7"})

        assert all(b'"batch":"B-7"' in r.content.replace(b" ", b"") for r in provider_handler.requests)

    def test_skipped_execution_record(self):
        workflow = make_workflow()

        skipped = ExecutionOrchestrator.skipped_execution(workflow, "still running")

        assert skipped.status == ExecutionStatus.SKIPPED
        assert skipped.triggered_by == TriggerSource.SCHEDULE
        assert skipped.duration_ms == 0
        assert skipped.id.startswith("exec_")
