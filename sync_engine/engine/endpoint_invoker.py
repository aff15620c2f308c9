"""
Endpoint invoker - performs one (target, endpoint) call with retries.

The invoker never raises: every failure ends up in the returned
InvocationResult so one broken pair cannot abort the rest of a run.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Any

import httpx

from ..core.exceptions import CollaboratorError
from .collaborators import TemplateCatalog
from .retry_policy import AttemptOutcome, RetryPolicyEvaluator
from .schedule import utc_now
from .types import (
    ApiTemplate,
    ConnectionSettings,
    ErrorKind,
    ExecutionStatus,
    InvocationResult,
    ResolvedTarget,
    TemplateStatus,
    Workflow,
    WorkflowEndpoint,
)

logger = logging.getLogger(__name__)

_QUERY_METHODS = frozenset({"GET", "DELETE", "HEAD"})


class CancelToken:
    """Cooperative cancellation flag shared by all invocations of one run."""

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.reason: str | None = None

    def cancel(self, reason: str = "Execution cancelled") -> None:
        self.reason = reason
        self._event.set()

    @property
    def cancelled(self) -> bool:
        return self._event.is_set()

    async def sleep(self, seconds: float) -> bool:
        """Sleep up to `seconds`; return True if cancelled meanwhile."""
        try:
            await asyncio.wait_for(self._event.wait(), timeout=seconds)
        except asyncio.TimeoutError:
            return False
        return True


def classify_status(status_code: int) -> ErrorKind:
    """Map an HTTP error status to a coarse error kind."""
    if status_code in (401, 403):
        return ErrorKind.AUTHENTICATION_FAILED
    if status_code == 429:
        return ErrorKind.RATE_LIMIT
    if status_code in (408, 504):
        return ErrorKind.TIMEOUT
    if 400 <= status_code < 500:
        return ErrorKind.VALIDATION
    return ErrorKind.UNKNOWN


def count_records(body: Any) -> tuple[int, int, int, int]:
    """Return (created, updated, deleted, processed) counts from a response body."""
    if isinstance(body, list):
        return 0, 0, 0, len(body)
    if not isinstance(body, dict):
        return 0, 0, 0, 0

    created = _count(body, "records_created", "created")
    updated = _count(body, "records_updated", "updated")
    deleted = _count(body, "records_deleted", "deleted")
    processed = _count(body, "records_processed", "processed", "data", "items")
    return created, updated, deleted, max(processed, created + updated + deleted)


def _count(body: dict[str, Any], *keys: str) -> int:
    for key in keys:
        value = body.get(key)
        if isinstance(value, bool):
            continue
        if isinstance(value, int):
            return value
        if isinstance(value, list):
            return len(value)
    return 0


def effective_timeout_ms(workflow_timeout_ms: int, template: ApiTemplate) -> int:
    """The workflow's timeout, capped by the template's declared timeout when it has one."""
    if template.default_timeout_ms:
        return min(workflow_timeout_ms, template.default_timeout_ms)
    return workflow_timeout_ms


class EndpointInvoker:
    """Calls provider APIs described by catalog templates."""

    def __init__(self, client: httpx.AsyncClient, catalog: TemplateCatalog) -> None:
        self._client = client
        self._catalog = catalog

    async def invoke(
        self,
        workflow: Workflow,
        endpoint: WorkflowEndpoint,
        target: ResolvedTarget,
        cancel: CancelToken | None = None,
        extra_parameters: dict[str, Any] | None = None,
    ) -> InvocationResult:
        result = InvocationResult(
            target=target,
            status=ExecutionStatus.FAILED,
            started_at=utc_now(),
            completed_at=utc_now(),
            attempts=0,
        )

        prepared = await self._prepare(endpoint, target, extra_parameters or {}, result)
        if prepared is None:
            result.completed_at = utc_now()
            return result
        template, connection, url, query, body = prepared

        evaluator = RetryPolicyEvaluator(workflow.retry_policy)
        timeout_s = effective_timeout_ms(workflow.timeout_ms, template) / 1000

        while True:
            if cancel and cancel.cancelled:
                self._fail(result, ErrorKind.CANCELLED, cancel.reason or "Execution cancelled")
                break

            result.attempts += 1
            outcome = await self._attempt(
                template.method, url, query, body, connection, timeout_s, result
            )
            if outcome is None:
                result.status = ExecutionStatus.COMPLETED
                result.error_kind = None
                result.error_message = None
                break

            self._fail(result, outcome.error_kind, outcome.message)
            decision = evaluator.decide(result.attempts, outcome)
            if not decision.retry:
                break

            logger.debug(
                "Retrying %s for %s in %d ms (attempt %d failed: %s)",
                endpoint.template_id,
                target.id,
                decision.delay_ms,
                result.attempts,
                outcome.error_kind.value,
            )
            if cancel:
                if await cancel.sleep(decision.delay_ms / 1000):
                    self._fail(
                        result,
                        ErrorKind.CANCELLED,
                        f"{cancel.reason or 'Execution cancelled'} (last error: {outcome.message})",
                    )
                    break
            else:
                await asyncio.sleep(decision.delay_ms / 1000)

        result.completed_at = utc_now()
        return result

    async def _prepare(
        self,
        endpoint: WorkflowEndpoint,
        target: ResolvedTarget,
        extra_parameters: dict[str, Any],
        result: InvocationResult,
    ) -> tuple[ApiTemplate, ConnectionSettings, str, dict[str, Any], dict[str, Any] | None] | None:
        """Resolve template and connection and bind parameters; None on permanent failure."""
        ref = f"{endpoint.template_id}@{endpoint.template_version}"
        try:
            template = await self._catalog.resolve(endpoint.template_id, endpoint.template_version)
        except CollaboratorError as e:
            self._fail(result, ErrorKind.CONNECTION_ERROR, e.message)
            return None

        if template is None:
            self._fail(result, ErrorKind.TEMPLATE_UNAVAILABLE, f"Template {ref} not found")
            return None
        if template.status != TemplateStatus.ACTIVE:
            self._fail(
                result,
                ErrorKind.TEMPLATE_UNAVAILABLE,
                f"Template {ref} is {template.status.value}",
            )
            return None

        try:
            connection = await self._catalog.connection(template.provider_ref)
        except CollaboratorError as e:
            self._fail(result, ErrorKind.CONNECTION_ERROR, e.message)
            return None

        parameters = {**endpoint.parameters, **extra_parameters, **target.parameters()}
        try:
            path = template.endpoint.format_map(parameters)
        except (KeyError, ValueError, IndexError) as e:
            self._fail(result, ErrorKind.VALIDATION, f"Cannot bind parameters for {ref}: {e!r}")
            return None

        url = f"{connection.base_url.rstrip('/')}/{path.lstrip('/')}"
        if template.method in _QUERY_METHODS:
            query = {
                k: v for k, v in parameters.items() if isinstance(v, (str, int, float, bool))
            }
            return template, connection, url, query, None
        return template, connection, url, {}, parameters

    async def _attempt(
        self,
        method: str,
        url: str,
        query: dict[str, Any],
        body: dict[str, Any] | None,
        connection: ConnectionSettings,
        timeout_s: float,
        result: InvocationResult,
    ) -> AttemptOutcome | None:
        """Make one HTTP call; return None on success, else the failure outcome."""
        started = time.perf_counter()
        try:
            response = await asyncio.wait_for(
                self._client.request(
                    method,
                    url,
                    params=query or None,
                    json=body,
                    headers=connection.headers,
                    timeout=timeout_s,
                ),
                timeout=timeout_s,
            )
        except (asyncio.TimeoutError, httpx.TimeoutException):
            result.failed_calls += 1
            return AttemptOutcome(ErrorKind.TIMEOUT, message=f"Timed out after {timeout_s:g}s")
        except httpx.TransportError as e:
            result.failed_calls += 1
            return AttemptOutcome(ErrorKind.CONNECTION_ERROR, message=str(e) or type(e).__name__)
        except (httpx.HTTPError, httpx.InvalidURL) as e:
            result.failed_calls += 1
            return AttemptOutcome(ErrorKind.VALIDATION, message=str(e) or type(e).__name__)

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        result.response_times_ms.append(elapsed_ms)
        result.response_time_ms = elapsed_ms
        result.http_status = response.status_code
        result.bytes_transferred += len(response.content) + len(response.request.content)

        if response.is_error:
            result.failed_calls += 1
            return AttemptOutcome(
                classify_status(response.status_code),
                status_code=response.status_code,
                message=f"HTTP {response.status_code}: {response.text[:200]}",
            )

        result.successful_calls += 1
        try:
            payload = response.json() if response.content else None
        except ValueError:
            payload = None
        (
            result.records_created,
            result.records_updated,
            result.records_deleted,
            result.records_processed,
        ) = count_records(payload)
        return None

    @staticmethod
    def _fail(result: InvocationResult, kind: ErrorKind, message: str | None) -> None:
        result.status = ExecutionStatus.FAILED
        result.error_kind = kind
        result.error_message = message
