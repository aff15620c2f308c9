"""Notification rules for finished executions."""

from __future__ import annotations

import logging

from .collaborators import NotificationTransport
from .types import (
    ExecutionStatus,
    Notification,
    NotificationSeverity,
    Workflow,
    WorkflowExecution,
)

logger = logging.getLogger(__name__)


class NotificationDispatcher:
    """Decides which notices a finished execution produces and sends them."""

    def __init__(self, transport: NotificationTransport, critical_threshold: int = 3) -> None:
        self._transport = transport
        self._critical_threshold = critical_threshold

    def decide(
        self,
        workflow: Workflow,
        execution: WorkflowExecution,
        consecutive_failures: int,
    ) -> list[Notification]:
        config = workflow.notifications
        if not config.enabled:
            return []

        notices: list[Notification] = []
        if execution.status == ExecutionStatus.COMPLETED and config.on_success:
            notices.append(
                Notification(
                    severity=NotificationSeverity.INFO,
                    recipients=list(config.email_recipients),
                    subject=f"Workflow '{workflow.name}' completed",
                    body=_execution_body(workflow, execution),
                )
            )

        if execution.status == ExecutionStatus.FAILED:
            if config.on_failure:
                notices.append(
                    Notification(
                        severity=NotificationSeverity.WARNING,
                        recipients=list(config.email_recipients),
                        subject=f"Workflow '{workflow.name}' failed",
                        body=_execution_body(workflow, execution),
                    )
                )
            # Fires once, when the streak reaches the threshold
            if config.on_critical_failure and consecutive_failures == self._critical_threshold:
                notices.append(
                    Notification(
                        severity=NotificationSeverity.CRITICAL,
                        recipients=_critical_recipients(workflow),
                        subject=(
                            f"Workflow '{workflow.name}' failed "
                            f"{consecutive_failures} times in a row"
                        ),
                        body=_execution_body(workflow, execution),
                    )
                )
        return notices

    def decide_error_status(self, workflow: Workflow, consecutive_failures: int) -> list[Notification]:
        """Notice for a workflow the engine moved to `error`."""
        if not workflow.notifications.enabled:
            return []
        return [
            Notification(
                severity=NotificationSeverity.CRITICAL,
                recipients=_critical_recipients(workflow),
                subject=f"Workflow '{workflow.name}' disabled after repeated failures",
                body=(
                    f"# {workflow.name}\n\n"
                    f"The workflow failed {consecutive_failures} consecutive runs and was "
                    "moved to **error** status. It will not run again until it is "
                    "re-activated."
                ),
            )
        ]

    async def dispatch(self, notices: list[Notification]) -> int:
        """Send notices; return how many were delivered."""
        delivered = 0
        for notice in notices:
            if not notice.recipients:
                logger.debug("Skipping notice without recipients: %s", notice.subject)
                continue
            try:
                await self._transport.send(
                    notice.recipients, notice.severity, notice.subject, notice.body
                )
                delivered += 1
            except Exception:
                logger.exception("Failed to deliver notification: %s", notice.subject)
        return delivered


def _critical_recipients(workflow: Workflow) -> list[str]:
    config = workflow.notifications
    return list(dict.fromkeys([*config.email_recipients, *config.critical_recipients]))


def _execution_body(workflow: Workflow, execution: WorkflowExecution) -> str:
    summary = execution.summary
    lines = [
        f"# {workflow.name}",
        "",
        f"Execution `{execution.id}` finished with status **{execution.status.value}**.",
        "",
        "| Metric | Value |",
        "|---|---|",
        f"| Triggered by | {execution.triggered_by.value} |",
        f"| Duration | {execution.duration_ms or 0} ms |",
        f"| Targets | {execution.targets_successful} ok / {execution.targets_failed} failed |",
        f"| API calls | {summary.successful_api_calls} ok / {summary.failed_api_calls} failed |",
        f"| Records | {summary.records_created} created, {summary.records_updated} updated, "
        f"{summary.records_deleted} deleted |",
    ]
    if execution.error_message:
        lines += ["", f"**Error:** {execution.error_message}"]
    if summary.error_breakdown:
        lines += ["", "Errors by kind:", ""]
        lines += [f"- {kind}: {count}" for kind, count in summary.error_breakdown.items()]
    return "\n".join(lines)
