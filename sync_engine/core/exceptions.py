"""Custom exceptions for the sync engine."""

from typing import Any


class WorkflowEngineError(Exception):
    """Base exception for all sync engine errors."""

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details or {}


class WorkflowNotFoundError(WorkflowEngineError):
    """Raised when a workflow is not found."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            message=f"Workflow not found: {workflow_id}",
            details={"workflow_id": workflow_id},
        )
        self.workflow_id = workflow_id


class ExecutionNotFoundError(WorkflowEngineError):
    """Raised when an execution record is not found."""

    def __init__(self, execution_id: str) -> None:
        super().__init__(
            message=f"Execution not found: {execution_id}",
            details={"execution_id": execution_id},
        )
        self.execution_id = execution_id


class ValidationError(WorkflowEngineError):
    """Raised when a workflow definition fails validation."""

    def __init__(self, message: str, field: str | None = None) -> None:
        super().__init__(
            message=message,
            details={"field": field} if field else {},
        )
        self.field = field


class TemplateUnavailableError(ValidationError):
    """Raised when an endpoint references a missing or non-active API template."""

    def __init__(self, template_id: str, template_version: str, reason: str) -> None:
        super().__init__(
            message=f"API template {template_id}@{template_version} is unavailable: {reason}",
            field="endpoints",
        )
        self.template_id = template_id
        self.template_version = template_version
        self.reason = reason


class VersionConflictError(WorkflowEngineError):
    """Raised when an edit was based on a stale workflow version."""

    def __init__(self, workflow_id: str, expected: int, actual: int | None) -> None:
        super().__init__(
            message=(
                f"Workflow {workflow_id} was modified concurrently "
                f"(expected version {expected}, current version {actual})"
            ),
            details={"workflow_id": workflow_id, "expected": expected, "actual": actual},
        )
        self.workflow_id = workflow_id
        self.expected = expected
        self.actual = actual


class WorkflowInactiveError(WorkflowEngineError):
    """Raised when trying to run an inactive workflow without override."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            message=f"Workflow is not active: {workflow_id}",
            details={"workflow_id": workflow_id},
        )
        self.workflow_id = workflow_id


class WorkflowActiveError(WorkflowEngineError):
    """Raised when deleting a workflow that is still active."""

    def __init__(self, workflow_id: str) -> None:
        super().__init__(
            message="Cannot delete active workflow. Deactivate it first.",
            details={"workflow_id": workflow_id},
        )
        self.workflow_id = workflow_id


class ExecutionInProgressError(WorkflowEngineError):
    """Raised when a manual run is requested while the workflow is already running."""

    def __init__(self, workflow_id: str, execution_id: str) -> None:
        super().__init__(
            message=f"Workflow {workflow_id} is already running (execution {execution_id})",
            details={"workflow_id": workflow_id, "execution_id": execution_id},
        )
        self.workflow_id = workflow_id
        self.execution_id = execution_id


class TargetResolutionError(WorkflowEngineError):
    """Raised when the trading network inventory cannot be queried."""

    def __init__(self, message: str, scope: str | None = None) -> None:
        super().__init__(message=message, details={"scope": scope} if scope else {})
        self.scope = scope


class CollaboratorError(WorkflowEngineError):
    """Raised by external collaborator clients (template catalog, inventory)."""
