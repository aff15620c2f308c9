"""Workflow service for business logic."""

from __future__ import annotations

import copy
import logging
from dataclasses import replace
from typing import TYPE_CHECKING, Any

from ..core.exceptions import (
    CollaboratorError,
    TemplateUnavailableError,
    ValidationError,
    WorkflowActiveError,
    WorkflowNotFoundError,
)
from ..engine.schedule import first_due, pin_monthly_anchor, utc_now, validate_schedule
from ..engine.types import (
    NotificationConfig,
    RetryPolicy,
    ScheduleFrequency,
    TargetScope,
    TemplateStatus,
    TriggerSource,
    Workflow,
    WorkflowEndpoint,
    WorkflowStatus,
    WorkflowTarget,
    WorkflowType,
)
from ..schemas.common import PaginatedResponse
from ..schemas.execution import ExecutionDetailResponse
from ..schemas.statistics import WorkflowStatisticsResponse
from ..schemas.workflow import (
    EndpointSchema,
    ExecuteRequest,
    NotificationSchema,
    RetryPolicySchema,
    TargetSchema,
    ValidationIssue,
    WorkflowActiveResponse,
    WorkflowCreateRequest,
    WorkflowListItem,
    WorkflowResponse,
    WorkflowUpdateRequest,
    WorkflowValidationResponse,
)

if TYPE_CHECKING:
    from ..engine.collaborators import TemplateCatalog
    from ..engine.scheduler import Scheduler
    from ..engine.statistics import StatisticsAggregator
    from ..repositories import ExecutionRepository, WorkflowRepository

logger = logging.getLogger(__name__)


class WorkflowService:
    """Service for workflow operations."""

    def __init__(
        self,
        workflow_repo: WorkflowRepository,
        execution_repo: ExecutionRepository,
        scheduler: Scheduler,
        catalog: TemplateCatalog,
        aggregator: StatisticsAggregator,
    ) -> None:
        self._workflow_repo = workflow_repo
        self._execution_repo = execution_repo
        self._scheduler = scheduler
        self._catalog = catalog
        self._aggregator = aggregator

    async def list_workflows(
        self,
        workflow_type: WorkflowType | None = None,
        status: WorkflowStatus | None = None,
        scope: TargetScope | None = None,
        search: str | None = None,
        tags: list[str] | None = None,
        page: int = 1,
        page_size: int = 20,
        sort_by: str = "updated_at",
        sort_order: str = "desc",
    ) -> PaginatedResponse[WorkflowListItem]:
        """List workflows with filtering and pagination."""
        workflows, total = await self._workflow_repo.list(
            workflow_type=workflow_type,
            status=status,
            scope=scope,
            search=search,
            tags=tags,
            page=page,
            page_size=page_size,
            sort_by=sort_by,
            sort_order=sort_order,
        )
        return PaginatedResponse[WorkflowListItem](
            items=[
                WorkflowListItem(
                    id=w.id,
                    name=w.name,
                    description=w.description,
                    type=w.type,
                    status=w.status,
                    scope=w.targets.scope,
                    endpoint_count=len(w.endpoints),
                    next_execution=w.next_execution,
                    last_execution_id=w.last_execution_id,
                    success_rate=w.success_rate,
                    consecutive_failures=w.consecutive_failures,
                    tags=w.tags,
                    version=w.version,
                    updated_at=w.updated_at,
                )
                for w in workflows
            ],
            total=total,
            page=page,
            page_size=page_size,
            has_next=page * page_size < total,
            has_prev=page > 1,
        )

    async def get_workflow(self, workflow_id: str) -> WorkflowResponse:
        """Get a workflow by ID."""
        return WorkflowResponse.model_validate(await self._get(workflow_id))

    async def create_workflow(
        self,
        request: WorkflowCreateRequest,
        user: str | None = None,
        idempotency_key: str | None = None,
    ) -> WorkflowResponse:
        """Create a new workflow; a repeated idempotency key returns the first result."""
        if idempotency_key:
            existing = await self._workflow_repo.get_by_idempotency_key(idempotency_key)
            if existing:
                return WorkflowResponse.model_validate(existing)

        workflow = Workflow(
            id="",
            name=request.name,
            description=request.description,
            type=request.type,
            status=WorkflowStatus(request.status),
            schedule=pin_monthly_anchor(request.schedule.to_config(), utc_now()),
            endpoints=[_endpoint(e) for e in request.endpoints],
            targets=_target(request.targets),
            retry_policy=_retry_policy(request.retry_policy),
            timeout_ms=request.timeout_ms,
            max_concurrent_executions=request.max_concurrent_executions,
            notifications=_notifications(request.notifications),
            tags=list(request.tags),
            created_by=user,
        )
        self._validate_definition(workflow)
        if workflow.status == WorkflowStatus.ACTIVE:
            workflow.next_execution = first_due(workflow.schedule, utc_now())

        stored = await self._workflow_repo.create(workflow, idempotency_key)
        logger.info("Created workflow %s (%s)", stored.id, stored.name)
        return WorkflowResponse.model_validate(stored)

    async def update_workflow(
        self, workflow_id: str, request: WorkflowUpdateRequest, user: str | None = None
    ) -> WorkflowResponse:
        """
        Update an existing workflow.

        Raises:
            VersionConflictError: if request.version is stale
        """
        existing = await self._get(workflow_id)

        # Build updated workflow from existing + request
        updated = replace(
            existing,
            name=request.name if request.name is not None else existing.name,
            description=(
                request.description if request.description is not None else existing.description
            ),
            type=request.type or existing.type,
            schedule=(
                pin_monthly_anchor(request.schedule.to_config(), utc_now())
                if request.schedule
                else existing.schedule
            ),
            endpoints=(
                [_endpoint(e) for e in request.endpoints]
                if request.endpoints is not None
                else existing.endpoints
            ),
            targets=_target(request.targets) if request.targets else existing.targets,
            retry_policy=(
                _retry_policy(request.retry_policy) if request.retry_policy else existing.retry_policy
            ),
            timeout_ms=request.timeout_ms or existing.timeout_ms,
            max_concurrent_executions=(
                request.max_concurrent_executions or existing.max_concurrent_executions
            ),
            notifications=(
                _notifications(request.notifications)
                if request.notifications
                else existing.notifications
            ),
            tags=request.tags if request.tags is not None else existing.tags,
        )
        self._validate_definition(updated)
        reschedule = request.schedule is not None and updated.status == WorkflowStatus.ACTIVE
        if reschedule:
            updated.next_execution = first_due(updated.schedule, utc_now())

        stored = await self._workflow_repo.update_definition(
            updated, request.version, user, reschedule=reschedule
        )
        if not stored:
            raise WorkflowNotFoundError(workflow_id)
        return WorkflowResponse.model_validate(stored)

    async def delete_workflow(self, workflow_id: str) -> bool:
        """
        Delete a workflow, cancelling its in-flight run and dropping its history.

        Raises:
            WorkflowActiveError: if the workflow is still active
        """
        workflow = await self._get(workflow_id)
        if workflow.status == WorkflowStatus.ACTIVE:
            raise WorkflowActiveError(workflow_id)
        self._scheduler.cancel(workflow_id, "Workflow deleted")

        deleted = await self._workflow_repo.delete(workflow_id)
        if not deleted:
            raise WorkflowNotFoundError(workflow_id)
        removed = await self._execution_repo.delete_for_workflow(workflow_id)
        logger.info("Deleted workflow %s and %d execution record(s)", workflow_id, removed)
        return True

    async def clone_workflow(
        self, workflow_id: str, name: str | None = None, user: str | None = None
    ) -> WorkflowResponse:
        """Copy the definition into a new draft workflow."""
        source = await self._get(workflow_id)
        clone = Workflow(
            id="",
            name=name or f"{source.name} (copy)",
            description=source.description,
            type=source.type,
            status=WorkflowStatus.DRAFT,
            schedule=copy.deepcopy(source.schedule),
            endpoints=copy.deepcopy(source.endpoints),
            targets=copy.deepcopy(source.targets),
            retry_policy=copy.deepcopy(source.retry_policy),
            timeout_ms=source.timeout_ms,
            max_concurrent_executions=source.max_concurrent_executions,
            notifications=copy.deepcopy(source.notifications),
            tags=list(source.tags),
            created_by=user,
        )
        stored = await self._workflow_repo.create(clone)
        logger.info("Cloned workflow %s into %s", workflow_id, stored.id)
        return WorkflowResponse.model_validate(stored)

    async def set_active(
        self, workflow_id: str, active: bool, user: str | None = None
    ) -> WorkflowActiveResponse:
        """
        Activate or deactivate a workflow.

        Activation schedules the first run from now and re-checks the
        referenced templates; deactivation cancels the in-flight run.

        Raises:
            TemplateUnavailableError: if an enabled endpoint's template is
                missing or not active
        """
        workflow = await self._get(workflow_id)
        if active:
            await self._check_templates(workflow)
            updated = await self._workflow_repo.set_status(
                workflow_id,
                WorkflowStatus.ACTIVE,
                first_due(workflow.schedule, utc_now()),
                updated_by=user,
            )
        else:
            self._scheduler.cancel(workflow_id, "Workflow deactivated")
            updated = await self._workflow_repo.set_status(
                workflow_id, WorkflowStatus.INACTIVE, None, updated_by=user
            )
        if not updated:
            raise WorkflowNotFoundError(workflow_id)

        # A reactivated workflow starts a fresh failure streak
        if active and updated.consecutive_failures:
            updated = (
                await self._workflow_repo.update_derived(workflow_id, consecutive_failures=0)
                or updated
            )

        return WorkflowActiveResponse(
            id=updated.id,
            status=updated.status,
            next_execution=updated.next_execution,
            version=updated.version,
        )

    async def validate_workflow(self, workflow_id: str) -> WorkflowValidationResponse:
        """Check a stored workflow against its schedule rules and the template catalog."""
        workflow = await self._get(workflow_id)
        errors, warnings = await self._collect_issues(workflow)
        return WorkflowValidationResponse(valid=not errors, errors=errors, warnings=warnings)

    async def execute_workflow(
        self,
        workflow_id: str,
        request: ExecuteRequest,
        user: str | None = None,
        idempotency_key: str | None = None,
    ) -> ExecutionDetailResponse:
        """
        Start a manual run.

        Raises:
            WorkflowInactiveError: if the workflow is not active and the
                schedule is not overridden
            ExecutionInProgressError: if a run is already in flight
            TemplateUnavailableError: if a referenced template cannot run
        """
        workflow = await self._get(workflow_id)
        if not idempotency_key or not await self._execution_repo.get_by_idempotency_key(
            idempotency_key
        ):
            await self._check_templates(workflow)

        execution = await self._scheduler.trigger(
            workflow_id,
            triggered_by=TriggerSource.MANUAL,
            user=user,
            override_schedule=request.override_schedule,
            custom_parameters=request.custom_parameters or None,
            target_override=_target(request.target_override) if request.target_override else None,
            idempotency_key=idempotency_key,
        )
        return ExecutionDetailResponse.model_validate(execution)

    async def get_statistics(self, workflow_id: str) -> WorkflowStatisticsResponse:
        """Rolling statistics for one workflow."""
        workflow = await self._get(workflow_id)
        history = await self._execution_repo.for_workflow(workflow_id)
        stats = self._aggregator.compute(
            workflow_id, history, utc_now(), next_execution=workflow.next_execution
        )
        stats.consecutive_failures = workflow.consecutive_failures
        return WorkflowStatisticsResponse.model_validate(stats)

    async def _get(self, workflow_id: str) -> Workflow:
        workflow = await self._workflow_repo.get(workflow_id)
        if not workflow:
            raise WorkflowNotFoundError(workflow_id)
        return workflow

    def _validate_definition(self, workflow: Workflow) -> None:
        """Raise ValidationError for definitions that can never run."""
        try:
            validate_schedule(workflow.schedule)
        except ValueError as e:
            raise ValidationError(str(e), field="schedule") from e
        if not workflow.enabled_endpoints():
            raise ValidationError("At least one endpoint must be enabled", field="endpoints")

    async def _check_templates(self, workflow: Workflow) -> None:
        """Raise TemplateUnavailableError for the first endpoint that cannot run."""
        for endpoint in workflow.enabled_endpoints():
            try:
                template = await self._catalog.resolve(endpoint.template_id, endpoint.template_version)
            except CollaboratorError as e:
                # Catalog outages surface per call at run time
                logger.warning("Template catalog unavailable: %s", e.message)
                return
            if template is None:
                raise TemplateUnavailableError(
                    endpoint.template_id, endpoint.template_version, "not found"
                )
            if template.status != TemplateStatus.ACTIVE:
                raise TemplateUnavailableError(
                    endpoint.template_id, endpoint.template_version, template.status.value
                )

    async def _collect_issues(
        self, workflow: Workflow
    ) -> tuple[list[ValidationIssue], list[ValidationIssue]]:
        errors: list[ValidationIssue] = []
        warnings: list[ValidationIssue] = []

        try:
            self._validate_definition(workflow)
        except ValidationError as e:
            errors.append(ValidationIssue(field=e.field, message=e.message))

        if workflow.schedule.frequency == ScheduleFrequency.MINUTES and workflow.schedule.interval < 5:
            warnings.append(
                ValidationIssue(
                    field="schedule",
                    message="Running more often than every 5 minutes may overload the providers",
                )
            )
        if not workflow.targets.include_all and not workflow.targets.ids_for_scope():
            warnings.append(
                ValidationIssue(
                    field="targets",
                    message=f"No {workflow.targets.scope.value} ids selected; runs will process zero targets",
                )
            )
        if not workflow.notifications.email_recipients and workflow.notifications.enabled:
            warnings.append(
                ValidationIssue(field="notifications", message="Notifications have no recipients")
            )

        for index, endpoint in enumerate(workflow.endpoints):
            if not endpoint.enabled:
                continue
            field = f"endpoints[{index}]"
            try:
                template = await self._catalog.resolve(endpoint.template_id, endpoint.template_version)
            except CollaboratorError as e:
                warnings.append(
                    ValidationIssue(field=field, message=f"Could not verify template: {e.message}")
                )
                continue
            if template is None:
                errors.append(
                    ValidationIssue(
                        field=field,
                        message=f"Template {endpoint.template_id}@{endpoint.template_version} not found",
                    )
                )
            elif template.status != TemplateStatus.ACTIVE:
                errors.append(
                    ValidationIssue(
                        field=field,
                        message=(
                            f"Template {endpoint.template_id}@{endpoint.template_version} "
                            f"is {template.status.value}"
                        ),
                    )
                )
        return errors, warnings


def _endpoint(schema: EndpointSchema) -> WorkflowEndpoint:
    return WorkflowEndpoint(
        template_id=schema.template_id,
        template_version=schema.template_version,
        enabled=schema.enabled,
        priority=schema.priority,
        parameters=dict(schema.parameters),
    )


def _target(schema: TargetSchema) -> WorkflowTarget:
    return WorkflowTarget(
        scope=schema.scope,
        include_all=schema.include_all,
        network_ids=list(schema.network_ids),
        trading_point_ids=list(schema.trading_point_ids),
        equipment_ids=list(schema.equipment_ids),
        component_ids=list(schema.component_ids),
    )


def _retry_policy(schema: RetryPolicySchema) -> RetryPolicy:
    return RetryPolicy(
        max_attempts=schema.max_attempts,
        backoff=schema.backoff,
        initial_delay_ms=schema.initial_delay_ms,
        max_delay_ms=schema.max_delay_ms,
        retry_on_status_codes=set(schema.retry_on_status_codes),
        jitter=schema.jitter,
    )


def _notifications(schema: NotificationSchema) -> NotificationConfig:
    data: dict[str, Any] = schema.model_dump()
    return NotificationConfig(**data)
