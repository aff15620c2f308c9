"""Workflow routes."""

from __future__ import annotations

from typing import Annotated, Literal

from fastapi import APIRouter, Depends, Header, HTTPException, Query

from ..core.exceptions import (
    ExecutionInProgressError,
    TemplateUnavailableError,
    ValidationError,
    VersionConflictError,
    WorkflowActiveError,
    WorkflowInactiveError,
    WorkflowNotFoundError,
)
from ..core.dependencies import get_workflow_service
from ..engine.types import TargetScope, WorkflowStatus, WorkflowType
from ..services.workflow_service import WorkflowService
from ..schemas.workflow import (
    ActiveToggleRequest,
    CloneRequest,
    ExecuteRequest,
    WorkflowActiveResponse,
    WorkflowCreateRequest,
    WorkflowListItem,
    WorkflowResponse,
    WorkflowUpdateRequest,
    WorkflowValidationResponse,
)
from ..schemas.execution import ExecutionDetailResponse
from ..schemas.statistics import WorkflowStatisticsResponse
from ..schemas.common import PaginatedResponse, SuccessResponse

router = APIRouter(prefix="/workflows")


# Type aliases for dependency injection
WorkflowServiceDep = Annotated[WorkflowService, Depends(get_workflow_service)]
UserHeader = Annotated[str | None, Header(alias="X-User")]
IdempotencyKeyHeader = Annotated[str | None, Header(alias="Idempotency-Key")]


@router.get("", response_model=PaginatedResponse[WorkflowListItem])
async def list_workflows(
    service: WorkflowServiceDep,
    type: WorkflowType | None = None,
    status: WorkflowStatus | None = None,
    scope: TargetScope | None = None,
    search: str | None = None,
    tags: Annotated[list[str] | None, Query()] = None,
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    sort_by: str = "updated_at",
    sort_order: Literal["asc", "desc"] = "desc",
) -> PaginatedResponse[WorkflowListItem]:
    """List workflows with filtering, search and pagination."""
    return await service.list_workflows(
        workflow_type=type,
        status=status,
        scope=scope,
        search=search,
        tags=tags,
        page=page,
        page_size=page_size,
        sort_by=sort_by,
        sort_order=sort_order,
    )


@router.get("/{workflow_id}", response_model=WorkflowResponse)
async def get_workflow(
    workflow_id: str,
    service: WorkflowServiceDep,
) -> WorkflowResponse:
    """Get a single workflow by ID."""
    try:
        return await service.get_workflow(workflow_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.post("", response_model=WorkflowResponse, status_code=201)
async def create_workflow(
    workflow: WorkflowCreateRequest,
    service: WorkflowServiceDep,
    x_user: UserHeader = None,
    idempotency_key: IdempotencyKeyHeader = None,
) -> WorkflowResponse:
    """Create a new workflow."""
    try:
        return await service.create_workflow(workflow, user=x_user, idempotency_key=idempotency_key)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.put("/{workflow_id}", response_model=WorkflowResponse)
async def update_workflow(
    workflow_id: str,
    workflow: WorkflowUpdateRequest,
    service: WorkflowServiceDep,
    x_user: UserHeader = None,
) -> WorkflowResponse:
    """Update an existing workflow. The request must carry the version it is based on."""
    try:
        return await service.update_workflow(workflow_id, workflow, user=x_user)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except VersionConflictError as e:
        raise HTTPException(status_code=409, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=400, detail=e.message)


@router.delete("/{workflow_id}", response_model=SuccessResponse)
async def delete_workflow(
    workflow_id: str,
    service: WorkflowServiceDep,
) -> SuccessResponse:
    """Delete a workflow and its execution history."""
    try:
        await service.delete_workflow(workflow_id)
        return SuccessResponse(message="Workflow deleted")
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except WorkflowActiveError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.post("/{workflow_id}/clone", response_model=WorkflowResponse, status_code=201)
async def clone_workflow(
    workflow_id: str,
    service: WorkflowServiceDep,
    body: CloneRequest | None = None,
    x_user: UserHeader = None,
) -> WorkflowResponse:
    """Copy a workflow definition into a new draft."""
    try:
        return await service.clone_workflow(workflow_id, body.name if body else None, user=x_user)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.patch("/{workflow_id}/active", response_model=WorkflowActiveResponse)
async def toggle_workflow_active(
    workflow_id: str,
    body: ActiveToggleRequest,
    service: WorkflowServiceDep,
    x_user: UserHeader = None,
) -> WorkflowActiveResponse:
    """Toggle workflow active state."""
    try:
        return await service.set_active(workflow_id, body.active, user=x_user)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except TemplateUnavailableError as e:
        raise HTTPException(status_code=422, detail=e.message)
    except VersionConflictError as e:
        raise HTTPException(status_code=409, detail=e.message)


@router.post("/{workflow_id}/validate", response_model=WorkflowValidationResponse)
async def validate_workflow(
    workflow_id: str,
    service: WorkflowServiceDep,
) -> WorkflowValidationResponse:
    """Check a workflow's schedule, targets and templates without running it."""
    try:
        return await service.validate_workflow(workflow_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)


@router.post("/{workflow_id}/execute", response_model=ExecutionDetailResponse, status_code=202)
async def execute_workflow(
    workflow_id: str,
    service: WorkflowServiceDep,
    body: ExecuteRequest | None = None,
    x_user: UserHeader = None,
    idempotency_key: IdempotencyKeyHeader = None,
) -> ExecutionDetailResponse:
    """Start a manual run; returns the pending execution record."""
    try:
        return await service.execute_workflow(
            workflow_id, body or ExecuteRequest(), user=x_user, idempotency_key=idempotency_key
        )
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except (WorkflowInactiveError, ExecutionInProgressError) as e:
        raise HTTPException(status_code=409, detail=e.message)
    except TemplateUnavailableError as e:
        raise HTTPException(status_code=422, detail=e.message)


@router.get("/{workflow_id}/statistics", response_model=WorkflowStatisticsResponse)
async def get_workflow_statistics(
    workflow_id: str,
    service: WorkflowServiceDep,
) -> WorkflowStatisticsResponse:
    """Rolling statistics for a workflow."""
    try:
        return await service.get_statistics(workflow_id)
    except WorkflowNotFoundError as e:
        raise HTTPException(status_code=404, detail=e.message)
