"""FastAPI dependency injection for the sync engine."""

from __future__ import annotations

from typing import AsyncGenerator

from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from .config import settings


# --- Database Session Dependency ---


async def get_db_session(request: Request) -> AsyncGenerator[AsyncSession, None]:
    """Get async database session."""
    async with request.app.state.session_factory() as session:
        yield session


# --- Repository Dependencies ---


def get_workflow_repository(session: AsyncSession = Depends(get_db_session)):
    """Get workflow repository instance."""
    from ..repositories import WorkflowRepository

    return WorkflowRepository(session)


def get_execution_repository(session: AsyncSession = Depends(get_db_session)):
    """Get execution repository instance."""
    from ..repositories import ExecutionRepository

    return ExecutionRepository(
        session, max_records_per_workflow=settings.max_execution_records_per_workflow
    )


# --- Engine Dependencies (created in the app lifespan) ---


def get_scheduler(request: Request):
    """Get the running scheduler."""
    return request.app.state.scheduler


def get_template_catalog(request: Request):
    """Get the template catalog client."""
    return request.app.state.catalog


def get_statistics_aggregator(request: Request):
    """Get the statistics aggregator."""
    return request.app.state.aggregator


# --- Service Dependencies ---


def get_workflow_service(
    workflow_repo=Depends(get_workflow_repository),
    execution_repo=Depends(get_execution_repository),
    scheduler=Depends(get_scheduler),
    catalog=Depends(get_template_catalog),
    aggregator=Depends(get_statistics_aggregator),
):
    """Get workflow service instance."""
    from ..services.workflow_service import WorkflowService

    return WorkflowService(workflow_repo, execution_repo, scheduler, catalog, aggregator)


def get_execution_service(
    execution_repo=Depends(get_execution_repository),
    scheduler=Depends(get_scheduler),
):
    """Get execution service instance."""
    from ..services.execution_service import ExecutionService

    return ExecutionService(execution_repo, scheduler)


def get_statistics_service(
    workflow_repo=Depends(get_workflow_repository),
    execution_repo=Depends(get_execution_repository),
    scheduler=Depends(get_scheduler),
):
    """Get statistics service instance."""
    from ..services.statistics_service import StatisticsService

    return StatisticsService(workflow_repo, execution_repo, scheduler)
