"""Main entry point for the sync engine server."""

from __future__ import annotations

import logging
import time
from contextlib import asynccontextmanager
from typing import AsyncGenerator

import httpx
import uvicorn
from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware

from .core.config import settings
from .db import async_session_factory, init_db
from .engine.collaborators import (
    HttpTemplateCatalog,
    HttpTradingNetworkInventory,
    LoggingNotificationTransport,
    SmtpNotificationTransport,
)
from .engine.endpoint_invoker import EndpointInvoker
from .engine.notifications import NotificationDispatcher
from .engine.orchestrator import ExecutionOrchestrator
from .engine.scheduler import Scheduler
from .engine.statistics import StatisticsAggregator
from .engine.target_resolver import TargetResolver
from .routes import api_router
from .schemas.common import RootResponse, HealthResponse

logger = logging.getLogger(__name__)


def configure_logging() -> None:
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
    )


def build_notification_transport():
    """SMTP when configured, otherwise notices are only logged."""
    if settings.smtp_host:
        return SmtpNotificationTransport(
            hostname=settings.smtp_host,
            port=settings.smtp_port,
            sender=settings.smtp_from,
            username=settings.smtp_username,
            password=settings.smtp_password,
            start_tls=settings.smtp_start_tls,
        )
    return LoggingNotificationTransport()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan handler."""
    configure_logging()

    # Initialize database tables
    await init_db()
    logger.info("Database initialized")

    collaborator_client = httpx.AsyncClient(timeout=settings.collaborator_timeout_seconds)
    provider_client = httpx.AsyncClient()

    catalog = HttpTemplateCatalog(collaborator_client, settings.template_catalog_url)
    inventory = HttpTradingNetworkInventory(collaborator_client, settings.inventory_url)
    aggregator = StatisticsAggregator(settings.stats_window_size, settings.stats_period_days)
    scheduler = Scheduler(
        session_factory=async_session_factory,
        orchestrator=ExecutionOrchestrator(
            TargetResolver(inventory), EndpointInvoker(provider_client, catalog)
        ),
        dispatcher=NotificationDispatcher(
            build_notification_transport(), settings.critical_failure_threshold
        ),
        aggregator=aggregator,
        tick_seconds=settings.scheduler_tick_seconds,
        error_status_threshold=settings.error_status_threshold,
        max_records_per_workflow=settings.max_execution_records_per_workflow,
    )

    app.state.session_factory = async_session_factory
    app.state.catalog = catalog
    app.state.aggregator = aggregator
    app.state.scheduler = scheduler
    app.state.started_at = time.monotonic()

    await scheduler.recover()
    if settings.scheduler_enabled:
        scheduler.start()

    logger.info("%s v%s started", settings.app_name, settings.app_version)
    logger.info("Running on http://%s:%s", settings.host, settings.port)
    logger.info("API documentation available at /docs")

    yield

    await scheduler.stop()
    await provider_client.aclose()
    await collaborator_client.aclose()
    logger.info("%s stopped", settings.app_name)


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    app = FastAPI(
        title=settings.app_name,
        description="Scheduled synchronization of fuel-network data through versioned API templates",
        version=settings.app_version,
        lifespan=lifespan,
        debug=settings.debug,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=settings.cors_allow_credentials,
        allow_methods=settings.cors_allow_methods,
        allow_headers=settings.cors_allow_headers,
    )

    # Include routers
    app.include_router(api_router)

    # Root endpoints
    @app.get("/", response_model=RootResponse)
    async def root() -> RootResponse:
        """Root endpoint."""
        return RootResponse(
            name=settings.app_name,
            version=settings.app_version,
            status="running",
        )

    @app.get("/health", response_model=HealthResponse)
    async def health(request: Request) -> HealthResponse:
        """Health check endpoint."""
        started_at = getattr(request.app.state, "started_at", None)
        scheduler = getattr(request.app.state, "scheduler", None)
        return HealthResponse(
            status="healthy",
            version=settings.app_version,
            uptime_seconds=round(time.monotonic() - started_at, 1) if started_at else None,
            scheduler_running=bool(scheduler and scheduler.is_running),
        )

    return app


# Create app instance
app = create_app()


def main() -> None:
    """Run the server."""
    uvicorn.run(
        "sync_engine.main:app",
        host=settings.host,
        port=settings.port,
        reload=settings.reload,
        log_level=settings.log_level,
    )


if __name__ == "__main__":
    main()
