"""Pytest configuration and fixtures."""

import os

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

# Set test environment variables before importing app modules
os.environ.setdefault("SYNC_DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("SYNC_SCHEDULER_ENABLED", "false")

from sync_engine.core.exceptions import CollaboratorError  # noqa: E402
from sync_engine.db import init_db  # noqa: E402
from sync_engine.engine.endpoint_invoker import EndpointInvoker  # noqa: E402
from sync_engine.engine.notifications import NotificationDispatcher  # noqa: E402
from sync_engine.engine.orchestrator import ExecutionOrchestrator  # noqa: E402
from sync_engine.engine.scheduler import Scheduler  # noqa: E402
from sync_engine.engine.statistics import StatisticsAggregator  # noqa: E402
from sync_engine.engine.target_resolver import TargetResolver  # noqa: E402
from sync_engine.engine.types import (  # noqa: E402
    ApiTemplate,
    ConnectionSettings,
    NotificationConfig,
    RetryPolicy,
    ScheduleConfig,
    ScheduleFrequency,
    TargetScope,
    TemplateStatus,
    Workflow,
    WorkflowEndpoint,
    WorkflowStatus,
    WorkflowTarget,
    WorkflowType,
)

PROVIDER_URL = "https://provider.test"


class FakeCatalog:
    """In-memory template catalog."""

    def __init__(self, templates=None):
        self.templates = {(t.id, t.version): t for t in templates or []}
        self.fail = False
        self.resolve_calls = 0

    def add(self, template):
        self.templates[(template.id, template.version)] = template

    async def resolve(self, template_id, version):
        self.resolve_calls += 1
        if self.fail:
            raise CollaboratorError("Template catalog unreachable")
        return self.templates.get((template_id, version))

    async def connection(self, provider_ref):
        return ConnectionSettings(base_url=PROVIDER_URL, headers={"X-Provider": provider_ref})


class FakeInventory:
    """In-memory trading network inventory."""

    def __init__(self, targets=None):
        self.targets = targets or {}
        self.fail = False
        self.calls = []

    async def list_targets(self, scope, filters):
        self.calls.append((scope, filters))
        if self.fail:
            raise CollaboratorError("Inventory unreachable")
        return list(self.targets.get(scope, []))


class RecordingTransport:
    """Notification transport that keeps what it was asked to send."""

    def __init__(self):
        self.sent = []

    async def send(self, recipients, severity, subject, body):
        self.sent.append(
            {"recipients": recipients, "severity": severity, "subject": subject, "body": body}
        )


def price_template(status=TemplateStatus.ACTIVE):
    return ApiTemplate(
        id="set-prices",
        version="1.0",
        method="POST",
        endpoint="/trading-points/{trading_point_id}/prices",
        provider_ref="fuel-provider",
        status=status,
    )


def make_workflow(**overrides) -> Workflow:
    """A trading-point price sync with fast retries."""
    values = dict(
        id="wf_test",
        name="Price sync",
        type=WorkflowType.PRICE_SYNC,
        status=WorkflowStatus.ACTIVE,
        schedule=ScheduleConfig(frequency=ScheduleFrequency.HOURS, interval=1),
        endpoints=[WorkflowEndpoint(template_id="set-prices", template_version="1.0")],
        targets=WorkflowTarget(
            scope=TargetScope.TRADING_POINT, trading_point_ids=["tp1", "tp2", "tp3", "tp4"]
        ),
        retry_policy=RetryPolicy(max_attempts=3, initial_delay_ms=1, max_delay_ms=4),
        notifications=NotificationConfig(email_recipients=["ops@example.com"]),
    )
    values.update(overrides)
    return Workflow(**values)


@pytest.fixture
def catalog():
    return FakeCatalog([price_template()])


@pytest.fixture
def inventory():
    return FakeInventory({TargetScope.TRADING_POINT: ["tp1", "tp2", "tp3", "tp4"]})


@pytest.fixture
def transport():
    return RecordingTransport()


@pytest.fixture
def provider_handler():
    """Mutable request handler for the mocked provider API; tests replace `.handler`."""

    class Handler:
        def __init__(self):
            self.requests = []
            self.handler = lambda request: httpx.Response(200, json={"updated": 1})

        def __call__(self, request):
            self.requests.append(request)
            return self.handler(request)

    return Handler()


@pytest.fixture
async def provider_client(provider_handler):
    async with httpx.AsyncClient(transport=httpx.MockTransport(provider_handler)) as client:
        yield client


@pytest.fixture
def orchestrator(catalog, inventory, provider_client):
    return ExecutionOrchestrator(TargetResolver(inventory), EndpointInvoker(provider_client, catalog))


@pytest.fixture
async def db_engine():
    """In-memory SQLite shared across sessions of one test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def session(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def scheduler(session_factory, orchestrator, transport):
    scheduler = Scheduler(
        session_factory=session_factory,
        orchestrator=orchestrator,
        dispatcher=NotificationDispatcher(transport, critical_threshold=3),
        aggregator=StatisticsAggregator(window_size=50, period_days=30),
        tick_seconds=0.01,
        error_status_threshold=5,
        max_records_per_workflow=50,
    )
    yield scheduler
    await scheduler.stop()
