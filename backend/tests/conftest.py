"""Shared pytest fixtures for the workflow engine test suite.

Provides:
- A fresh file-backed async SQLite database per test (no PostgreSQL needed);
  the scheduler opens its own sessions, so the database must be shared
  between connections
- AsyncSession and session factory
- FastAPI test client (httpx.AsyncClient) wired to the test database
- Pre-seeded organization, auth headers and a workflow builder
- Fake delivery channels that record what they were asked to send
"""

import os
from typing import AsyncGenerator
from uuid import uuid4

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

# Override settings BEFORE any app imports
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("REDIS_URL", "redis://localhost:6379/0")
os.environ.setdefault("SECRET_KEY", "test-secret-key-not-for-production")
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("LOG_FORMAT", "text")
os.environ["DISPATCH_ON_CREATE"] = "false"

from core.security import create_access_token  # noqa: E402
from db.base import Base  # noqa: E402
from db.database import create_db_engine, create_session_factory  # noqa: E402
from notifications.channels import (  # noqa: E402
    BaseChannel,
    DeliveryResult,
    Notification,
    NotificationChannel,
    PortalChannel,
    StepChannels,
)


# ---------------------------------------------------------------------------
# Database fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def db_engine(tmp_path):
    """Create an engine on a throwaway database file for one test."""
    engine = create_db_engine(f"sqlite+aiosqlite:///{tmp_path / 'workflows.db'}")
    import db.models  # noqa: F401

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return create_session_factory(db_engine)


@pytest_asyncio.fixture
async def db_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """A session for arranging and asserting; commit before handing work to the scheduler."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# App / HTTP client fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app(session_factory):
    """FastAPI app whose request sessions come from the test database."""
    from app.dependencies import get_db
    from app.main import create_app

    async def _get_test_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    test_app = create_app()
    test_app.dependency_overrides[get_db] = _get_test_db
    yield test_app
    test_app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def client(app) -> AsyncGenerator[AsyncClient, None]:
    """Async HTTP test client."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test", follow_redirects=True) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Test data fixtures
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def test_org(db_session):
    """Create a committed practice on the professional plan."""
    from db.models.organization import Organization

    suffix = uuid4().hex[:8]
    org = Organization(
        id=str(uuid4()),
        name=f"Test Practice {suffix}",
        slug=f"test-practice-{suffix}",
        subscription_tier="professional",
        settings={"timezone": "UTC"},
    )
    db_session.add(org)
    await db_session.commit()
    return org


@pytest.fixture
def auth_headers(test_org) -> dict:
    """Authorization headers with a valid JWT for ``test_org``."""
    token = create_access_token(user_id="user-1", org_id=test_org.id, email="doula@example.com")
    return {"Authorization": f"Bearer {token}"}


LINEAR_STEPS = [
    {"step_key": "trigger", "step_type": "trigger", "step_order": 0, "next_step_key": "welcome"},
    {
        "step_key": "welcome",
        "step_type": "send_email",
        "step_order": 1,
        "step_config": {"subject": "Welcome {{ first_name }}", "body": "Hi {{ first_name }}!"},
        "next_step_key": "end",
    },
    {"step_key": "end", "step_type": "end", "step_order": 2},
]


@pytest.fixture
def make_workflow(db_session, test_org):
    """Builder for committed workflows with steps.

    Usage:
        wf = await make_workflow(steps=[...], trigger_type="field_change", is_active=True)
    """
    from db.models.workflow import Workflow
    from db.models.workflow_step import WorkflowStep

    async def _make(steps=None, **overrides):
        values = {
            "organization_id": test_org.id,
            "name": f"Workflow {uuid4().hex[:6]}",
            "object_type": "lead",
            "trigger_type": "record_create",
            "entry_criteria": {},
            "reentry_mode": "allow_all",
            "is_active": True,
        }
        values.update(overrides)
        workflow = Workflow(id=str(uuid4()), **values)
        db_session.add(workflow)
        await db_session.flush()
        for index, item in enumerate(steps if steps is not None else LINEAR_STEPS):
            db_session.add(WorkflowStep(
                workflow_id=workflow.id,
                step_key=item["step_key"],
                step_type=item["step_type"],
                step_order=item.get("step_order", index),
                step_config=dict(item.get("step_config") or {}),
                next_step_key=item.get("next_step_key"),
            ))
        await db_session.commit()
        return workflow

    return _make


@pytest.fixture
def make_record(db_session, test_org):
    """Builder for committed business records."""
    from db.models.business_record import BusinessRecord

    async def _make(object_type="lead", client_id="client-1", **data):
        record = BusinessRecord(
            id=str(uuid4()),
            organization_id=test_org.id,
            object_type=object_type,
            client_id=client_id,
            data=data,
        )
        db_session.add(record)
        await db_session.commit()
        return record

    return _make


@pytest.fixture
def start_execution(db_session):
    """Start a committed execution of ``workflow`` for ``record`` at the trigger's successor."""
    from services.execution_service import ExecutionService
    from triggers.base import CreateIntent
    from workflow.graph import StepGraph

    async def _start(workflow, record, trigger_type="record_create"):
        svc = ExecutionService(db_session)
        steps = await svc._workflow_steps(workflow.id)
        execution = await svc.start_execution(
            CreateIntent(
                workflow_id=workflow.id,
                organization_id=workflow.organization_id,
                record_type=record.object_type,
                record_id=record.id,
                trigger_type=trigger_type,
                initial_step_key=StepGraph.from_steps(steps).entry_step_key(),
                record_data=record.snapshot(),
            ),
            workflow=workflow,
        )
        await db_session.commit()
        return execution

    return _start


# ---------------------------------------------------------------------------
# Channels
# ---------------------------------------------------------------------------

class FakeChannel(BaseChannel):
    """Records notifications; fails with ``error`` when set."""

    def __init__(self, channel_type: NotificationChannel):
        self.channel_type = channel_type
        self.sent: list[Notification] = []
        self.error = None
        self.retryable = True
        self.on_send = None

    async def send(self, notification: Notification) -> DeliveryResult:
        self.sent.append(notification)
        if self.on_send is not None:
            await self.on_send(notification)
        if self.error:
            return DeliveryResult(
                success=False,
                channel=self.channel_type,
                recipient=notification.recipient,
                error=self.error,
                retryable=self.retryable,
            )
        return DeliveryResult(
            success=True,
            channel=self.channel_type,
            recipient=notification.recipient,
            provider_id=f"{self.channel_type.value}-{len(self.sent)}",
            delivered_at="2025-01-01T00:00:00+00:00",
            details={"segments": 1} if self.channel_type == NotificationChannel.SMS else {},
        )


@pytest.fixture
def email_channel():
    return FakeChannel(NotificationChannel.EMAIL)


@pytest.fixture
def sms_channel():
    return FakeChannel(NotificationChannel.SMS)


@pytest.fixture
def channels_factory(email_channel, sms_channel):
    """Scheduler ``channels_factory``: fake email/SMS, real portal inbox on the step's session."""
    def _factory(db, http=None):
        return StepChannels(email=email_channel, sms=sms_channel, portal=PortalChannel(db), http=http)

    return _factory
