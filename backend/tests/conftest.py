"""Pytest fixtures for ticketsync backend tests."""

from collections import defaultdict
from collections.abc import AsyncGenerator
from datetime import UTC, datetime
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

import ticketsync.models  # noqa: F401  (registers tables on Base.metadata)
from ticketsync.config import Settings
from ticketsync.database import Base, get_db
from ticketsync.limiter import limiter
from ticketsync.main import app
from ticketsync.routers.sync import get_zendesk_client
from ticketsync.services.zendesk_client import ZendeskClient

# Test database URL - in-memory SQLite shared by every session of one test
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
ZENDESK_BASE_URL = "https://acme.zendesk.com/api/v2"


@pytest.fixture
def test_settings() -> Settings:
    """Test settings with safe defaults."""
    return Settings(
        database_url=TEST_DATABASE_URL,
        zendesk_subdomain="acme",
        zendesk_email="ops@acme.test",
        zendesk_api_token="test_token",
        request_delay_seconds=0,
        startup_jitter_min_seconds=0,
        startup_jitter_max_seconds=0,
        debug=True,
    )


@pytest_asyncio.fixture
async def async_engine():
    """Create async engine with the full schema."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_maker(async_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def db_session(session_maker) -> AsyncGenerator[AsyncSession, None]:
    """Create test database session."""
    async with session_maker() as session:
        yield session
        await session.rollback()


class FakeZendesk:
    """
    Canned Zendesk API backed by ``httpx.MockTransport``.

    Responses are queued per API path; the last queued response for a path is
    repeated once the queue is down to one.
    """

    def __init__(self):
        self.responses: dict[str, list[tuple[int, Any, dict[str, str]]]] = defaultdict(list)
        self.requests: list[httpx.Request] = []

    def add(
        self,
        path: str,
        payload: Any = None,
        status_code: int = 200,
        headers: dict[str, str] | None = None,
    ) -> None:
        self.responses[f"/api/v2/{path}"].append((status_code, payload, headers or {}))

    def requests_for(self, path: str) -> list[httpx.Request]:
        return [r for r in self.requests if r.url.path == f"/api/v2/{path}"]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        queue = self.responses.get(request.url.path)
        if not queue:
            return httpx.Response(404, json={"error": "RecordNotFound"})

        status_code, payload, headers = queue.pop(0) if len(queue) > 1 else queue[0]
        return httpx.Response(status_code, json=payload, headers=headers)

    def client(self, **kwargs) -> ZendeskClient:
        options = {
            "base_url": ZENDESK_BASE_URL,
            "email": "ops@acme.test",
            "api_token": "test_token",
            "request_delay": 0,
            "transport": httpx.MockTransport(self.handler),
        }
        options.update(kwargs)
        return ZendeskClient(**options)


@pytest.fixture
def zendesk() -> FakeZendesk:
    return FakeZendesk()


@pytest.fixture(autouse=True)
def reset_rate_limits():
    limiter.reset()
    yield


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, zendesk: FakeZendesk) -> AsyncGenerator[AsyncClient, None]:
    """Create test HTTP client with database and Zendesk overrides."""

    async def override_get_db():
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_zendesk_client] = lambda: zendesk.client()

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()


@pytest.fixture
def sample_ticket_records() -> list[dict[str, Any]]:
    """Sample tickets from the incremental export."""
    return [
        {
            "id": 101,
            "subject": "Printer on fire",
            "description": "The office printer is on fire.",
            "status": "solved",
            "priority": "urgent",
            "type": "incident",
            "created_at": "2024-01-15T09:00:00Z",
            "updated_at": "2024-01-15T11:30:00Z",
            "requester_id": 9001,
            "assignee_id": 501,
            "organization_id": 7001,
            "group_id": 301,
            "tags": ["hardware", "Billable-Support"],
            "custom_fields": [{"id": 1, "value": "onsite"}],
        },
        {
            "id": 102,
            "subject": "Password reset",
            "description": "Cannot log in.",
            "status": "open",
            "priority": None,
            "type": "question",
            "created_at": "2024-01-15T10:00:00Z",
            "updated_at": "2024-01-15T10:05:00Z",
            "requester_id": 9002,
            "assignee_id": None,
            "organization_id": None,
            "group_id": 301,
            "tags": [],
            "custom_fields": [],
        },
    ]


@pytest.fixture
def sample_metric_sets() -> list[dict[str, Any]]:
    """Metric sets side-loaded with the sample tickets."""
    return [
        {
            "id": 1,
            "ticket_id": 101,
            "replies": 1,
            "reopens": 0,
            "reply_time_in_minutes": {"calendar": 50, "business": 45},
            "full_resolution_time_in_minutes": {"calendar": 150, "business": 150},
            "agent_wait_time_in_minutes": {"calendar": 100, "business": 90},
            "requester_wait_time_in_minutes": {"calendar": 60, "business": 30},
            "on_hold_time_in_minutes": {"calendar": 0, "business": 0},
        },
    ]


@pytest.fixture
def sample_organization_records() -> list[dict[str, Any]]:
    return [
        {
            "id": 7001,
            "name": "Acme Corp",
            "created_at": "2023-06-01T00:00:00Z",
            "updated_at": "2024-01-01T00:00:00Z",
            "domain_names": ["acme.test"],
            "details": "Key account",
            "notes": None,
            "tags": ["enterprise"],
        },
        {
            "id": 7002,
            "name": "Globex",
            "created_at": "2023-07-01T00:00:00Z",
            "updated_at": "2023-12-01T00:00:00Z",
            "domain_names": [],
            "tags": [],
        },
    ]


@pytest.fixture
def sample_datetime() -> datetime:
    """Fixed "now" for cursor tests."""
    return datetime(2024, 1, 18, 10, 0, 0, tzinfo=UTC)
