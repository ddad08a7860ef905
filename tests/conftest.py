"""
Pytest configuration and shared fixtures.
"""

import asyncio
import os
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timedelta
from typing import Any

# Configure the environment BEFORE any imports that read settings
os.environ.setdefault("QUEUE_BACKEND", "memory")
os.environ.setdefault("OTEL_ENABLED", "false")
os.environ.setdefault("EMBEDDED_WORKERS", "false")
os.environ.setdefault("API_SECRET_KEY", "test-secret-key")

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient

from bulkqueue.api.auth import create_access_token
from bulkqueue.api.main import create_app
from bulkqueue.constants import QueueName
from bulkqueue.queue.manager import QueueManager
from bulkqueue.queue.store import MemoryQueueStore
from bulkqueue.queue.ttl import TTLPolicy
from bulkqueue.reaper.main import Reaper
from bulkqueue.types.job import JobResult
from bulkqueue.worker.main import WorkerPool

ORG_A = "org-a"
ORG_B = "org-b"


class FakeClock:
    """Controllable naive UTC clock."""

    def __init__(self, start: datetime | None = None):
        self.now = start or datetime(2025, 1, 1, 12, 0, 0)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


async def wait_for(predicate: Callable[[], Any], timeout: float = 5.0) -> None:
    """Poll an async predicate until it returns a truthy value."""
    deadline = asyncio.get_running_loop().time() + timeout
    while not await predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("Condition not met before timeout")
        await asyncio.sleep(0.01)


async def succeed(context) -> JobResult:
    """Handler that completes every job."""
    return JobResult(success=True, output={"processed": len(context.payload)})


@pytest.fixture
def wait_until() -> Callable[..., Any]:
    return wait_for


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def policy() -> TTLPolicy:
    """Default retention: 3 days, 1 minute, 5 minutes, hourly sweeps."""
    return TTLPolicy()


@pytest.fixture
def store() -> MemoryQueueStore:
    return MemoryQueueStore()


@pytest.fixture
def manager(store: MemoryQueueStore, policy: TTLPolicy, clock: FakeClock) -> QueueManager:
    return QueueManager(store, policy, clock=clock)


@pytest.fixture
def reaper(store: MemoryQueueStore, policy: TTLPolicy, clock: FakeClock) -> Reaper:
    return Reaper(store, policy, clock=clock)


@pytest_asyncio.fixture
async def make_pool(
    store: MemoryQueueStore,
    policy: TTLPolicy,
    clock: FakeClock,
) -> AsyncGenerator[Callable[..., WorkerPool]]:
    """Factory for worker pools with fast test timings. Pools are stopped on teardown."""
    pools: list[WorkerPool] = []

    def factory(handlers=None, **kwargs: Any) -> WorkerPool:
        options = {
            "concurrency": 2,
            "poll_interval": 0.01,
            "lease_seconds": 60,
            "heartbeat_interval": 0.05,
            "job_timeout": 5,
            "max_attempts": 3,
            "backoff_seconds": 0,
            "policy": policy,
            "clock": clock,
            "worker_id": "test-worker",
        }
        options.update(kwargs)
        pool = WorkerPool(store, handlers or {queue: succeed for queue in QueueName}, **options)
        pools.append(pool)
        return pool

    yield factory

    for pool in pools:
        await pool.stop()


@pytest.fixture
def sample_records() -> list[dict[str, Any]]:
    """Create a sample bulk upload payload."""
    return [
        {"name": "Acme Auto Repair", "phone": "+15550100"},
        {"name": "Bolt Garage", "phone": "+15550101"},
        {"name": "Crank & Co", "phone": "+15550102"},
    ]


@pytest_asyncio.fixture
async def app(store: MemoryQueueStore, policy: TTLPolicy) -> AsyncGenerator[FastAPI]:
    """Create a FastAPI app over the in-memory store, without embedded workers."""
    yield create_app(store=store, policy=policy, embedded_workers=False)


@pytest_asyncio.fixture
async def client(app: FastAPI) -> AsyncGenerator[AsyncClient]:
    """Create an async HTTP client for testing."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


def _headers(**claims: Any) -> dict[str, str]:
    return {"Authorization": f"Bearer {create_access_token(**claims)}"}


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Headers of a regular user of organization A."""
    return _headers(organization_id=ORG_A, user_id="user-a", role="user", email="a@example.com")


@pytest.fixture
def other_org_headers() -> dict[str, str]:
    """Headers of a user of organization B."""
    return _headers(organization_id=ORG_B, user_id="user-b", role="user")


@pytest.fixture
def admin_headers() -> dict[str, str]:
    """Headers of an admin of organization A."""
    return _headers(organization_id=ORG_A, user_id="admin-a", role="admin")
