"""
Shared test fixtures.

These replace real infrastructure with lightweight in-memory alternatives:
- PostgreSQL → SQLite in memory (aiosqlite for the API, StaticPool for the
  sync dispatcher so every session and thread sees the same database)
- Redis → fakeredis (pure Python Redis mock)
- Provider → SimulatedProvisioningClient with scripted responses
- Wall clock → FakeClock, so pauses and retries can be fast-forwarded
- HTTP server → httpx.AsyncClient with ASGI transport (no network)
"""

from datetime import datetime, timedelta, timezone

import fakeredis
import pytest
import pytest_asyncio
from fakeredis.aioredis import FakeRedis
from httpx import AsyncClient, ASGITransport
from sqlalchemy import create_engine
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

import models.job  # noqa: F401  registers both tables
from models.base import Base
from models.batch import TrackingBatch
from models.enums import ACTIVE_JOB_STATUSES
from models.job import TrackingQueueJob
from api.main import create_app
from api.dependencies import get_cron_secret, get_db, get_dispatcher, get_redis
from jobs.simulated import SimulatedProvisioningClient
from realtime.broadcaster import Broadcaster
from scheduler.dispatcher import build_dispatcher
from store.jobs import create_batch
from worker.retry import RetryPolicy

# SQLite in-memory database, created fresh for each test
TEST_DB_URL = "sqlite+aiosqlite:///:memory:"

CRON_SECRET = "test-cron-secret"
T0 = datetime(2026, 3, 2, 9, 0, 0, tzinfo=timezone.utc)


class FakeClock:
    """Controllable UTC clock passed as `now=` to the queue components."""

    def __init__(self, start: datetime = T0):
        self.current = start

    def now(self) -> datetime:
        return self.current

    def advance(self, seconds: float) -> None:
        self.current += timedelta(seconds=seconds)


class RecordingBroadcaster(Broadcaster):
    """Real broadcaster that also keeps every event it publishes."""

    def __init__(self, redis_client):
        super().__init__(redis_client)
        self.events: list[tuple[str, str, dict]] = []

    def _publish(self, channel, event, event_type, data):
        self.events.append((channel, getattr(event_type, "value", event_type), data))
        return super()._publish(channel, event, event_type, data)

    def types(self, channel: str | None = None) -> list[str]:
        return [t for c, t, _ in self.events if channel is None or c == channel]


def aware(dt: datetime | None) -> datetime | None:
    """SQLite drops tzinfo on the way back; every stored time is UTC."""
    if dt is None or dt.tzinfo is not None:
        return dt
    return dt.replace(tzinfo=timezone.utc)


def make_batch(session_factory, n_jobs=1, destinations=("GA4",), max_attempts=None, **batch_kwargs):
    """Insert a batch with n GA4 jobs (trk-1..trk-n). Returns (batch_id, [job_ids])."""
    trackings = [
        {
            "tracking_id": f"trk-{i + 1}",
            "payload": {"name": f"Tracking {i + 1}", "destinations": list(destinations)},
        }
        for i in range(n_jobs)
    ]
    session = session_factory()
    try:
        batch = create_batch(
            session,
            customer_id=batch_kwargs.pop("customer_id", "cust-1"),
            tenant_id=batch_kwargs.pop("tenant_id", "tenant-1"),
            user_id=batch_kwargs.pop("user_id", "user-1"),
            trackings=trackings,
            max_attempts=max_attempts,
            **batch_kwargs,
        )
        session.commit()
        job_ids = [j.id for j in sorted(batch.jobs, key=lambda j: j.created_at)]
        return batch.id, job_ids
    finally:
        session.close()


def load_batch(session_factory, batch_id) -> TrackingBatch:
    session = session_factory()
    try:
        return session.get(TrackingBatch, batch_id)
    finally:
        session.close()


def load_job(session_factory, job_id) -> TrackingQueueJob:
    session = session_factory()
    try:
        return session.get(TrackingQueueJob, job_id)
    finally:
        session.close()


def assert_counters_consistent(session_factory, batch_id) -> None:
    """completed + failed + active jobs == total_jobs"""
    session = session_factory()
    try:
        batch = session.get(TrackingBatch, batch_id)
        active = (
            session.query(TrackingQueueJob)
            .filter(
                TrackingQueueJob.batch_id == batch_id,
                TrackingQueueJob.status.in_(ACTIVE_JOB_STATUSES),
            )
            .count()
        )
        assert batch.completed + batch.failed + active == batch.total_jobs
    finally:
        session.close()


# ── Sync side (dispatcher, worker) ──────────────────────────────

@pytest.fixture
def session_factory():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(engine)
    yield sessionmaker(engine, expire_on_commit=False)
    engine.dispose()


@pytest.fixture
def redis_server():
    return fakeredis.FakeServer()


@pytest.fixture
def sync_redis(redis_server):
    return fakeredis.FakeRedis(server=redis_server)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def api():
    return SimulatedProvisioningClient()


@pytest.fixture
def broadcaster(sync_redis):
    return RecordingBroadcaster(sync_redis)


@pytest.fixture
def retry_policy():
    # no jitter so retry times are exact
    return RetryPolicy(max_attempts=3, base_delay=15.0, max_delay=300.0, jitter=0.0)


@pytest.fixture
def sleeps():
    return []


@pytest.fixture
def dispatcher(session_factory, sync_redis, api, broadcaster, clock, retry_policy, sleeps):
    return build_dispatcher(
        session_factory,
        sync_redis,
        api,
        broadcaster=broadcaster,
        retry_policy=retry_policy,
        now=clock.now,
        job_delay=0,
        sleep=sleeps.append,
    )


# ── Async side (API) ────────────────────────────────────────────

@pytest_asyncio.fixture
async def async_engine():
    """Create a fresh in-memory database for each test."""
    engine = create_async_engine(TEST_DB_URL, echo=False)
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def async_session(async_engine):
    """Create a database session bound to the test engine."""
    factory = async_sessionmaker(async_engine, expire_on_commit=False)
    async with factory() as session:
        yield session


@pytest_asyncio.fixture
async def fake_redis():
    """Create a fake Redis instance (in-memory, no real Redis needed)."""
    r = FakeRedis()
    yield r
    await r.flushall()


@pytest_asyncio.fixture
async def client(async_session, fake_redis, dispatcher):
    """
    Test HTTP client that talks directly to the FastAPI app.

    dependency_overrides swap the real database, Redis, dispatcher and cron
    secret for the test versions. ASGITransport means requests go directly
    to the app in-process, no HTTP server involved.
    """
    app = create_app()

    async def override_get_db():
        yield async_session

    async def override_get_redis():
        return fake_redis

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_redis] = override_get_redis
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher
    app.dependency_overrides[get_cron_secret] = lambda: CRON_SECRET

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        c.app = app
        yield c
