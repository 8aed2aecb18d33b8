"""Test infrastructure: in-memory SQLite store, lifecycle manager and httpx client fixtures.

Every test gets a fresh in-memory database (aiosqlite + StaticPool) with the
schema created from the ORM metadata, so nothing leaks between tests.
"""

import os

os.environ.setdefault("JWT_SECRET", "test-secret")
os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("RATE_LIMIT_ENABLED", "false")

from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from civicwatch.core.security import Caller, make_token
from civicwatch.db.base import Base
from civicwatch.db.session import get_db
from civicwatch.main import app
from civicwatch.models import issue, issue_activity, upvote  # noqa: F401 register tables
from civicwatch.repositories.issues import IssueRepository
from civicwatch.services.lifecycle import IssueLifecycleManager, get_lifecycle
from civicwatch.services.notifications import ChangeFeed
from civicwatch.services.priority import ScoreWeights
from civicwatch.core.config import DEFAULT_CATEGORY_WEIGHTS

START = datetime(2025, 1, 6, 9, 0, tzinfo=timezone.utc)


class FakeClock:
    """Manually advanced clock for the lifecycle manager."""

    def __init__(self, start: datetime = START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Store
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    eng = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with eng.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield eng
    await eng.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, autoflush=False, expire_on_commit=False)


@pytest.fixture
def feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def store(session_factory, feed) -> IssueRepository:
    return IssueRepository(session_factory, feed)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def weights() -> ScoreWeights:
    return ScoreWeights(category_weights=dict(DEFAULT_CATEGORY_WEIGHTS))


@pytest.fixture
def lifecycle(store, weights, clock) -> IssueLifecycleManager:
    return IssueLifecycleManager(store, weights=weights, clock=clock)


# ---------------------------------------------------------------------------
# Callers
# ---------------------------------------------------------------------------
@pytest.fixture
def admin() -> Caller:
    return Caller(fingerprint="10.0.0.1", subject="moderator@city.test", is_admin=True)


@pytest.fixture
def citizen() -> Caller:
    return Caller(fingerprint="203.0.113.7")


@pytest.fixture
def admin_headers() -> dict:
    return {"Authorization": f"Bearer {make_token('moderator@city.test', 'admin')}"}


@pytest.fixture
def citizen_headers() -> dict:
    return {"Authorization": f"Bearer {make_token('citizen@city.test', 'citizen')}"}


# ---------------------------------------------------------------------------
# Reports
# ---------------------------------------------------------------------------
@pytest.fixture
def make_report():
    """Build a submit payload; keyword arguments override the defaults."""

    def _make(**overrides) -> dict:
        report = {
            "title": "Pothole on Main St",
            "description": "Deep hole in the right lane near the bus stop",
            "category": "Pothole",
            "latitude": 40.0,
            "longitude": -75.0,
            "location_name": "Main St",
        }
        report.update(overrides)
        return report

    return _make


# ---------------------------------------------------------------------------
# HTTP client
# ---------------------------------------------------------------------------
@pytest_asyncio.fixture
async def client(lifecycle, session_factory) -> AsyncGenerator[AsyncClient, None]:
    """FastAPI client wired to the per-test store and lifecycle."""

    async def _override_get_db() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as db:
            yield db

    app.dependency_overrides[get_db] = _override_get_db
    app.dependency_overrides[get_lifecycle] = lambda: lifecycle

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
