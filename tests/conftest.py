"""Shared test fixtures - in-memory async SQLite engine, test client, data factories."""

import os

# Set env vars BEFORE importing app modules (config reads at import time)
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from scoreboard.api.deps import get_event_relay, get_leaderboard_locks  # noqa: E402
from scoreboard.core.database import get_db  # noqa: E402
from scoreboard.main import app  # noqa: E402
from scoreboard.models import Base  # noqa: E402
from scoreboard.services.events import EventRelay  # noqa: E402
from scoreboard.services.ranking import LeaderboardLocks  # noqa: E402

# One shared connection so every session sees the same in-memory database
test_engine = create_async_engine(
    "sqlite+aiosqlite:///:memory:",
    echo=False,
    poolclass=StaticPool,
    connect_args={"check_same_thread": False},
)
TestSession = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture(autouse=True)
async def setup_db():
    """Create all tables before each test, drop after."""
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture
async def db():
    async with TestSession() as session:
        yield session


@pytest.fixture
async def file_sessions(tmp_path):
    """Session maker over a file database, for tests that need several concurrent connections."""
    engine = create_async_engine(
        f"sqlite+aiosqlite:///{tmp_path / 'concurrency.db'}",
        connect_args={"timeout": 30},
    )

    # Take the write lock when the transaction starts so concurrent writers queue up
    @event.listens_for(engine.sync_engine, "connect")
    def _connect(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _begin(conn):
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


class RecordingSink:
    """EventSink that keeps every published event."""

    def __init__(self):
        self.events = []

    async def publish(self, event):
        self.events.append(event)

    def of_type(self, event_type: str) -> list:
        return [e for e in self.events if e.type == event_type]


class FailingSink:
    """EventSink whose transport is down."""

    def __init__(self, error: Exception):
        self.error = error
        self.attempts = 0

    async def publish(self, event):
        self.attempts += 1
        raise self.error


@pytest.fixture
def sink():
    return RecordingSink()


@pytest.fixture
def locks():
    """Fresh lock registry per test so locks never outlive their event loop."""
    return LeaderboardLocks()


@pytest.fixture
def service(db, sink, locks):
    from scoreboard.services.performance import PerformanceService
    return PerformanceService(db, relay=sink, locks=locks)


@pytest.fixture
def relay():
    return EventRelay(queue_size=10)


@pytest.fixture
async def client(relay):
    async def override_get_db():
        async with TestSession() as session:
            try:
                yield session
            except Exception:
                await session.rollback()
                raise

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_event_relay] = lambda: relay
    app.dependency_overrides[get_leaderboard_locks] = LeaderboardLocks

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as c:
        yield c

    app.dependency_overrides.clear()


# =============================================================================
# DATA FACTORIES
# =============================================================================

async def make_user(
    db: AsyncSession,
    email: str = "alex@example.com",
    first_name: str = "Alex",
    last_name: str = "Rivera",
    role: str = "employee",
    territory: str | None = None,
):
    from scoreboard.services.users import create_user
    return await create_user(
        db,
        email=email,
        first_name=first_name,
        last_name=last_name,
        role=role,
        territory=territory,
    )


async def make_leaderboard(
    db: AsyncSession,
    name: str = "Q3 Points",
    type: str = "employee",
    settings: dict | str | None = None,
    **kwargs,
):
    from scoreboard.services.leaderboards import LeaderboardService
    return await LeaderboardService(db).create_leaderboard(name=name, type=type, settings=settings, **kwargs)


async def make_achievement(
    db: AsyncSession,
    name: str = "1000 Points Milestone",
    criteria: dict | None = None,
    **kwargs,
):
    from scoreboard.services.achievements import AchievementEngine
    if criteria is None:
        criteria = {"metricType": "points", "totalRequired": 1000}
    return await AchievementEngine(db).create_achievement(name=name, criteria=criteria, **kwargs)
