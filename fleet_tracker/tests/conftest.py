"""
Centralized Test Configuration.
"""

import pytest
from datetime import datetime, timezone
from httpx import AsyncClient, ASGITransport
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession
from sqlalchemy.pool import StaticPool

from fleet_tracker.app.main import app
from fleet_tracker.app.db.session import get_db, get_session_factory, Base
from fleet_tracker.app.core.clock import FixedClock, get_clock
from fleet_tracker.app.services.broadcast import ConnectionManager, LocationBroadcaster, get_broadcaster
from fleet_tracker.tests.fakes import MockRedis

# Setup In-Memory Test Database
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

FROZEN_NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=timezone.utc)


def make_engine():
    return create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )


@pytest.fixture
async def db_engine():
    engine = make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    
    yield engine
    
    await engine.dispose()


@pytest.fixture
async def db_session(db_engine):
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session


@pytest.fixture
def frozen_clock():
    return FixedClock(FROZEN_NOW)


@pytest.fixture
def mock_redis():
    return MockRedis()


@pytest.fixture
def broadcaster(mock_redis):
    return LocationBroadcaster(
        ConnectionManager(max_connections=5),
        redis=mock_redis,
        channel="location-update",
        instance_id="test-instance",
    )


@pytest.fixture
def apply_overrides(db_engine, frozen_clock, broadcaster):
    """Point the app at the test database, clock and broadcaster."""
    session_factory = async_sessionmaker(db_engine, class_=AsyncSession, expire_on_commit=False)
    
    async def override_get_db():
        async with session_factory() as session:
            yield session
    
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_clock] = lambda: frozen_clock
    app.dependency_overrides[get_broadcaster] = lambda: broadcaster
    yield
    
    app.dependency_overrides = {}


@pytest.fixture
async def client(apply_overrides):
    """Async client for testing."""
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac
