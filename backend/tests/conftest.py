"""Pytest configuration and shared fixtures.

This module provides centralized test fixtures for:
- In-memory change stores with hourly boundaries
- PostgreSQL test database engine and change store
- HTTP client for API testing
"""

import os
from datetime import datetime, timedelta, timezone

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from changefeed.config import settings
from changefeed.database import Base
from changefeed.main import app
from changefeed.repositories.memory import InMemoryChangeStore
from changefeed.repositories.resource_change import SqlChangeStore, get_change_store
from changefeed.utils.partitions import floor_to_hour, utc_now

# Fixed clock used by most tests: 2026-10-18 12:30 UTC
NOW = datetime(2026, 10, 18, 12, 30, tzinfo=timezone.utc)


def hour(h: int, minute: int = 0) -> datetime:
    """Timestamp on the test day (2026-10-18) in UTC; h may exceed 23."""
    return datetime(2026, 10, 18, tzinfo=timezone.utc) + timedelta(hours=h, minutes=minute)


# =============================================================================
# In-memory Store Fixtures
# =============================================================================


@pytest.fixture
def memory_store() -> InMemoryChangeStore:
    """Store with hourly boundaries from 08:00 to 14:00 on the test day."""
    return InMemoryChangeStore(boundaries=[hour(h) for h in range(8, 15)])


@pytest.fixture
def empty_store() -> InMemoryChangeStore:
    """Store without any partition boundaries."""
    return InMemoryChangeStore()


# =============================================================================
# HTTP Client Fixtures
# =============================================================================


@pytest.fixture
def live_store() -> InMemoryChangeStore:
    """In-memory store with boundaries around the real clock, for API tests."""
    current = floor_to_hour(utc_now())
    return InMemoryChangeStore(boundaries=[current - timedelta(hours=1), current])


@pytest_asyncio.fixture
async def client(live_store):
    """Async test client for the FastAPI app backed by an in-memory store."""
    app.dependency_overrides[get_change_store] = lambda: live_store

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.pop(get_change_store, None)


@pytest.fixture
def auth_headers() -> dict[str, str]:
    """Headers with valid API key for authenticated requests."""
    return {"X-API-Key": settings.api_key}


# =============================================================================
# Database Fixtures
# =============================================================================


def database_test_url() -> str:
    """DATABASE_TEST_URL, or the configured database URL with a _test database."""
    db_url = os.environ.get("DATABASE_TEST_URL")
    if db_url:
        return db_url
    base_url = settings.database_url
    if base_url.endswith("/fhir_changefeed"):
        return base_url + "_test"
    return base_url.rsplit("/", 1)[0] + "/fhir_changefeed_test"


@pytest_asyncio.fixture
async def test_engine():
    """Create test database engine with automatic schema management.

    Creates all tables before tests, drops them after. Uses DATABASE_TEST_URL
    env var if set, otherwise derives from settings. Skips when PostgreSQL is
    not reachable.
    """
    engine = create_async_engine(database_test_url(), echo=False)

    try:
        async with engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
            await conn.run_sync(Base.metadata.create_all)
    except Exception as e:
        await engine.dispose()
        pytest.skip(f"PostgreSQL test database not available: {e}")

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)

    await engine.dispose()


@pytest.fixture
def test_session_maker(test_engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        test_engine,
        class_=AsyncSession,
        expire_on_commit=False,
    )


@pytest.fixture
def sql_store(test_session_maker) -> SqlChangeStore:
    """PostgreSQL change store on the test database."""
    return SqlChangeStore(test_session_maker, read_isolation="REPEATABLE READ")
