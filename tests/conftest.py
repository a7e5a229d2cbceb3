"""
Shared pytest configuration and fixtures.

The settings singleton and the SQLAlchemy engine are built at import time,
so the test environment is applied before anything from sarah_booking loads.
"""

import os
import sys
from datetime import datetime, timezone

import pytest
import pytest_asyncio

# Add the project root to Python path
sys.path.insert(0, os.path.join(os.path.dirname(__file__), '..'))

# Test database configuration
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

os.environ.update({
    "APP_ENV": "testing",
    "DATABASE_URL": TEST_DATABASE_URL,
    "ST_CLIENT_ID": "test_client",
    "ST_CLIENT_SECRET": "test_secret",
    "ST_TENANT_ID": "123456",
    "ST_APP_KEY": "test_app_key",
    "OPENAI_API_KEY": "test_key",
    "SLACK_WEBHOOK_URL": "",
    "SARAH_API_KEY": "",
    "CAMPAIGN_NUMBERS": "",
})

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402

from sarah_booking.core.business import LOCAL_TZ  # noqa: E402
from sarah_booking.db.base import init_db  # noqa: E402
from sarah_booking.services.campaigns import clear_campaign_cache  # noqa: E402
from sarah_booking.services.identity import caller_cache  # noqa: E402

from fakes import FakeServiceTitan  # noqa: E402

# Monday 2025-03-03 10:00 EST
MONDAY_MORNING_UTC = datetime(2025, 3, 3, 15, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def clear_lookup_caches():
    """Caller and campaign caches are process-wide; start every test empty."""
    caller_cache.clear()
    clear_campaign_cache()
    yield
    caller_cache.clear()
    clear_campaign_cache()


@pytest.fixture
def fake_st():
    return FakeServiceTitan(now=MONDAY_MORNING_UTC)


@pytest.fixture
def now_local(fake_st):
    """Eastern wall clock matching the fake platform's clock."""
    return fake_st.now.astimezone(LOCAL_TZ)


@pytest_asyncio.fixture
async def db_session():
    """Fresh in-memory ledger per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    await init_db(engine)
    session_factory = async_sessionmaker(engine, expire_on_commit=False, class_=AsyncSession)
    async with session_factory() as session:
        yield session
    await engine.dispose()


@pytest.fixture
def sam_payload():
    return {
        "first_name": "Sam",
        "phone": "9378843414",
        "street": "1 Main St",
        "city": "Dayton",
        "zip": "45402",
        "issue": "leaky faucet",
        "time_window": "morning",
        "day": "wednesday",
    }


# Pytest configuration hooks
def pytest_configure(config):
    """Configure pytest with custom markers"""
    config.addinivalue_line("markers", "smoke: Quick validation tests (< 30 seconds total)")
    config.addinivalue_line("markers", "essential: Core functionality tests (< 2 minutes total)")
    config.addinivalue_line("markers", "integration: Tests that cross the HTTP boundary")
    config.addinivalue_line("markers", "unit: Pure unit tests with no external dependencies")


def pytest_collection_modifyitems(config, items):
    """Run smoke tests first, integration last."""
    def test_priority(item):
        if item.get_closest_marker("smoke"):
            return 0
        elif item.get_closest_marker("integration"):
            return 2
        return 1

    items[:] = sorted(items, key=test_priority)
