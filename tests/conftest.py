"""Shared test fixtures — single test DB for all test modules.

All sessions share one SQLite connection, so a test must close any session
it opened before it sends a request through the client.
"""
from __future__ import annotations

from contextlib import asynccontextmanager
from unittest.mock import patch

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from src.db.tables import Base
from src.db.engine import enable_sqlite_savepoints, get_session
from tests.helpers import ADMIN_KEY, JWT_SECRET, PRODUCT_MAP, WEBHOOK_SECRET

# Use a shared in-memory DB with check_same_thread=False and StaticPool
# This ensures all connections see the same in-memory database.
from sqlalchemy.pool import StaticPool

TEST_DB_URL = "sqlite+aiosqlite:///file:test?mode=memory&cache=shared&uri=true"

test_engine = create_async_engine(
    TEST_DB_URL,
    echo=False,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
enable_sqlite_savepoints(test_engine)
TestSession = async_sessionmaker(test_engine, expire_on_commit=False, class_=AsyncSession)


async def override_get_session():
    async with TestSession() as session:
        yield session


# Import app and override BEFORE any test module imports app
from src.api.main import app  # noqa: E402

app.dependency_overrides[get_session] = override_get_session

import src.db.engine as _engine_mod  # noqa: E402
_engine_mod.async_session = TestSession
_engine_mod.engine = test_engine


@asynccontextmanager
async def get_test_session():
    """Context manager for seeding and inspecting data in tests."""
    async with TestSession() as session:
        yield session


@pytest_asyncio.fixture(autouse=True)
async def setup_db():
    """Create tables before each test, drop after."""
    import src.db.user_tables  # noqa: F401
    import src.db.subscription_tables  # noqa: F401
    from src.middleware.metrics import metrics

    metrics.reset()
    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)


@pytest.fixture(autouse=True)
def billing_settings():
    """Hardened webhook mode with a known secret and product map."""
    from config.settings import settings
    with patch.object(settings, "WEBHOOK_SECRET", WEBHOOK_SECRET), \
         patch.object(settings, "WEBHOOK_ENFORCE_SIGNATURE", True), \
         patch.object(settings, "PRODUCT_PLAN_MAP", dict(PRODUCT_MAP)), \
         patch.object(settings, "AUTH_JWT_SECRET", JWT_SECRET), \
         patch.object(settings, "ADMIN_API_KEY", ADMIN_KEY):
        yield settings


@pytest_asyncio.fixture
async def session():
    async with TestSession() as s:
        yield s


@pytest_asyncio.fixture
async def client():
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
