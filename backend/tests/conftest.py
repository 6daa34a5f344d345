"""
Test configuration and fixtures for Subscribe & Save.

Provides shared fixtures for unit and integration tests: a frozen business
clock, an in-memory database and the FastAPI app.
"""

import os

# Must be set before subscribe_save.config.settings is first imported
os.environ.setdefault("ENVIRONMENT", "testing")
os.environ.setdefault("SHOPIFY_API_KEY", "test-api-key")
os.environ.setdefault("SHOPIFY_API_SECRET", "test-shopify-secret")
os.environ.setdefault("SESSION_TOKEN_SECRET", "test-session-secret")
os.environ.setdefault("CRON_SECRET", "test-cron-secret")
os.environ.setdefault("SHOP_TIMEZONE", "America/Los_Angeles")

from datetime import date, datetime, timezone
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncEngine, create_async_engine
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel

import subscribe_save.infrastructure.db.models  # noqa: F401  (registers tables)
from subscribe_save.config.settings import Settings
from subscribe_save.domain.calendar import BusinessClock
from subscribe_save.domain.subscription import (
    AuditEntry,
    Frequency,
    Subscription,
    SubscriptionSource,
    SubscriptionStatus,
)
from subscribe_save.infrastructure.db.database import (
    create_session_factory,
    get_session_context,
)
from subscribe_save.infrastructure.db.repositories.subscription_repository import (
    SubscriptionRepository,
)
from subscribe_save.infrastructure.integrations.collaborators import SideEffectDispatcher


SHOP = "test-shop.myshopify.com"
CUSTOMER_EMAIL = "jane@example.com"

# Tuesday 2026-01-13, 10:00 in Los Angeles
DEFAULT_NOW = datetime(2026, 1, 13, 18, 0, tzinfo=timezone.utc)


class MutableNow:
    """Callable wall clock that tests can move."""

    def __init__(self, instant: datetime):
        self.instant = instant

    def __call__(self) -> datetime:
        return self.instant

    def set(self, instant: datetime) -> None:
        self.instant = instant


# =============================================================================
# Clock / Settings Fixtures
# =============================================================================

@pytest.fixture
def now() -> MutableNow:
    return MutableNow(DEFAULT_NOW)


@pytest.fixture
def clock(now) -> BusinessClock:
    """Business clock in America/Los_Angeles driven by the `now` fixture."""
    return BusinessClock("America/Los_Angeles", now_provider=now)


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        shop_timezone="America/Los_Angeles",
        default_billing_lead_hours=85,
        max_billing_failures=3,
        dedup_window_seconds=300,
    )


@pytest.fixture
def dispatcher() -> MagicMock:
    """Dispatcher double recording the events handed to it."""
    mock = MagicMock(spec=SideEffectDispatcher)
    mock.dispatch = AsyncMock()
    return mock


# =============================================================================
# Database Fixtures
# =============================================================================

@pytest.fixture
async def engine() -> AsyncGenerator[AsyncEngine, None]:
    """In-memory SQLite engine shared by every session in a test."""
    engine = create_async_engine(
        "sqlite+aiosqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(SQLModel.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return create_session_factory(engine)


@pytest.fixture
def count_rows(session_factory):
    """Async helper returning the number of rows in a table model."""
    async def _count(model) -> int:
        async with get_session_context(session_factory) as session:
            result = await session.execute(select(func.count()).select_from(model))
            return result.scalar_one()
    return _count


@pytest.fixture
def make_subscription(now):
    """Factory for an ACTIVE weekly Wednesday subscription."""
    def _make(**overrides) -> Subscription:
        values = dict(
            shop=SHOP,
            external_contract_id="gid://shopify/SubscriptionContract/1",
            source=SubscriptionSource.CONTRACT,
            customer_name="Jane Doe",
            customer_email=CUSTOMER_EMAIL,
            customer_phone="+15555550100",
            preferred_day=3,
            preferred_time_slot="12:00 PM - 2:00 PM",
            preferred_time_slot_start="12:00",
            frequency=Frequency.WEEKLY,
            discount_percent=10.0,
            billing_lead_hours=85,
            next_pickup_date=date(2026, 1, 14),
            next_billing_date=datetime(2026, 1, 11, 7, 0, tzinfo=timezone.utc),
            status=SubscriptionStatus.ACTIVE,
            admin_notes=[AuditEntry(at=now(), actor="system", message="Created for test")],
            created_at=now(),
            updated_at=now(),
        )
        values.update(overrides)
        return Subscription(**values)
    return _make


@pytest.fixture
def seed(session_factory):
    """Async helper persisting a subscription and returning the stored copy."""
    async def _seed(subscription: Subscription) -> Subscription:
        async with get_session_context(session_factory) as session:
            return await SubscriptionRepository(session).add(subscription)
    return _seed


@pytest.fixture
def load(session_factory):
    """Async helper reading a subscription back from the database."""
    async def _load(subscription_id) -> Subscription:
        async with get_session_context(session_factory) as session:
            return await SubscriptionRepository(session).get(subscription_id)
    return _load


# =============================================================================
# App Fixtures
# =============================================================================

@pytest.fixture
def app():
    """Get the FastAPI application."""
    from subscribe_save.main import app
    yield app
    app.dependency_overrides.clear()


@pytest.fixture
def client(app):
    """Get synchronous test client (lifespan not started, no database)."""
    return TestClient(app)
