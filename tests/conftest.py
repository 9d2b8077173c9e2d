"""Pytest configuration and fixtures for the storefront test suite.

Provides:
- A throwaway SQLite database (aiosqlite) per test
- A fake Resend API behind ``httpx.MockTransport``
- Real services wired the way the application lifespan wires them
- Mock authentication (JWT bypass)
- Disabled app-wide rate limiting
- Purchase / cart / discount factories
"""

import itertools
import json
from collections.abc import AsyncGenerator, Callable
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import httpx
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine

from storefront.core.auth import get_current_user
from storefront.core.config import Settings
from storefront.core.deps import (
    get_cart_rate_limiter,
    get_discount_engine,
    get_record_store,
    get_reminder_scheduler,
    get_review_service,
)
from storefront.core.rate_limit import ClientRateLimiter, limiter
from storefront.main import app
from storefront.models.base import Base
from storefront.models.purchase import Purchase
from storefront.services.discount_service import DiscountEngine
from storefront.services.email_service import EmailService
from storefront.services.record_store import RecordStore
from storefront.services.reminder_service import ReminderScheduler
from storefront.services.review_service import ReviewService

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------
TEST_USER_ID = "test-user-id"
TEST_USER_EMAIL = "test@example.com"
FROZEN_NOW = datetime(2026, 3, 1, 12, 0, tzinfo=UTC)

# ---------------------------------------------------------------------------
# Disable app-wide rate limiting globally for tests
# ---------------------------------------------------------------------------
limiter.enabled = False


# ---------------------------------------------------------------------------
# Settings
# ---------------------------------------------------------------------------


@pytest.fixture
def test_settings() -> Settings:
    """Settings isolated from any local .env file."""
    return Settings(
        _env_file=None,  # type: ignore[call-arg]
        environment="development",
        resend_api_key="re_test_key",
        email_from="My Umrah eSIM <noreply@shop.example.com>",
        support_email="support@shop.example.com",
        base_url="https://shop.example.com",
        reminder1_delay_minutes=120,
        reminder2_delay_minutes=1440,
        review_discount_percent=5,
        review_discount_ttl_days=30,
        discount_code_max_attempts=5,
        discount_max_percent=100,
    )


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine, None]:
    """Fresh SQLite database file with all tables, one per test.

    Each session gets its own connection and writers take the lock up front
    (BEGIN IMMEDIATE), so concurrent guarded updates serialize the way they
    do on PostgreSQL instead of sharing one uncommitted transaction.
    """
    test_engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")

    @event.listens_for(test_engine.sync_engine, "connect")
    def _disable_driver_transactions(dbapi_connection: Any, _record: Any) -> None:
        dbapi_connection.isolation_level = None

    @event.listens_for(test_engine.sync_engine, "begin")
    def _begin_immediate(conn: Any) -> None:
        conn.exec_driver_sql("BEGIN IMMEDIATE")

    async with test_engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield test_engine
    await test_engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def record_store(session_factory: async_sessionmaker[AsyncSession]) -> RecordStore:
    return RecordStore(session_factory)


# ---------------------------------------------------------------------------
# Fake Resend
# ---------------------------------------------------------------------------


class FakeResend:
    """In-process stand-in for the Resend REST API.

    ``fail_sends`` holds 1-based send attempt numbers that should fail with a
    provider error; ``fail_cancels`` makes every cancel call fail.
    """

    def __init__(self) -> None:
        self.sent: list[dict[str, Any]] = []
        self.cancelled: list[str] = []
        self.requests: list[httpx.Request] = []
        self.fail_sends: set[int] = set()
        self.fail_cancels = False
        self._attempts = 0
        self._ids = itertools.count(1)

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path

        if request.method == "POST" and path == "/emails":
            self._attempts += 1
            if self._attempts in self.fail_sends:
                return httpx.Response(500, json={"message": "internal error"})
            message_id = f"em_{next(self._ids)}"
            self.sent.append({"id": message_id, **json.loads(request.content)})
            return httpx.Response(200, json={"id": message_id})

        if request.method == "POST" and path.startswith("/emails/") and path.endswith("/cancel"):
            message_id = path.split("/")[2]
            if self.fail_cancels:
                return httpx.Response(
                    422,
                    json={"name": "validation_error", "message": "Email already sent"},
                )
            self.cancelled.append(message_id)
            return httpx.Response(200, json={"object": "email", "id": message_id})

        return httpx.Response(404, json={"message": "not found"})


@pytest.fixture
def resend() -> FakeResend:
    return FakeResend()


@pytest_asyncio.fixture
async def http_client(resend: FakeResend) -> AsyncGenerator[httpx.AsyncClient, None]:
    async with httpx.AsyncClient(transport=httpx.MockTransport(resend.handler)) as client:
        yield client


@pytest.fixture
def notifier(http_client: httpx.AsyncClient, test_settings: Settings) -> EmailService:
    return EmailService(http_client, test_settings)


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------


@pytest.fixture
def discount_engine(record_store: RecordStore, test_settings: Settings) -> DiscountEngine:
    return DiscountEngine(record_store, test_settings)


@pytest.fixture
def scheduler(
    record_store: RecordStore, notifier: EmailService, test_settings: Settings
) -> ReminderScheduler:
    return ReminderScheduler(
        record_store,
        notifier,
        reminder1_delay=timedelta(minutes=test_settings.reminder1_delay_minutes),
        reminder2_delay=timedelta(minutes=test_settings.reminder2_delay_minutes),
        base_url=test_settings.base_url,
        clock=lambda: FROZEN_NOW,
    )


@pytest.fixture
def review_service(
    record_store: RecordStore,
    discount_engine: DiscountEngine,
    notifier: EmailService,
    test_settings: Settings,
) -> ReviewService:
    return ReviewService(record_store, discount_engine, notifier, test_settings)


@pytest.fixture
def cart_rate_limiter() -> ClientRateLimiter:
    """Generous limiter; individual tests swap in a tight one."""
    return ClientRateLimiter(1000, 60)


# ---------------------------------------------------------------------------
# Auth mock
# ---------------------------------------------------------------------------


@pytest.fixture
def auth_user(request: pytest.FixtureRequest) -> dict[str, Any]:
    """Return the authenticated test user payload (mimics decoded JWT).

    Tests may parametrize this fixture indirectly to supply other claims.
    """
    return getattr(
        request,
        "param",
        {
            "sub": TEST_USER_ID,
            "email": TEST_USER_EMAIL,
        },
    )


# ---------------------------------------------------------------------------
# Clients
# ---------------------------------------------------------------------------


def _override_services(
    record_store: RecordStore,
    discount_engine: DiscountEngine,
    scheduler: ReminderScheduler,
    review_service: ReviewService,
    cart_rate_limiter: ClientRateLimiter,
) -> None:
    app.dependency_overrides[get_record_store] = lambda: record_store
    app.dependency_overrides[get_discount_engine] = lambda: discount_engine
    app.dependency_overrides[get_reminder_scheduler] = lambda: scheduler
    app.dependency_overrides[get_review_service] = lambda: review_service
    app.dependency_overrides[get_cart_rate_limiter] = lambda: cart_rate_limiter


@pytest_asyncio.fixture
async def client(
    record_store: RecordStore,
    discount_engine: DiscountEngine,
    scheduler: ReminderScheduler,
    review_service: ReviewService,
    cart_rate_limiter: ClientRateLimiter,
    auth_user: dict[str, Any],
) -> AsyncGenerator[AsyncClient, None]:
    """Authenticated async test client with all dependencies overridden."""
    _override_services(record_store, discount_engine, scheduler, review_service, cart_rate_limiter)

    async def _override_user() -> dict[str, Any]:
        return auth_user

    app.dependency_overrides[get_current_user] = _override_user

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def unauthed_client(
    record_store: RecordStore,
    discount_engine: DiscountEngine,
    scheduler: ReminderScheduler,
    review_service: ReviewService,
    cart_rate_limiter: ClientRateLimiter,
) -> AsyncGenerator[AsyncClient, None]:
    """Async test client with real services but auth NOT overridden."""
    _override_services(record_store, discount_engine, scheduler, review_service, cart_rate_limiter)

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def plain_client() -> AsyncGenerator[AsyncClient, None]:
    """Minimal async test client with NO dependency overrides."""
    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as ac:
        yield ac


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------


@pytest.fixture
def purchase_factory(
    session_factory: async_sessionmaker[AsyncSession],
) -> Callable[..., Any]:
    """Factory that records a completed purchase."""

    async def _create(
        *,
        transaction_id: str = "txn_1001",
        customer_email: str = TEST_USER_EMAIL,
        customer_name: str | None = "Aisha",
    ) -> Purchase:
        purchase = Purchase(
            transaction_id=transaction_id,
            customer_email=customer_email,
            customer_name=customer_name,
        )
        async with session_factory() as session:
            session.add(purchase)
            await session.commit()
        return purchase

    return _create


@pytest.fixture
def cart_items() -> list[dict[str, Any]]:
    """Two cart lines in the camelCase shape the storefront posts."""
    return [
        {"offerId": "sa-10gb-30d", "name": "Saudi 10GB", "priceLabel": "$19.00", "quantity": 2},
        {"offerId": "umrah-5gb", "name": "Umrah 5GB", "priceLabel": "$9.00", "quantity": 1},
    ]
