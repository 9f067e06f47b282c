"""Shared test configuration and fixtures.

Each test gets a fresh in-memory SQLite database (aiosqlite + StaticPool), so
jobs can commit per row exactly as they do in production without leaking state
between tests. SAVEPOINT support is switched on for aiosqlite below.
"""

import uuid
from collections.abc import AsyncGenerator
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from jose import jwt
from sqlalchemy import event
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from taskmaster.billing.plans import ensure_default_plans
from taskmaster.config import settings
from taskmaster.database import Base, get_db, utcnow
from taskmaster.main import app
from taskmaster.models.plan import Plan
from taskmaster.models.profile import ROLE_ADMIN, ROLE_USER, Profile
from taskmaster.models.subscription import STATUS_TRIALING, Subscription
from taskmaster.notifications.dispatcher import DispatchResult, NotificationDispatcher, get_dispatcher

CRON_SECRET = "test-cron-secret"
SERVICE_ROLE_KEY = "test-service-role-key"


@pytest.fixture(autouse=True)
def isolated_settings(monkeypatch):
    """Never talk to Stripe or Resend from tests; fix the job trigger secrets."""
    monkeypatch.setattr(settings, "stripe_secret_key", "")
    monkeypatch.setattr(settings, "resend_api_key", "")
    monkeypatch.setattr(settings, "cron_secret", CRON_SECRET)
    monkeypatch.setattr(settings, "service_role_key", SERVICE_ROLE_KEY)


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        echo=False,
    )

    # pysqlite's own transaction handling breaks SAVEPOINT; take it over
    @event.listens_for(engine.sync_engine, "connect")
    def _disable_pysqlite_transactions(dbapi_connection, connection_record):
        dbapi_connection.isolation_level = None

    @event.listens_for(engine.sync_engine, "begin")
    def _emit_begin(conn):
        conn.exec_driver_sql("BEGIN")

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    session_factory = async_sessionmaker(test_engine, class_=AsyncSession, expire_on_commit=False)
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
def dispatcher() -> AsyncMock:
    """A dispatcher whose every email succeeds."""
    mock = AsyncMock(spec=NotificationDispatcher)
    mock.notify.return_value = DispatchResult(success=True)
    return mock


@pytest_asyncio.fixture
async def client(db_session: AsyncSession, dispatcher: AsyncMock) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to the test DB session and mock dispatcher."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_dispatcher] = lambda: dispatcher

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Catalog, profiles, subscriptions
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def plans(db_session: AsyncSession) -> dict[str, Plan]:
    """The default free/pro/business catalog, with Stripe prices on the paid tiers."""
    created = {plan.name: plan for plan in await ensure_default_plans(db_session)}
    created["pro"].stripe_price_monthly = "price_pro_monthly"
    created["business"].stripe_price_monthly = "price_business_monthly"
    await db_session.commit()
    return created


@pytest.fixture
def make_profile(db_session: AsyncSession):
    """Factory for profiles. Returns an async callable."""

    async def _make(
        *,
        plan: Plan | None = None,
        role: str = ROLE_USER,
        locale: str = "en",
        stripe_customer_id: str | None = None,
        full_name: str | None = "Test User",
    ) -> Profile:
        unique = uuid.uuid4().hex[:8]
        profile = Profile(
            email=f"user-{unique}@test.com",
            full_name=full_name,
            role=role,
            locale=locale,
            is_active=True,
            plan_id=plan.id if plan else None,
            stripe_customer_id=stripe_customer_id,
        )
        db_session.add(profile)
        await db_session.commit()
        return profile

    return _make


@pytest.fixture
def make_subscription(db_session: AsyncSession):
    """Factory for subscriptions. ``ends_in`` is relative to now (negative = elapsed)."""

    async def _make(
        profile: Profile,
        plan: Plan,
        *,
        status: str = STATUS_TRIALING,
        ends_in: timedelta | None = timedelta(days=-1),
        period_end: datetime | None = None,
        stripe_customer_id: str | None = None,
        stripe_subscription_id: str | None = None,
        cancel_at_period_end: bool = False,
        last_reminder_sent_at: datetime | None = None,
    ) -> Subscription:
        now = utcnow()
        if period_end is None and ends_in is not None:
            period_end = now + ends_in
        subscription = Subscription(
            user_id=profile.id,
            plan_id=plan.id,
            status=status,
            current_period_start=now - timedelta(days=30),
            current_period_end=period_end,
            stripe_customer_id=stripe_customer_id,
            stripe_subscription_id=stripe_subscription_id,
            cancel_at_period_end=cancel_at_period_end,
            last_reminder_sent_at=last_reminder_sent_at,
        )
        db_session.add(subscription)
        await db_session.commit()
        return subscription

    return _make


# ---------------------------------------------------------------------------
# Auth helpers
# ---------------------------------------------------------------------------


@pytest.fixture
def mint_token():
    """Sign tokens the way the platform auth service issues them."""

    def _mint(sub: str, *, expires_in: timedelta = timedelta(minutes=30), token_type: str = "access") -> str:
        now = datetime.now(timezone.utc)
        claims = {"sub": sub, "type": token_type, "iat": now, "exp": now + expires_in}
        return jwt.encode(claims, settings.jwt_secret_key, algorithm=settings.jwt_algorithm)

    return _mint


@pytest.fixture
def bearer_for(mint_token):
    """Build Authorization headers carrying an access token for a profile."""

    def _headers(profile: Profile) -> dict[str, str]:
        token = mint_token(str(profile.id))
        return {"Authorization": f"Bearer {token}"}

    return _headers


@pytest_asyncio.fixture
async def user(make_profile, plans) -> Profile:
    return await make_profile(plan=plans["free"])


@pytest_asyncio.fixture
async def admin(make_profile, plans) -> Profile:
    return await make_profile(plan=plans["free"], role=ROLE_ADMIN, full_name="Admin")


@pytest.fixture
def cron_headers() -> dict[str, str]:
    return {"x-cron-secret": CRON_SECRET}
