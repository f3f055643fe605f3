"""Shared test configuration and fixtures.

Uses a transactional rollback strategy per test for full isolation:
- Each test gets its own engine (in-memory SQLite by default) with the schema
  created fresh, and a session wrapped in a transaction that rolls back.
- Set TEST_DATABASE_URL to run the same suite against PostgreSQL.
"""

import os
import uuid
from collections.abc import AsyncGenerator
from decimal import Decimal

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, create_async_engine
from sqlalchemy.pool import StaticPool

from app.auth.jwt import create_access_token
from app.database import Base, get_db
from app.main import app
from app.models.package import Package
from app.models.subscription import Subscription
from app.models.user import User

_test_db_url = os.getenv("TEST_DATABASE_URL", "sqlite+aiosqlite:///:memory:")


def _make_engine():
    if _test_db_url.startswith("sqlite"):
        return create_async_engine(
            _test_db_url,
            echo=False,
            connect_args={"check_same_thread": False},
            poolclass=StaticPool,
        )
    return create_async_engine(_test_db_url, echo=False, pool_pre_ping=True)


# ---------------------------------------------------------------------------
# Per-test: fresh schema and transactional rollback for isolation
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def test_engine():
    """Create an engine with all tables, dropped again after the test."""
    engine = _make_engine()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def db_session(test_engine) -> AsyncGenerator[AsyncSession, None]:
    """Yield an async session wrapped in a transaction that always rolls back."""
    async with test_engine.connect() as connection:
        transaction = await connection.begin()
        session = AsyncSession(bind=connection, expire_on_commit=False)

        try:
            yield session
        finally:
            await session.close()
            await transaction.rollback()


@pytest_asyncio.fixture
async def client(db_session: AsyncSession) -> AsyncGenerator[AsyncClient, None]:
    """Provide an httpx AsyncClient wired to use the test DB session."""

    async def override_get_db() -> AsyncGenerator[AsyncSession, None]:
        yield db_session

    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac

    app.dependency_overrides.clear()


# ---------------------------------------------------------------------------
# Convenience fixtures: user, auth headers, package
# ---------------------------------------------------------------------------


@pytest_asyncio.fixture
async def user_factory(db_session: AsyncSession):
    """Return a coroutine that creates users directly in the DB."""

    async def _make(name: str = "Test User") -> User:
        unique = uuid.uuid4().hex[:8]
        user = User(email=f"user-{unique}@test.com", name=name, is_active=True)
        db_session.add(user)
        await db_session.flush()
        return user

    return _make


@pytest_asyncio.fixture
async def test_user(user_factory) -> User:
    """Create and return a test user directly in the DB."""
    return await user_factory()


@pytest_asyncio.fixture
async def auth_headers(test_user: User) -> dict[str, str]:
    """Return Authorization headers for the test user."""
    token = create_access_token({"sub": str(test_user.id)})
    return {"Authorization": f"Bearer {token}"}


@pytest_asyncio.fixture
async def test_package(db_session: AsyncSession) -> Package:
    """A monthly $29 'pro' package linked to a Stripe product."""
    package = Package(
        code="pro",
        name="Pro",
        stripe_product_id="prod_pro",
        stripe_price_id="price_pro_monthly",
        billing_cycle="monthly",
        amount=Decimal("29.00"),
        currency="usd",
    )
    db_session.add(package)
    await db_session.flush()
    return package


@pytest_asyncio.fixture
async def subscription_factory(db_session: AsyncSession, test_package: Package):
    """Return a coroutine that stores a subscription row for a user.

    The package is passed as an object so the relationship is loaded without
    a lazy load on the async session.
    """

    async def _make(user: User, stripe_subscription_id: str = "sub_001", **overrides) -> Subscription:
        values = {
            "stripe_customer_id": "cus_001",
            "stripe_price_id": "price_pro_monthly",
            "status": "active",
            "billing_cycle": "monthly",
            "amount": Decimal("29.00"),
            "currency": "usd",
            "cancel_at_period_end": False,
            "cards": [],
            "is_current": True,
        }
        values.update(overrides)
        subscription = Subscription(
            user_id=user.id,
            package=test_package,
            stripe_subscription_id=stripe_subscription_id,
            **values,
        )
        db_session.add(subscription)
        await db_session.flush()
        return subscription

    return _make
