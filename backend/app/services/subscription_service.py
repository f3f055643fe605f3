"""Subscription service — persistence and queries for billing subscriptions."""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any

from sqlalchemy import func, or_, select
from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.stripe_objects import LIVE_STATUSES
from app.models.package import Package
from app.models.subscription import Subscription, SubscriptionTransaction
from app.models.user import User

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    """Current time as naive UTC, matching the DB columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def dialect_insert(db: AsyncSession):
    """Return the dialect-specific ``insert`` that supports ON CONFLICT."""
    if db.get_bind().dialect.name == "postgresql":
        return postgresql.insert
    return sqlite.insert


# ---------------------------------------------------------------------------
# Lookups
# ---------------------------------------------------------------------------


async def get_current_subscription(db: AsyncSession, user_id: uuid.UUID) -> Subscription | None:
    """Return the user's current subscription (at most one exists)."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.is_current.is_(True),
        )
    )
    return result.scalar_one_or_none()


async def get_subscription_for_user(
    db: AsyncSession, user_id: uuid.UUID, subscription_id: uuid.UUID
) -> Subscription | None:
    """Look up one of the user's subscriptions by its local id."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.id == subscription_id,
            Subscription.user_id == user_id,
        )
    )
    return result.scalar_one_or_none()


async def get_subscription_by_stripe_subscription(
    db: AsyncSession, stripe_subscription_id: str
) -> Subscription | None:
    """Look up subscription by Stripe subscription ID (used by webhooks)."""
    result = await db.execute(
        select(Subscription).where(Subscription.stripe_subscription_id == stripe_subscription_id)
    )
    return result.scalar_one_or_none()


async def get_latest_subscription_by_stripe_customer(
    db: AsyncSession, stripe_customer_id: str
) -> Subscription | None:
    """Most recently updated subscription for a Stripe customer (webhook fallback)."""
    result = await db.execute(
        select(Subscription)
        .where(Subscription.stripe_customer_id == stripe_customer_id)
        .order_by(Subscription.updated_at.desc(), Subscription.created_at.desc())
        .limit(1)
    )
    return result.scalar_one_or_none()


async def list_user_subscriptions(db: AsyncSession, user_id: uuid.UUID) -> list[Subscription]:
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.updated_at.desc())
    )
    return list(result.scalars().all())


async def find_live_subscriptions(
    db: AsyncSession, user_id: uuid.UUID, exclude_stripe_subscription_id: str
) -> list[Subscription]:
    """Other subscriptions of the user that Stripe may still bill."""
    result = await db.execute(
        select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.stripe_subscription_id != exclude_stripe_subscription_id,
            Subscription.status.in_(LIVE_STATUSES),
        )
    )
    return list(result.scalars().all())


async def get_package_by_code(db: AsyncSession, code: str) -> Package | None:
    result = await db.execute(select(Package).where(Package.code == code.strip().lower()))
    return result.scalar_one_or_none()


async def get_package_by_stripe_product(db: AsyncSession, stripe_product_id: str) -> Package | None:
    result = await db.execute(
        select(Package).where(Package.stripe_product_id == stripe_product_id).limit(1)
    )
    return result.scalar_one_or_none()


# ---------------------------------------------------------------------------
# Mutations
# ---------------------------------------------------------------------------


async def upsert_by_stripe_subscription_id(
    db: AsyncSession, stripe_subscription_id: str, values: dict[str, Any]
) -> Subscription:
    """Insert or update the row for ``stripe_subscription_id`` in one statement.

    Concurrent callers for the same Stripe subscription converge on a single
    row; the unique constraint on ``stripe_subscription_id`` is the arbiter.
    """
    await db.flush()
    insert = dialect_insert(db)
    values = {**values, "stripe_subscription_id": stripe_subscription_id}

    stmt = insert(Subscription).values(id=uuid.uuid4(), **values)
    stmt = stmt.on_conflict_do_update(
        index_elements=[Subscription.stripe_subscription_id],
        set_={**values, "updated_at": func.now()},
    )
    await db.execute(stmt)

    result = await db.execute(
        select(Subscription)
        .where(Subscription.stripe_subscription_id == stripe_subscription_id)
        .execution_options(populate_existing=True)
    )
    subscription = result.scalar_one()
    logger.info(
        "Upserted subscription %s (stripe=%s, status=%s, current=%s)",
        subscription.id,
        stripe_subscription_id,
        subscription.status,
        subscription.is_current,
    )
    return subscription


async def demote_all_except(
    db: AsyncSession, user_id: uuid.UUID, keep_stripe_subscription_id: str
) -> list[Subscription]:
    """Mark every other current or live subscription of the user as canceled.

    ``canceled_at`` keeps its earliest value when already set.
    """
    result = await db.execute(
        select(Subscription).where(
            Subscription.user_id == user_id,
            Subscription.stripe_subscription_id != keep_stripe_subscription_id,
            or_(Subscription.is_current.is_(True), Subscription.status.in_(LIVE_STATUSES)),
        )
    )
    demoted = list(result.scalars().all())
    now = utcnow()
    for subscription in demoted:
        subscription.is_current = False
        subscription.status = "canceled"
        subscription.cancel_at_period_end = False
        if subscription.canceled_at is None:
            subscription.canceled_at = now
    await db.flush()

    if demoted:
        logger.info(
            "Demoted %d subscription(s) of user %s in favour of %s",
            len(demoted),
            user_id,
            keep_stripe_subscription_id,
        )
    return demoted


async def apply_changes(db: AsyncSession, subscription: Subscription, changes: dict[str, Any]) -> bool:
    """Set only the attributes whose value differs; flush if anything changed."""
    changed = False
    for key, value in changes.items():
        if getattr(subscription, key) != value:
            setattr(subscription, key, value)
            changed = True
    if changed:
        await db.flush()
    return changed


async def update_user_access(
    db: AsyncSession,
    user_id: uuid.UUID,
    plan_type: str,
    access_expires_at: datetime | None,
) -> User | None:
    """Mirror subscription state onto the user's plan flag and access expiry."""
    user = await db.get(User, user_id)
    if user is None:
        logger.warning("Cannot update access flags: user %s not found", user_id)
        return None
    if user.plan_type != plan_type or user.access_expires_at != access_expires_at:
        user.plan_type = plan_type
        user.access_expires_at = access_expires_at
        await db.flush()
        logger.info("User %s access set to %s until %s", user_id, plan_type, access_expires_at)
    return user


# ---------------------------------------------------------------------------
# Listings
# ---------------------------------------------------------------------------


async def list_subscriptions(
    db: AsyncSession, user_id: uuid.UUID, page: int, limit: int
) -> tuple[list[Subscription], int]:
    """Paginated subscription history, newest first."""
    total = (
        await db.execute(
            select(func.count()).select_from(Subscription).where(Subscription.user_id == user_id)
        )
    ).scalar_one()
    result = await db.execute(
        select(Subscription)
        .where(Subscription.user_id == user_id)
        .order_by(Subscription.created_at.desc(), Subscription.id)
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total


async def list_transactions(
    db: AsyncSession, user_id: uuid.UUID, page: int, limit: int
) -> tuple[list[SubscriptionTransaction], int]:
    """Paginated transactions across all of the user's subscriptions."""
    base = (
        select(SubscriptionTransaction)
        .join(Subscription, SubscriptionTransaction.subscription_id == Subscription.id)
        .where(Subscription.user_id == user_id)
    )
    total = (await db.execute(select(func.count()).select_from(base.subquery()))).scalar_one()
    result = await db.execute(
        base.order_by(
            SubscriptionTransaction.invoice_created_at.desc().nulls_last(),
            SubscriptionTransaction.created_at.desc(),
        )
        .offset((page - 1) * limit)
        .limit(limit)
    )
    return list(result.scalars().all()), total
