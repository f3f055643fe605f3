"""Snapshot refresher — re-project live Stripe state onto a stored subscription.

Runs on every read. Stripe failures never fail the read: the stored values
are returned as they are.
"""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.cards import (
    cards_with_default,
    collect_known_cards,
    dedupe_cards,
    dump_cards,
    find_card,
    merge_card,
    normalize_cards,
    resolve_default_payment_method_id,
)
from app.billing.stripe_client import (
    StripeIntegrationError,
    retrieve_payment_method,
    retrieve_subscription,
)
from app.billing.stripe_objects import (
    SubscriptionSnapshot,
    parse_subscription,
    saved_card_from_payment_method,
    to_major_amount,
)
from app.models.subscription import Subscription
from app.models.user import PLAN_PAID, PLAN_TRIAL
from app.schemas.billing import SavedCard, SubscriptionResponse
from app.services.subscription_service import apply_changes, update_user_access

logger = logging.getLogger(__name__)

_PAID_STATUSES = frozenset({"active", "past_due", "incomplete"})


def plan_type_for_status(status: str) -> str:
    """Access tier implied by a subscription status."""
    if status == "trialing":
        return PLAN_TRIAL
    if status in _PAID_STATUSES:
        return PLAN_PAID
    return PLAN_TRIAL


def billing_cycle_for_interval(interval: str | None, fallback: str) -> str:
    if interval == "year":
        return "yearly"
    if interval == "month":
        return "monthly"
    return fallback


def project_snapshot(subscription: Subscription, snapshot: SubscriptionSnapshot) -> dict[str, Any]:
    """Column values for ``subscription`` after applying a live Stripe snapshot.

    Missing or unrecognised Stripe values leave the stored value in place.
    """
    price = snapshot.price
    changes: dict[str, Any] = {
        "status": snapshot.recognized_status or subscription.status,
        "billing_cycle": billing_cycle_for_interval(price.interval if price else None, subscription.billing_cycle),
        "current_period_start": snapshot.current_period_start or subscription.current_period_start,
        "current_period_end": snapshot.current_period_end or subscription.current_period_end,
        "trial_start": snapshot.trial_start or subscription.trial_start,
        "trial_end": snapshot.trial_end or subscription.trial_end,
        "canceled_at": snapshot.canceled_at or subscription.canceled_at,
        "cancel_at_period_end": (
            snapshot.cancel_at_period_end
            if snapshot.cancel_at_period_end is not None
            else subscription.cancel_at_period_end
        ),
        "stripe_customer_id": snapshot.customer_id or subscription.stripe_customer_id,
        "latest_invoice_id": snapshot.latest_invoice_id or subscription.latest_invoice_id,
        "default_payment_method_id": resolve_default_payment_method_id(
            snapshot, subscription.default_payment_method_id
        ),
    }
    if price is not None and price.unit_amount is not None and price.unit_amount > 0:
        currency = price.currency or subscription.currency
        changes["currency"] = currency
        changes["amount"] = to_major_amount(price.unit_amount, currency)
        if price.price_id:
            changes["stripe_price_id"] = price.price_id
    return changes


def _expanded_card(snapshot: SubscriptionSnapshot, default_id: str) -> SavedCard | None:
    """Card for ``default_id`` when the expanded snapshot carries its details."""
    for details in (
        snapshot.default_card,
        snapshot.latest_invoice.card if snapshot.latest_invoice else None,
    ):
        if details is not None and details.payment_method_id == default_id:
            return details.to_saved_card()
    return None


async def refresh_subscription_snapshot(db: AsyncSession, subscription: Subscription) -> Subscription:
    """Pull the live Stripe subscription and persist any drift (read-repair)."""
    if not subscription.stripe_subscription_id:
        return subscription

    try:
        snapshot = parse_subscription(await retrieve_subscription(subscription.stripe_subscription_id))
    except StripeIntegrationError as e:
        logger.warning(
            "Live refresh of %s skipped, serving stored values: %s",
            subscription.stripe_subscription_id,
            e.message,
        )
        return subscription
    if snapshot is None:
        return subscription

    changes = project_snapshot(subscription, snapshot)

    default_id = changes["default_payment_method_id"]
    cards = normalize_cards(subscription.cards)
    card = _expanded_card(snapshot, default_id) if default_id else None
    if card is None and default_id and find_card(cards, default_id) is None:
        try:
            card = saved_card_from_payment_method(await retrieve_payment_method(default_id))
        except StripeIntegrationError as e:
            logger.warning("Could not fetch default payment method %s: %s", default_id, e.message)
    # Fresh details for the default card replace the stored entry and move it first
    if card is not None:
        changes["cards"] = dump_cards(merge_card(cards, card))

    if await apply_changes(db, subscription, changes):
        logger.info(
            "Refreshed subscription %s from Stripe (status=%s)",
            subscription.stripe_subscription_id,
            subscription.status,
        )

    if subscription.is_current:
        await update_user_access(
            db,
            subscription.user_id,
            plan_type_for_status(subscription.status),
            subscription.current_period_end,
        )
    return subscription


async def build_subscription_view(db: AsyncSession, subscription: Subscription) -> SubscriptionResponse:
    """Refresh, merge in cards known from the user's other subscriptions, and project."""
    subscription = await refresh_subscription_snapshot(db, subscription)

    known = await collect_known_cards(db, subscription.user_id, subscription.stripe_customer_id)
    merged = dedupe_cards([*normalize_cards(subscription.cards), *known])
    await apply_changes(db, subscription, {"cards": dump_cards(merged)})

    view = SubscriptionResponse.model_validate(subscription)
    return view.model_copy(
        update={"cards": cards_with_default(merged, subscription.default_payment_method_id)}
    )
