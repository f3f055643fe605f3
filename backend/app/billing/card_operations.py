"""Card management on the caller's current subscription."""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.cards import dump_cards, find_card, merge_card, normalize_cards
from app.billing.results import (
    CANNOT_DELETE_LAST_CARD,
    CARD_NOT_FOUND,
    CUSTOMER_ID_MISSING,
    INVALID_PAYMENT_METHOD,
    NOT_FOUND,
    STRIPE_ERROR,
    BillingResult,
)
from app.billing.stripe_client import (
    StripeIntegrationError,
    attach_payment_method,
    create_customer,
    create_setup_intent,
    detach_payment_method,
    retrieve_payment_method,
    set_customer_default_payment_method,
    set_subscription_default_payment_method,
)
from app.billing.stripe_objects import saved_card_from_payment_method
from app.models.subscription import Subscription
from app.models.user import User
from app.services.subscription_service import apply_changes, get_current_subscription, list_user_subscriptions

logger = logging.getLogger(__name__)


async def _set_stripe_defaults(subscription: Subscription, payment_method_id: str) -> None:
    await set_customer_default_payment_method(subscription.stripe_customer_id, payment_method_id)
    if subscription.stripe_subscription_id:
        await set_subscription_default_payment_method(subscription.stripe_subscription_id, payment_method_id)


async def _forget_card(db: AsyncSession, user: User, payment_method_id: str) -> None:
    """Drop a detached card from every subscription of the user so it is not merged back."""
    for other in await list_user_subscriptions(db, user.id):
        cards = normalize_cards(other.cards)
        if find_card(cards, payment_method_id) is None:
            continue
        changes: dict = {"cards": dump_cards([c for c in cards if c.payment_method_id != payment_method_id])}
        if other.default_payment_method_id == payment_method_id:
            changes["default_payment_method_id"] = None
        await apply_changes(db, other, changes)


async def create_card_setup_intent(db: AsyncSession, user: User) -> BillingResult[str]:
    """Create a SetupIntent for adding a card; returns its client secret.

    A Stripe customer is created and stored first if the subscription has none.
    """
    subscription = await get_current_subscription(db, user.id)
    if subscription is None:
        return BillingResult.failure(NOT_FOUND)

    try:
        if not subscription.stripe_customer_id:
            customer = await create_customer(email=user.email, name=user.name or user.email, user_id=str(user.id))
            await apply_changes(db, subscription, {"stripe_customer_id": customer.id})
        intent = await create_setup_intent(subscription.stripe_customer_id, str(user.id))
    except StripeIntegrationError as e:
        return BillingResult.from_integration_error(e)

    if not intent.client_secret:
        return BillingResult.failure(STRIPE_ERROR, "Setup intent has no client secret")
    return BillingResult.success(intent.client_secret)


async def attach_card(db: AsyncSession, user: User, payment_method_id: str) -> BillingResult[Subscription]:
    """Attach a confirmed card to the customer and make it the default."""
    subscription = await get_current_subscription(db, user.id)
    if subscription is None:
        return BillingResult.failure(NOT_FOUND)
    if not subscription.stripe_customer_id:
        return BillingResult.failure(CUSTOMER_ID_MISSING)

    try:
        await attach_payment_method(payment_method_id, subscription.stripe_customer_id)
        card = saved_card_from_payment_method(await retrieve_payment_method(payment_method_id))
        if card is None:
            return BillingResult.failure(INVALID_PAYMENT_METHOD)
        await _set_stripe_defaults(subscription, payment_method_id)
    except StripeIntegrationError as e:
        return BillingResult.from_integration_error(e)

    cards = merge_card(normalize_cards(subscription.cards), card)
    await apply_changes(
        db,
        subscription,
        {"cards": dump_cards(cards), "default_payment_method_id": payment_method_id},
    )
    logger.info("Card %s attached to subscription %s", payment_method_id, subscription.id)
    return BillingResult.success(subscription)


async def set_default_card(db: AsyncSession, user: User, payment_method_id: str) -> BillingResult[Subscription]:
    """Make an already saved card the default, at Stripe and locally."""
    subscription = await get_current_subscription(db, user.id)
    if subscription is None:
        return BillingResult.failure(NOT_FOUND)
    if not subscription.stripe_customer_id:
        return BillingResult.failure(CUSTOMER_ID_MISSING)
    if find_card(normalize_cards(subscription.cards), payment_method_id) is None:
        return BillingResult.failure(CARD_NOT_FOUND)

    try:
        await _set_stripe_defaults(subscription, payment_method_id)
    except StripeIntegrationError as e:
        return BillingResult.from_integration_error(e)

    await apply_changes(db, subscription, {"default_payment_method_id": payment_method_id})
    logger.info("Card %s set as default on subscription %s", payment_method_id, subscription.id)
    return BillingResult.success(subscription)


async def delete_card(db: AsyncSession, user: User, payment_method_id: str) -> BillingResult[Subscription]:
    """Detach a saved card. The only remaining card cannot be removed.

    Removing the default card promotes the first remaining card.
    """
    subscription = await get_current_subscription(db, user.id)
    if subscription is None:
        return BillingResult.failure(NOT_FOUND)
    if not subscription.stripe_customer_id:
        return BillingResult.failure(CUSTOMER_ID_MISSING)

    cards = normalize_cards(subscription.cards)
    if find_card(cards, payment_method_id) is None:
        return BillingResult.failure(CARD_NOT_FOUND)
    if len(cards) <= 1:
        return BillingResult.failure(CANNOT_DELETE_LAST_CARD)

    remaining = [c for c in cards if c.payment_method_id != payment_method_id]
    default_id = subscription.default_payment_method_id
    promote = default_id == payment_method_id

    try:
        await detach_payment_method(payment_method_id)
        if promote:
            default_id = remaining[0].payment_method_id
            await _set_stripe_defaults(subscription, default_id)
    except StripeIntegrationError as e:
        return BillingResult.from_integration_error(e)

    await apply_changes(
        db,
        subscription,
        {"cards": dump_cards(remaining), "default_payment_method_id": default_id},
    )
    await _forget_card(db, user, payment_method_id)
    logger.info(
        "Card %s removed from subscription %s (default=%s)",
        payment_method_id,
        subscription.id,
        default_id,
    )
    return BillingResult.success(subscription)
