"""Session sync processor — turn a completed Checkout session into the current subscription."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.cards import collect_known_cards, dedupe_cards, dump_cards, normalize_cards
from app.billing.notifications import InvoiceReceipt, fire_and_log, send_subscription_invoice_email
from app.billing.refresh import billing_cycle_for_interval
from app.billing.results import (
    CHECKOUT_NOT_COMPLETED,
    CHECKOUT_USER_MISMATCH,
    CUSTOMER_ID_MISSING,
    PACKAGE_NOT_FOUND,
    PAYMENT_NOT_SUCCESSFUL,
    PRICE_ID_MISSING,
    SUBSCRIPTION_ID_MISSING,
    BillingResult,
)
from app.billing.stripe_client import (
    StripeIntegrationError,
    cancel_subscription,
    retrieve_checkout_session,
    retrieve_subscription,
)
from app.billing.stripe_objects import (
    DEFAULT_CURRENCY,
    LIVE_STATUSES,
    CheckoutSessionSummary,
    parse_checkout_session,
    to_major_amount,
)
from app.models.package import Package
from app.models.subscription import Subscription
from app.models.user import PLAN_PAID, PLAN_TRIAL, User
from app.services.subscription_service import (
    demote_all_except,
    find_live_subscriptions,
    get_package_by_code,
    get_package_by_stripe_product,
    get_subscription_by_stripe_subscription,
    update_user_access,
    upsert_by_stripe_subscription_id,
)

logger = logging.getLogger(__name__)

PAID_PAYMENT_STATUSES = frozenset({"paid", "no_payment_required"})


async def load_checkout_session(session_id: str) -> CheckoutSessionSummary:
    """Retrieve and parse a checkout session, re-fetching the subscription if its period is missing.

    Raises:
        StripeIntegrationError: If the session itself cannot be retrieved.
    """
    raw_session = await retrieve_checkout_session(session_id)
    session = parse_checkout_session(raw_session)

    if session.subscription_id and (session.subscription is None or not session.subscription.has_period):
        try:
            full_subscription = await retrieve_subscription(session.subscription_id)
        except StripeIntegrationError:
            logger.info("Re-fetch of subscription %s failed, using embedded copy", session.subscription_id)
        else:
            session = parse_checkout_session(raw_session, subscription_override=full_subscription)
    return session


async def _find_package(db: AsyncSession, session: CheckoutSessionSummary) -> Package | None:
    package_code = session.metadata_value("package_code")
    if package_code:
        package = await get_package_by_code(db, package_code)
        if package is not None:
            return package
    price = session.price
    if price is not None and price.product_id:
        return await get_package_by_stripe_product(db, price.product_id)
    return None


def _derive_fields(session: CheckoutSessionSummary, package: Package) -> dict[str, Any]:
    """Subscription column values implied by the checkout session."""
    price = session.price
    snapshot = session.subscription
    currency = (price.currency if price else None) or DEFAULT_CURRENCY
    amount = to_major_amount(price.unit_amount if price else None, currency)

    if snapshot is not None and snapshot.recognized_status:
        status = snapshot.recognized_status
    else:
        status = "active" if session.payment_status == "paid" else "trialing"

    return {
        "package_id": package.id,
        "stripe_customer_id": session.customer_id,
        "stripe_price_id": price.price_id,
        "status": status,
        "billing_cycle": billing_cycle_for_interval(price.interval, "monthly"),
        "amount": amount if amount is not None else package.amount,
        "currency": currency,
        "current_period_start": snapshot.current_period_start if snapshot else None,
        "current_period_end": snapshot.current_period_end if snapshot else None,
        "cancel_at_period_end": bool(snapshot and snapshot.cancel_at_period_end),
        "canceled_at": snapshot.canceled_at if snapshot else None,
        "trial_start": snapshot.trial_start if snapshot else None,
        "trial_end": snapshot.trial_end if snapshot else None,
        "latest_invoice_id": snapshot.latest_invoice_id if snapshot else None,
    }


async def _supersede_others(db: AsyncSession, user: User, keep_stripe_subscription_id: str) -> None:
    """Cancel the user's other live subscriptions at Stripe, then demote them locally.

    Raises:
        StripeIntegrationError: If any cancellation fails; nothing is demoted then.
    """
    others = await find_live_subscriptions(db, user.id, keep_stripe_subscription_id)
    for other in others:
        await cancel_subscription(other.stripe_subscription_id)
        logger.info(
            "Cancelled superseded subscription %s for user %s",
            other.stripe_subscription_id,
            user.id,
        )
    await demote_all_except(db, user.id, keep_stripe_subscription_id)


def _receipt_for(session: CheckoutSessionSummary) -> InvoiceReceipt:
    invoice = session.subscription.latest_invoice if session.subscription else None
    if invoice is None:
        return InvoiceReceipt(
            invoice_id=session.subscription.latest_invoice_id if session.subscription else None,
            currency=session.price.currency if session.price else None,
        )
    return InvoiceReceipt(
        invoice_id=invoice.id,
        invoice_number=invoice.number,
        status=invoice.status,
        amount_paid=to_major_amount(invoice.paid_amount, invoice.currency),
        currency=invoice.currency or (session.price.currency if session.price else None),
        hosted_invoice_url=invoice.hosted_invoice_url,
        invoice_pdf_url=invoice.invoice_pdf_url,
        created_at=invoice.created_at,
    )


async def sync_subscription_from_checkout_session(
    db: AsyncSession, user: User, session_id: str
) -> BillingResult[Subscription]:
    """Reconcile a completed Checkout session into the user's current subscription.

    Safe to call repeatedly for the same session: the row is upserted by
    Stripe subscription id and the user keeps exactly one current subscription.
    """
    try:
        session = await load_checkout_session(session_id)
    except StripeIntegrationError as e:
        return BillingResult.from_integration_error(e)

    if session.status != "complete":
        return BillingResult.failure(CHECKOUT_NOT_COMPLETED)
    if session.payment_status not in PAID_PAYMENT_STATUSES:
        return BillingResult.failure(PAYMENT_NOT_SUCCESSFUL)

    stripe_subscription_id = session.subscription_id
    price = session.price
    if not stripe_subscription_id:
        return BillingResult.failure(SUBSCRIPTION_ID_MISSING)
    if not session.customer_id:
        return BillingResult.failure(CUSTOMER_ID_MISSING)
    if price is None or not price.price_id:
        return BillingResult.failure(PRICE_ID_MISSING)

    metadata_user_id = session.metadata_value("user_id")
    if metadata_user_id and metadata_user_id != str(user.id):
        logger.warning(
            "Checkout session %s belongs to user %s, not caller %s",
            session.id,
            metadata_user_id,
            user.id,
        )
        return BillingResult.failure(CHECKOUT_USER_MISMATCH)

    package = await _find_package(db, session)
    if package is None:
        return BillingResult.failure(PACKAGE_NOT_FOUND)

    fields = _derive_fields(session, package)
    existing = await get_subscription_by_stripe_subscription(db, stripe_subscription_id)

    # A replayed session for a subscription Stripe no longer bills must not
    # displace the live one
    becomes_current = fields["status"] in LIVE_STATUSES
    if becomes_current:
        try:
            await _supersede_others(db, user, stripe_subscription_id)
        except StripeIntegrationError as e:
            return BillingResult.from_integration_error(e)
    else:
        logger.info(
            "Checkout session %s points at %s subscription %s; not superseding",
            session_id,
            fields["status"],
            stripe_subscription_id,
        )

    # Cards: the card used at checkout first, then what this subscription and
    # the user's other subscriptions already know about
    session_card = session.card.to_saved_card() if session.card else None
    stored_cards = normalize_cards(existing.cards) if existing else []
    known_cards = await collect_known_cards(db, user.id, session.customer_id)
    cards = dedupe_cards([*([session_card] if session_card else []), *stored_cards, *known_cards])

    if session_card is not None:
        default_id = session_card.payment_method_id
    elif existing is not None and existing.default_payment_method_id:
        default_id = existing.default_payment_method_id
    else:
        default_id = cards[0].payment_method_id if cards else None

    subscription = await upsert_by_stripe_subscription_id(
        db,
        stripe_subscription_id,
        {
            **fields,
            "user_id": user.id,
            "default_payment_method_id": default_id,
            "cards": dump_cards(cards),
            "latest_event_id": session.id,
            "is_current": becomes_current or bool(existing and existing.is_current),
        },
    )

    if subscription.is_current:
        await update_user_access(
            db,
            user.id,
            PLAN_TRIAL if subscription.status == "trialing" else PLAN_PAID,
            subscription.current_period_end,
        )
    logger.info(
        "Checkout session %s synced: user %s now on %s (%s, %s)",
        session.id,
        user.id,
        package.code,
        subscription.status,
        stripe_subscription_id,
    )

    await fire_and_log(
        send_subscription_invoice_email(session.customer_email or user.email, user.name, _receipt_for(session)),
        "subscription receipt email",
    )
    return BillingResult.success(subscription)
