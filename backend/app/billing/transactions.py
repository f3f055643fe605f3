"""Transaction ledger — invoice-derived payment history, idempotent by invoice id."""

import logging
import uuid

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.results import NOT_MAPPED, PROCESSED, BillingResult
from app.billing.stripe_objects import InvoiceSummary, to_major_amount
from app.models.subscription import Subscription, SubscriptionTransaction
from app.services.subscription_service import (
    dialect_insert,
    get_latest_subscription_by_stripe_customer,
    get_subscription_by_stripe_subscription,
)

logger = logging.getLogger(__name__)


async def event_already_processed(db: AsyncSession, event_id: str) -> bool:
    """True if a transaction was already recorded for this webhook event."""
    result = await db.execute(
        select(SubscriptionTransaction.id).where(SubscriptionTransaction.event_id == event_id).limit(1)
    )
    return result.first() is not None


async def resolve_invoice_owner(db: AsyncSession, invoice: InvoiceSummary) -> Subscription | None:
    """Exact Stripe subscription match first, then the customer's latest subscription."""
    if invoice.subscription_id:
        owner = await get_subscription_by_stripe_subscription(db, invoice.subscription_id)
        if owner is not None:
            return owner
    if invoice.customer_id:
        owner = await get_latest_subscription_by_stripe_customer(db, invoice.customer_id)
        if owner is not None:
            logger.info(
                "Invoice %s mapped to subscription %s via customer %s",
                invoice.id,
                owner.stripe_subscription_id,
                invoice.customer_id,
            )
            return owner
    return None


def _transaction_values(invoice: InvoiceSummary, owner: Subscription, event_id: str | None) -> dict:
    values = {
        "stripe_customer_id": invoice.customer_id or owner.stripe_customer_id,
        "stripe_subscription_id": invoice.subscription_id or owner.stripe_subscription_id,
        "stripe_payment_intent_id": invoice.payment_intent_id,
        "stripe_charge_id": invoice.charge_id,
        "invoice_number": invoice.number,
        "status": invoice.status,
        "billing_reason": invoice.billing_reason,
        "currency": invoice.currency,
        "amount_paid": to_major_amount(invoice.amount_paid, invoice.currency),
        "amount_due": to_major_amount(invoice.amount_due, invoice.currency),
        "hosted_invoice_url": invoice.hosted_invoice_url,
        "invoice_pdf_url": invoice.invoice_pdf_url,
        "invoice_created_at": invoice.created_at,
        "card": invoice.card.to_transaction_card().model_dump() if invoice.card else None,
    }
    # A replay without an event id must not erase the one already recorded
    if event_id:
        values["event_id"] = event_id
    return values


async def upsert_transaction_from_invoice(
    db: AsyncSession, invoice: InvoiceSummary, event_id: str | None = None
) -> BillingResult[SubscriptionTransaction]:
    """Record ``invoice`` on its owning subscription, updating in place if present."""
    owner = await resolve_invoice_owner(db, invoice)
    if owner is None:
        logger.warning(
            "No local subscription for invoice %s (subscription=%s, customer=%s)",
            invoice.id,
            invoice.subscription_id,
            invoice.customer_id,
        )
        return BillingResult.success(status=NOT_MAPPED)

    values = _transaction_values(invoice, owner, event_id)
    insert = dialect_insert(db)
    stmt = insert(SubscriptionTransaction).values(
        id=uuid.uuid4(),
        subscription_id=owner.id,
        stripe_invoice_id=invoice.id,
        **values,
    )
    stmt = stmt.on_conflict_do_update(
        index_elements=[SubscriptionTransaction.subscription_id, SubscriptionTransaction.stripe_invoice_id],
        set_={**values, "updated_at": func.now()},
    )
    await db.execute(stmt)

    owner.latest_invoice_id = invoice.id
    if event_id:
        owner.latest_event_id = event_id
    await db.flush()
    await db.refresh(owner, attribute_names=["transactions"])

    result = await db.execute(
        select(SubscriptionTransaction)
        .where(
            SubscriptionTransaction.subscription_id == owner.id,
            SubscriptionTransaction.stripe_invoice_id == invoice.id,
        )
        .execution_options(populate_existing=True)
    )
    transaction = result.scalar_one()
    logger.info(
        "Recorded invoice %s (%s) on subscription %s",
        invoice.id,
        invoice.status,
        owner.stripe_subscription_id,
    )
    return BillingResult.success(transaction, status=PROCESSED)
