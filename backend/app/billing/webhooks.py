"""Stripe webhook event handlers — record invoice activity on local subscriptions."""

import logging
from typing import Any

from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.results import DUPLICATE_EVENT, IGNORED, BillingResult
from app.billing.stripe_client import StripeIntegrationError, retrieve_invoice
from app.billing.stripe_objects import expandable_id, get_path, parse_invoice
from app.billing.transactions import event_already_processed, upsert_transaction_from_invoice

logger = logging.getLogger(__name__)

INVOICE_EVENT_TYPES = frozenset(
    {
        "invoice.paid",
        "invoice.payment_failed",
        "invoice.finalized",
        "invoice.voided",
        "invoice.marked_uncollectible",
    }
)


async def handle_invoice_event(db: AsyncSession, event: Any) -> BillingResult:
    """Handle an invoice.* event by re-fetching the invoice and upserting it.

    Redelivery of an event already recorded is a no-op (``duplicate_event``).
    The invoice is read back from Stripe rather than trusted from the payload.
    """
    event_type = get_path(event, "type")
    event_id = get_path(event, "id")

    if event_type not in INVOICE_EVENT_TYPES:
        logger.debug("Unhandled webhook event type: %s", event_type)
        return BillingResult.success(status=IGNORED)

    if event_id and await event_already_processed(db, event_id):
        logger.info("Webhook event %s already processed, skipping", event_id)
        return BillingResult.success(status=DUPLICATE_EVENT)

    payload_invoice = get_path(event, "data", "object")
    invoice_id = expandable_id(payload_invoice)
    if invoice_id is None:
        logger.warning("Webhook event %s (%s) carries no invoice id", event_id, event_type)
        return BillingResult.success(status=IGNORED)

    try:
        stripe_invoice = await retrieve_invoice(invoice_id)
    except StripeIntegrationError as e:
        logger.warning("Could not fetch invoice %s for event %s: %s", invoice_id, event_id, e.message)
        return BillingResult.from_integration_error(e)

    invoice = parse_invoice(stripe_invoice) or parse_invoice(payload_invoice)
    if invoice is None:
        logger.warning("Invoice %s could not be parsed (event %s)", invoice_id, event_id)
        return BillingResult.success(status=IGNORED)

    logger.info("Processing %s for invoice %s (event %s)", event_type, invoice.id, event_id)
    return await upsert_transaction_from_invoice(db, invoice, event_id)
