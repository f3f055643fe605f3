"""Stripe webhook endpoint — receives and processes invoice events."""

import logging

import stripe
from fastapi import APIRouter, Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.api.deps import get_db
from app.billing.stripe_client import StripeIntegrationError, construct_webhook_event
from app.billing.webhooks import handle_invoice_event
from app.schemas.billing import WebhookResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/v1/webhooks", tags=["webhooks"])


@router.post("/stripe", response_model=WebhookResponse)
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)) -> WebhookResponse:
    """Receive and process Stripe webhook events.

    Non-2xx answers make Stripe redeliver, so only verified and fully
    processed (or deliberately skipped) events are acknowledged with 200.
    """
    # 1. Read raw body (MUST be raw bytes for signature verification)
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature", "")

    # 2. Verify signature
    try:
        event = construct_webhook_event(payload, sig_header)
    except stripe.SignatureVerificationError as e:
        logger.warning("Webhook signature verification failed")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid signature",
        ) from e
    except ValueError as e:
        logger.warning("Invalid webhook payload")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Invalid payload",
        ) from e
    except StripeIntegrationError as e:
        logger.error("Webhook received but Stripe is not configured: %s", e.message)
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=e.message,
        ) from e

    # 3. Process
    try:
        result = await handle_invoice_event(db, event)
    except Exception as e:
        logger.exception("Error processing webhook event %s", event.get("id"))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Webhook processing failed",
        ) from e

    if not result.ok:
        raise HTTPException(status_code=result.http_status, detail=result.detail)

    return WebhookResponse(status=result.status)
