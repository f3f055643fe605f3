"""Billing notifications — subscription receipt email via the Brevo API."""

import logging
from collections.abc import Awaitable
from dataclasses import dataclass
from datetime import datetime
from decimal import Decimal

import httpx

from app.config import settings

logger = logging.getLogger(__name__)

TEMPLATES = {
    "subscription_invoice": {
        "subject": "Your {app_name} subscription receipt",
        "body": (
            "<p>Hi {name},</p>"
            "<p>Thanks for subscribing to {app_name}. Here is your receipt.</p>"
            "<ul>"
            "<li>Invoice: {invoice_number}</li>"
            "<li>Status: {status}</li>"
            "<li>Amount paid: {amount} {currency}</li>"
            "<li>Date: {created_at}</li>"
            "</ul>"
            "{links}"
            "<p>Cheers,<br/>The {app_name} team</p>"
        ),
    },
}


@dataclass(frozen=True)
class InvoiceReceipt:
    invoice_id: str | None = None
    invoice_number: str | None = None
    status: str | None = None
    amount_paid: Decimal | None = None
    currency: str | None = None
    hosted_invoice_url: str | None = None
    invoice_pdf_url: str | None = None
    created_at: datetime | None = None


def render_receipt(name: str, receipt: InvoiceReceipt) -> tuple[str, str]:
    """Return (subject, html) for a subscription receipt."""
    template = TEMPLATES["subscription_invoice"]
    links = ""
    if receipt.hosted_invoice_url:
        links += f'<p><a href="{receipt.hosted_invoice_url}">View invoice</a></p>'
    if receipt.invoice_pdf_url:
        links += f'<p><a href="{receipt.invoice_pdf_url}">Download PDF</a></p>'
    subject = template["subject"].format(app_name=settings.brevo_sender_name)
    body = template["body"].format(
        app_name=settings.brevo_sender_name,
        name=name or "there",
        invoice_number=receipt.invoice_number or receipt.invoice_id or "-",
        status=receipt.status or "-",
        amount=receipt.amount_paid if receipt.amount_paid is not None else "-",
        currency=(receipt.currency or "").upper(),
        created_at=receipt.created_at.strftime("%Y-%m-%d") if receipt.created_at else "-",
        links=links,
    )
    return subject, body


async def send_subscription_invoice_email(to: str, name: str, receipt: InvoiceReceipt) -> None:
    """Send the receipt email. Skips with a warning when Brevo is not configured.

    Raises:
        httpx.HTTPError: If Brevo rejects the request or is unreachable.
    """
    if not settings.email_configured:
        logger.warning("Receipt email to %s not sent: Brevo API key or sender not configured", to)
        return

    subject, html = render_receipt(name, receipt)
    payload = {
        "sender": {"name": settings.brevo_sender_name, "email": settings.brevo_sender_email},
        "to": [{"email": to, "name": name or to}],
        "subject": subject,
        "htmlContent": html,
    }
    async with httpx.AsyncClient(timeout=settings.email_timeout_seconds) as client:
        response = await client.post(
            settings.brevo_api_url,
            json=payload,
            headers={"api-key": settings.brevo_api_key, "accept": "application/json"},
        )
        response.raise_for_status()
    logger.info("Receipt email for invoice %s sent to %s", receipt.invoice_id, to)


async def fire_and_log(awaitable: Awaitable, what: str) -> None:
    """Await a best-effort side effect; failures are logged, never raised."""
    try:
        await awaitable
    except Exception:
        logger.exception("Best-effort %s failed", what)
