"""Async Stripe API wrapper for Cliento billing.

Every call goes through :func:`get_stripe_client` and translates SDK errors
into :class:`StripeIntegrationError`, so callers only handle one exception type.
"""

import logging
from collections.abc import Iterator
from contextlib import contextmanager

import stripe
from stripe import StripeClient

from app.config import settings

logger = logging.getLogger(__name__)

CHECKOUT_SESSION_EXPAND = [
    "subscription",
    "subscription.items.data.price",
    "subscription.default_payment_method",
    "subscription.latest_invoice",
    "subscription.latest_invoice.lines",
    "subscription.latest_invoice.payment_intent.payment_method",
    "payment_intent.payment_method",
    "line_items.data.price.product",
]

SUBSCRIPTION_EXPAND = [
    "items.data.price",
    "customer",
    "default_payment_method",
    "latest_invoice.payment_intent.payment_method",
]

INVOICE_EXPAND = [
    "payment_intent.payment_method",
    "charge",
]


class StripeIntegrationError(Exception):
    """Stripe is unreachable, misconfigured, or rejected the request."""

    def __init__(self, message: str, *, not_configured: bool = False) -> None:
        super().__init__(message)
        self.message = message
        self.not_configured = not_configured


def get_stripe_client() -> StripeClient:
    """Create a StripeClient instance with async HTTP support and a bounded timeout."""
    if not settings.stripe_secret_key:
        raise StripeIntegrationError("STRIPE_SECRET_KEY is not set", not_configured=True)
    return StripeClient(
        settings.stripe_secret_key,
        stripe_version=settings.stripe_api_version,
        http_client=stripe.HTTPXClient(timeout=settings.stripe_api_timeout_seconds),
    )


@contextmanager
def _stripe_call(action: str) -> Iterator[None]:
    try:
        yield
    except stripe.StripeError as e:
        logger.warning("Stripe %s failed: %s", action, e.user_message or str(e))
        raise StripeIntegrationError(e.user_message or str(e) or f"Stripe {action} failed") from e


async def retrieve_checkout_session(session_id: str) -> stripe.checkout.Session:
    """Retrieve a checkout session with subscription, invoice and card data expanded."""
    client = get_stripe_client()
    with _stripe_call("checkout session retrieve"):
        return await client.v1.checkout.sessions.retrieve_async(
            session_id, params={"expand": CHECKOUT_SESSION_EXPAND}
        )


async def retrieve_subscription(subscription_id: str) -> stripe.Subscription:
    """Retrieve a Stripe subscription with customer and payment data expanded."""
    client = get_stripe_client()
    with _stripe_call("subscription retrieve"):
        return await client.v1.subscriptions.retrieve_async(
            subscription_id, params={"expand": SUBSCRIPTION_EXPAND}
        )


async def cancel_subscription(subscription_id: str) -> stripe.Subscription:
    """Cancel a Stripe subscription immediately."""
    client = get_stripe_client()
    logger.info("Cancelling Stripe subscription %s", subscription_id)
    with _stripe_call("subscription cancel"):
        return await client.v1.subscriptions.cancel_async(subscription_id)


async def retrieve_invoice(invoice_id: str) -> stripe.Invoice:
    client = get_stripe_client()
    with _stripe_call("invoice retrieve"):
        return await client.v1.invoices.retrieve_async(invoice_id, params={"expand": INVOICE_EXPAND})


async def retrieve_payment_method(payment_method_id: str) -> stripe.PaymentMethod:
    client = get_stripe_client()
    with _stripe_call("payment method retrieve"):
        return await client.v1.payment_methods.retrieve_async(payment_method_id)


async def create_customer(email: str, name: str, user_id: str) -> stripe.Customer:
    """Create a Stripe customer linked to a Cliento user."""
    client = get_stripe_client()
    logger.info("Creating Stripe customer for user %s (%s)", user_id, email)
    with _stripe_call("customer create"):
        customer = await client.v1.customers.create_async(
            params={
                "email": email,
                "name": name,
                "metadata": {"user_id": user_id},
            }
        )
    logger.info("Created Stripe customer %s for user %s", customer.id, user_id)
    return customer


async def create_setup_intent(customer_id: str, user_id: str) -> stripe.SetupIntent:
    """Create an off-session card SetupIntent for saving a new card."""
    client = get_stripe_client()
    logger.info("Creating setup intent for customer %s", customer_id)
    with _stripe_call("setup intent create"):
        return await client.v1.setup_intents.create_async(
            params={
                "customer": customer_id,
                "payment_method_types": ["card"],
                "usage": "off_session",
                "metadata": {"user_id": user_id},
            }
        )


async def attach_payment_method(payment_method_id: str, customer_id: str) -> stripe.PaymentMethod:
    client = get_stripe_client()
    logger.info("Attaching payment method %s to customer %s", payment_method_id, customer_id)
    with _stripe_call("payment method attach"):
        return await client.v1.payment_methods.attach_async(
            payment_method_id, params={"customer": customer_id}
        )


async def detach_payment_method(payment_method_id: str) -> stripe.PaymentMethod:
    client = get_stripe_client()
    logger.info("Detaching payment method %s", payment_method_id)
    with _stripe_call("payment method detach"):
        return await client.v1.payment_methods.detach_async(payment_method_id)


async def set_customer_default_payment_method(customer_id: str, payment_method_id: str) -> stripe.Customer:
    client = get_stripe_client()
    with _stripe_call("customer update"):
        return await client.v1.customers.update_async(
            customer_id,
            params={"invoice_settings": {"default_payment_method": payment_method_id}},
        )


async def set_subscription_default_payment_method(
    subscription_id: str, payment_method_id: str
) -> stripe.Subscription:
    client = get_stripe_client()
    with _stripe_call("subscription update"):
        return await client.v1.subscriptions.update_async(
            subscription_id, params={"default_payment_method": payment_method_id}
        )


def construct_webhook_event(payload: bytes, sig_header: str) -> stripe.Event:
    """Verify and construct a Stripe webhook event (synchronous).

    Raises ``stripe.SignatureVerificationError`` or ``ValueError`` for bad
    input; those are left untranslated so the endpoint can answer 400.
    """
    client = get_stripe_client()
    return client.construct_event(payload, sig_header, settings.stripe_webhook_secret)
