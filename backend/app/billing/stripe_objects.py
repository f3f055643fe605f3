"""Typed views over Stripe payloads.

Stripe objects arrive as nested dict-like structures whose fields are optional,
sometimes expanded and sometimes bare ids, and whose shape moved between API
versions (periods went from the subscription to its items, the invoice's
subscription moved under ``parent.subscription_details``). Everything below
reads them through :func:`get_path` and returns frozen dataclasses with explicit
``None`` for anything absent, so the reconciliation code never probes dicts.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from pydantic import ValidationError

from app.schemas.billing import SavedCard, TransactionCard

RECOGNIZED_STATUSES = frozenset(
    {"incomplete", "incomplete_expired", "trialing", "active", "past_due", "canceled", "unpaid"}
)
LIVE_STATUSES = ("incomplete", "trialing", "active", "past_due", "unpaid")
TWO_DECIMAL_CURRENCIES = frozenset({"usd", "eur", "gbp", "bdt"})
DEFAULT_CURRENCY = "usd"

_CENT = Decimal("0.01")


def get_path(obj: Any, *path: str | int) -> Any:
    """Walk ``path`` through nested mappings/lists, returning None on any gap."""
    current = obj
    for key in path:
        if isinstance(key, int):
            if not isinstance(current, list | tuple) or len(current) <= key:
                return None
            current = current[key]
        else:
            if not isinstance(current, Mapping):
                return None
            current = current.get(key)
        if current is None:
            return None
    return current


def _str(value: Any) -> str | None:
    if isinstance(value, str) and value.strip():
        return value.strip()
    return None


def _int(value: Any) -> int | None:
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    return None


def _mapping(value: Any) -> Mapping | None:
    return value if isinstance(value, Mapping) else None


def expandable_id(value: Any) -> str | None:
    """Id of an expandable field that may be a bare id or an expanded object."""
    if isinstance(value, str):
        return _str(value)
    return _str(get_path(value, "id"))


def ts_to_naive(ts: Any) -> datetime | None:
    """Convert a Stripe Unix timestamp to a naive UTC datetime."""
    ts = _int(ts)
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def to_major_amount(amount: int | None, currency: str | None) -> Decimal | None:
    """Minor units to major units for two-decimal currencies; others unchanged."""
    if amount is None:
        return None
    if (currency or "").lower() in TWO_DECIMAL_CURRENCIES:
        return (Decimal(amount) / 100).quantize(_CENT)
    return Decimal(amount)


def _metadata(value: Any) -> dict[str, str]:
    data = _mapping(value) or {}
    return {str(k): str(v) for k, v in data.items() if v is not None}


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CardDetails:
    """Card fields read off a payment method; any of them may be missing."""

    payment_method_id: str | None
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None

    def to_saved_card(self) -> SavedCard | None:
        try:
            return SavedCard(
                payment_method_id=self.payment_method_id,
                brand=self.brand,
                last4=self.last4,
                exp_month=self.exp_month,
                exp_year=self.exp_year,
            )
        except ValidationError:
            return None

    def to_transaction_card(self) -> TransactionCard:
        return TransactionCard(
            payment_method_id=self.payment_method_id,
            brand=self.brand.lower() if self.brand else None,
            last4=self.last4,
            exp_month=self.exp_month,
            exp_year=self.exp_year,
        )


def card_from_payment_method(payment_method: Any) -> CardDetails | None:
    """Card details of an expanded payment method, or None if it is not a card."""
    card = _mapping(get_path(payment_method, "card"))
    pm_id = expandable_id(payment_method)
    if card is None or pm_id is None:
        return None
    return CardDetails(
        payment_method_id=pm_id,
        brand=_str(card.get("brand")),
        last4=_str(card.get("last4")),
        exp_month=_int(card.get("exp_month")),
        exp_year=_int(card.get("exp_year")),
    )


def saved_card_from_payment_method(payment_method: Any) -> SavedCard | None:
    details = card_from_payment_method(payment_method)
    return details.to_saved_card() if details else None


def _card_from_charge(charge: Any) -> CardDetails | None:
    card = _mapping(get_path(charge, "payment_method_details", "card"))
    if card is None:
        return None
    return CardDetails(
        payment_method_id=expandable_id(get_path(charge, "payment_method")),
        brand=_str(card.get("brand")),
        last4=_str(card.get("last4")),
        exp_month=_int(card.get("exp_month")),
        exp_year=_int(card.get("exp_year")),
    )


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PriceLine:
    price_id: str | None
    product_id: str | None = None
    unit_amount: int | None = None
    currency: str | None = None
    interval: str | None = None


def _parse_price(price: Any) -> PriceLine | None:
    if _mapping(price) is None:
        return None
    currency = _str(get_path(price, "currency"))
    return PriceLine(
        price_id=expandable_id(price),
        product_id=expandable_id(get_path(price, "product")),
        unit_amount=_int(get_path(price, "unit_amount")),
        currency=currency.lower() if currency else None,
        interval=_str(get_path(price, "recurring", "interval")),
    )


# ---------------------------------------------------------------------------
# Invoices
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class InvoiceSummary:
    id: str
    customer_id: str | None = None
    subscription_id: str | None = None
    number: str | None = None
    status: str | None = None
    billing_reason: str | None = None
    currency: str | None = None
    amount_paid: int | None = None
    amount_due: int | None = None
    total: int | None = None
    hosted_invoice_url: str | None = None
    invoice_pdf_url: str | None = None
    created_at: datetime | None = None
    payment_intent_id: str | None = None
    charge_id: str | None = None
    payment_method_id: str | None = None
    card: CardDetails | None = None
    line_period_start: datetime | None = None
    line_period_end: datetime | None = None

    @property
    def paid_amount(self) -> int | None:
        """Amount actually paid, falling back to the invoice total."""
        return self.amount_paid if self.amount_paid is not None else self.total


def _invoice_payment_intent(invoice: Any) -> Any:
    intent = get_path(invoice, "payment_intent")
    if intent is not None:
        return intent
    # Newer API versions list payments instead of a single payment_intent
    return get_path(invoice, "payments", "data", 0, "payment", "payment_intent")


def parse_invoice(invoice: Any) -> InvoiceSummary | None:
    """Parse an invoice object; returns None for a bare id or a payload without id."""
    invoice_id = _str(get_path(invoice, "id"))
    if _mapping(invoice) is None or invoice_id is None:
        return None

    intent = _invoice_payment_intent(invoice)
    payment_method = get_path(intent, "payment_method")
    charge = get_path(invoice, "charge") or get_path(intent, "latest_charge")

    card = card_from_payment_method(payment_method) or _card_from_charge(charge)
    payment_method_id = expandable_id(payment_method) or (card.payment_method_id if card else None)

    currency = _str(get_path(invoice, "currency"))
    return InvoiceSummary(
        id=invoice_id,
        customer_id=expandable_id(get_path(invoice, "customer")),
        subscription_id=(
            expandable_id(get_path(invoice, "subscription"))
            or expandable_id(get_path(invoice, "parent", "subscription_details", "subscription"))
        ),
        number=_str(get_path(invoice, "number")),
        status=_str(get_path(invoice, "status")),
        billing_reason=_str(get_path(invoice, "billing_reason")),
        currency=currency.lower() if currency else None,
        amount_paid=_int(get_path(invoice, "amount_paid")),
        amount_due=_int(get_path(invoice, "amount_due")),
        total=_int(get_path(invoice, "total")),
        hosted_invoice_url=_str(get_path(invoice, "hosted_invoice_url")),
        invoice_pdf_url=_str(get_path(invoice, "invoice_pdf")),
        created_at=ts_to_naive(get_path(invoice, "created")),
        payment_intent_id=expandable_id(intent),
        charge_id=expandable_id(charge),
        payment_method_id=payment_method_id,
        card=card,
        line_period_start=ts_to_naive(get_path(invoice, "lines", "data", 0, "period", "start")),
        line_period_end=ts_to_naive(get_path(invoice, "lines", "data", 0, "period", "end")),
    )


# ---------------------------------------------------------------------------
# Subscriptions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class SubscriptionSnapshot:
    id: str
    customer_id: str | None = None
    status: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    price: PriceLine | None = None
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool | None = None
    canceled_at: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    default_payment_method_id: str | None = None
    default_card: CardDetails | None = None
    customer_default_payment_method_id: str | None = None
    latest_invoice_id: str | None = None
    latest_invoice: InvoiceSummary | None = None

    @property
    def recognized_status(self) -> str | None:
        return self.status if self.status in RECOGNIZED_STATUSES else None

    @property
    def has_period(self) -> bool:
        return self.current_period_start is not None and self.current_period_end is not None


def _first_item(subscription: Any) -> Any:
    # Bracket access on "items": attribute access collides with dict.items()
    return get_path(subscription, "items", "data", 0)


def parse_subscription(subscription: Any) -> SubscriptionSnapshot | None:
    """Parse a subscription object; returns None for a bare id."""
    sub_id = _str(get_path(subscription, "id"))
    if _mapping(subscription) is None or sub_id is None:
        return None

    item = _first_item(subscription)
    latest_invoice = parse_invoice(get_path(subscription, "latest_invoice"))
    default_pm = get_path(subscription, "default_payment_method")
    cancel_at_period_end = get_path(subscription, "cancel_at_period_end")

    period_start = (
        ts_to_naive(get_path(subscription, "current_period_start"))
        or ts_to_naive(get_path(item, "current_period_start"))
        or (latest_invoice.line_period_start if latest_invoice else None)
    )
    period_end = (
        ts_to_naive(get_path(subscription, "current_period_end"))
        or ts_to_naive(get_path(item, "current_period_end"))
        or (latest_invoice.line_period_end if latest_invoice else None)
    )

    return SubscriptionSnapshot(
        id=sub_id,
        customer_id=expandable_id(get_path(subscription, "customer")),
        status=_str(get_path(subscription, "status")),
        metadata=_metadata(get_path(subscription, "metadata")),
        price=_parse_price(get_path(item, "price")),
        current_period_start=period_start,
        current_period_end=period_end,
        cancel_at_period_end=cancel_at_period_end if isinstance(cancel_at_period_end, bool) else None,
        canceled_at=ts_to_naive(get_path(subscription, "canceled_at")),
        trial_start=ts_to_naive(get_path(subscription, "trial_start")),
        trial_end=ts_to_naive(get_path(subscription, "trial_end")),
        default_payment_method_id=expandable_id(default_pm),
        default_card=card_from_payment_method(default_pm),
        customer_default_payment_method_id=expandable_id(
            get_path(subscription, "customer", "invoice_settings", "default_payment_method")
        ),
        latest_invoice_id=expandable_id(get_path(subscription, "latest_invoice")),
        latest_invoice=latest_invoice,
    )


# ---------------------------------------------------------------------------
# Checkout sessions
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class CheckoutSessionSummary:
    id: str
    status: str | None = None
    payment_status: str | None = None
    customer_id: str | None = None
    customer_email: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    subscription_id: str | None = None
    subscription: SubscriptionSnapshot | None = None
    line_price: PriceLine | None = None
    payment_intent_card: CardDetails | None = None

    def metadata_value(self, key: str) -> str | None:
        """Subscription metadata wins over session metadata."""
        if self.subscription is not None and self.subscription.metadata.get(key):
            return self.subscription.metadata[key]
        return self.metadata.get(key) or None

    @property
    def price(self) -> PriceLine | None:
        """Checkout line item price, else the subscription item's price."""
        if self.line_price is not None and self.line_price.price_id:
            return self.line_price
        return self.subscription.price if self.subscription else None

    @property
    def card(self) -> CardDetails | None:
        """Card used at checkout: subscription default, then invoice, then session intent."""
        candidates = []
        if self.subscription is not None:
            candidates.append(self.subscription.default_card)
            if self.subscription.latest_invoice is not None:
                candidates.append(self.subscription.latest_invoice.card)
        candidates.append(self.payment_intent_card)
        for candidate in candidates:
            if candidate is not None and candidate.payment_method_id:
                return candidate
        return None


def parse_checkout_session(session: Any, subscription_override: Any = None) -> CheckoutSessionSummary:
    """Parse a checkout session; ``subscription_override`` replaces the embedded subscription."""
    embedded = subscription_override if subscription_override is not None else get_path(session, "subscription")
    subscription = parse_subscription(embedded)
    customer_email = _str(get_path(session, "customer_details", "email")) or _str(get_path(session, "customer_email"))
    customer_id = expandable_id(get_path(session, "customer")) or (subscription.customer_id if subscription else None)

    return CheckoutSessionSummary(
        id=_str(get_path(session, "id")) or "",
        status=_str(get_path(session, "status")),
        payment_status=_str(get_path(session, "payment_status")),
        customer_id=customer_id,
        customer_email=customer_email,
        metadata=_metadata(get_path(session, "metadata")),
        subscription_id=expandable_id(get_path(session, "subscription")),
        subscription=subscription,
        line_price=_parse_price(get_path(session, "line_items", "data", 0, "price")),
        payment_intent_card=card_from_payment_method(get_path(session, "payment_intent", "payment_method")),
    )
