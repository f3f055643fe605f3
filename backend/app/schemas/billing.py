"""Pydantic v2 request/response schemas for subscription endpoints."""

import uuid
from datetime import datetime
from decimal import Decimal

from pydantic import BaseModel, ConfigDict, Field, field_validator

CHECKOUT_SESSION_ID_PATTERN = r"^cs_(test|live)_[A-Za-z0-9]+$"
PAYMENT_METHOD_ID_PATTERN = r"^pm_[A-Za-z0-9]+$"


# --- Stored values ---


class SavedCard(BaseModel):
    """A card saved on a subscription, unique by ``payment_method_id``."""

    model_config = ConfigDict(frozen=True, extra="ignore")

    payment_method_id: str = Field(min_length=1, max_length=120)
    brand: str = Field(min_length=1, max_length=30)
    last4: str = Field(min_length=4, max_length=4)
    exp_month: int = Field(ge=1, le=12)
    exp_year: int = Field(ge=2000, le=9999)

    @field_validator("payment_method_id", "last4", mode="before")
    @classmethod
    def _strip(cls, value: object) -> object:
        return value.strip() if isinstance(value, str) else value

    @field_validator("brand", mode="before")
    @classmethod
    def _lower_brand(cls, value: object) -> object:
        return value.strip().lower() if isinstance(value, str) else value


class TransactionCard(BaseModel):
    """Payment method snapshot taken when an invoice was recorded."""

    payment_method_id: str | None = None
    brand: str | None = None
    last4: str | None = None
    exp_month: int | None = None
    exp_year: int | None = None


# --- Request schemas ---


class CheckoutSessionSyncRequest(BaseModel):
    """Request to reconcile a completed Stripe Checkout session."""

    session_id: str = Field(pattern=CHECKOUT_SESSION_ID_PATTERN)


class PaymentMethodRequest(BaseModel):
    """Request carrying a Stripe payment method id (attach / set default)."""

    payment_method_id: str = Field(pattern=PAYMENT_METHOD_ID_PATTERN)


# --- Response schemas ---


class CardResponse(BaseModel):
    payment_method_id: str
    brand: str
    last4: str
    exp_month: int
    exp_year: int
    is_default: bool = False


class PackageSummary(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    code: str
    name: str
    billing_cycle: str
    amount: Decimal
    currency: str


class TransactionResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    subscription_id: uuid.UUID
    stripe_customer_id: str
    stripe_subscription_id: str | None = None
    stripe_invoice_id: str
    stripe_payment_intent_id: str | None = None
    stripe_charge_id: str | None = None
    event_id: str | None = None
    invoice_number: str | None = None
    status: str | None = None
    billing_reason: str | None = None
    currency: str | None = None
    amount_paid: Decimal | None = None
    amount_due: Decimal | None = None
    hosted_invoice_url: str | None = None
    invoice_pdf_url: str | None = None
    invoice_created_at: datetime | None = None
    card: TransactionCard | None = None


class SubscriptionResponse(BaseModel):
    """Canonical subscription view returned by every read and sync endpoint."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    package: PackageSummary | None = None
    stripe_customer_id: str
    stripe_subscription_id: str
    stripe_price_id: str
    status: str
    billing_cycle: str
    amount: Decimal
    currency: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    cancel_at_period_end: bool = False
    canceled_at: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    default_payment_method_id: str | None = None
    cards: list[CardResponse] = []
    latest_invoice_id: str | None = None
    latest_event_id: str | None = None
    is_current: bool
    created_at: datetime
    updated_at: datetime


class SubscriptionHistoryItem(BaseModel):
    """Subscription row without the live refresh, used by the history listing."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    package: PackageSummary | None = None
    stripe_subscription_id: str
    status: str
    billing_cycle: str
    amount: Decimal
    currency: str
    current_period_start: datetime | None = None
    current_period_end: datetime | None = None
    canceled_at: datetime | None = None
    is_current: bool
    created_at: datetime


class PaginationMeta(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int
    has_next_page: bool
    has_prev_page: bool

    @classmethod
    def build(cls, page: int, limit: int, total: int) -> "PaginationMeta":
        total_pages = (total + limit - 1) // limit if total else 0
        return cls(
            page=page,
            limit=limit,
            total=total,
            total_pages=total_pages,
            has_next_page=page < total_pages,
            has_prev_page=page > 1,
        )


class SubscriptionListResponse(BaseModel):
    items: list[SubscriptionHistoryItem]
    meta: PaginationMeta


class TransactionListResponse(BaseModel):
    items: list[TransactionResponse]
    meta: PaginationMeta


class SetupIntentResponse(BaseModel):
    client_secret: str


class WebhookResponse(BaseModel):
    status: str
