"""Typed outcomes of billing operations and their HTTP status mapping."""

from dataclasses import dataclass
from typing import Generic, TypeVar

from fastapi import status as http_status

T = TypeVar("T")

# Success outcomes
OK = "ok"
PROCESSED = "processed"
DUPLICATE_EVENT = "duplicate_event"
IGNORED = "ignored"
NOT_MAPPED = "not_mapped"

# Failure outcomes
NOT_FOUND = "not_found"
CARD_NOT_FOUND = "card_not_found"
PACKAGE_NOT_FOUND = "package_not_found"
CHECKOUT_NOT_COMPLETED = "checkout_not_completed"
PAYMENT_NOT_SUCCESSFUL = "payment_not_successful"
SUBSCRIPTION_ID_MISSING = "subscription_id_missing"
CUSTOMER_ID_MISSING = "customer_id_missing"
PRICE_ID_MISSING = "price_id_missing"
CHECKOUT_USER_MISMATCH = "checkout_user_mismatch"
CANNOT_DELETE_LAST_CARD = "cannot_delete_last_card"
INVALID_PAYMENT_METHOD = "invalid_payment_method"
STRIPE_NOT_CONFIGURED = "stripe_not_configured"
STRIPE_ERROR = "stripe_error"

SUCCESS_STATUSES = frozenset({OK, PROCESSED, DUPLICATE_EVENT, IGNORED, NOT_MAPPED})

HTTP_STATUS_BY_RESULT: dict[str, int] = {
    NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    CARD_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    PACKAGE_NOT_FOUND: http_status.HTTP_404_NOT_FOUND,
    CHECKOUT_NOT_COMPLETED: http_status.HTTP_400_BAD_REQUEST,
    PAYMENT_NOT_SUCCESSFUL: http_status.HTTP_400_BAD_REQUEST,
    SUBSCRIPTION_ID_MISSING: http_status.HTTP_400_BAD_REQUEST,
    CUSTOMER_ID_MISSING: http_status.HTTP_400_BAD_REQUEST,
    PRICE_ID_MISSING: http_status.HTTP_400_BAD_REQUEST,
    CHECKOUT_USER_MISMATCH: http_status.HTTP_403_FORBIDDEN,
    CANNOT_DELETE_LAST_CARD: http_status.HTTP_409_CONFLICT,
    INVALID_PAYMENT_METHOD: http_status.HTTP_409_CONFLICT,
    STRIPE_NOT_CONFIGURED: http_status.HTTP_500_INTERNAL_SERVER_ERROR,
    STRIPE_ERROR: http_status.HTTP_502_BAD_GATEWAY,
}

DEFAULT_MESSAGES: dict[str, str] = {
    NOT_FOUND: "Subscription not found",
    CARD_NOT_FOUND: "Card not found on this subscription",
    PACKAGE_NOT_FOUND: "No package matches this checkout session",
    CHECKOUT_NOT_COMPLETED: "Checkout session is not completed",
    PAYMENT_NOT_SUCCESSFUL: "Checkout payment was not successful",
    SUBSCRIPTION_ID_MISSING: "Checkout session has no subscription",
    CUSTOMER_ID_MISSING: "Stripe customer is missing",
    PRICE_ID_MISSING: "Checkout session has no price",
    CHECKOUT_USER_MISMATCH: "Checkout session belongs to another user",
    CANNOT_DELETE_LAST_CARD: "The only saved card cannot be removed",
    INVALID_PAYMENT_METHOD: "Payment method is not a card",
    STRIPE_NOT_CONFIGURED: "Stripe is not configured",
    STRIPE_ERROR: "Stripe request failed",
}


@dataclass(frozen=True)
class BillingResult(Generic[T]):
    """Outcome of a billing operation: a status tag plus an optional value."""

    status: str
    value: T | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in SUCCESS_STATUSES

    @property
    def http_status(self) -> int:
        return HTTP_STATUS_BY_RESULT.get(self.status, http_status.HTTP_200_OK)

    @property
    def detail(self) -> str:
        return self.message or DEFAULT_MESSAGES.get(self.status, self.status)

    @classmethod
    def success(cls, value: T | None = None, status: str = OK) -> "BillingResult[T]":
        return cls(status=status, value=value)

    @classmethod
    def failure(cls, status: str, message: str | None = None) -> "BillingResult[T]":
        return cls(status=status, message=message)

    @classmethod
    def from_integration_error(cls, error: Exception) -> "BillingResult[T]":
        """Map a StripeIntegrationError to ``stripe_not_configured`` or ``stripe_error``."""
        status = STRIPE_NOT_CONFIGURED if getattr(error, "not_configured", False) else STRIPE_ERROR
        return cls(status=status, message=str(error))
