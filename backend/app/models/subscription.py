"""Subscription models — locally persisted mirror of Stripe subscriptions."""

import uuid
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Boolean, ForeignKey, Index, Numeric, String, UniqueConstraint, false, text
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

JSONVariant = JSON().with_variant(JSONB(), "postgresql")


class Subscription(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """One row per Stripe subscription id; at most one per user is current."""

    __tablename__ = "subscriptions"
    __table_args__ = (
        # At most one current subscription per user
        Index(
            "uq_subscriptions_one_current_per_user",
            "user_id",
            unique=True,
            postgresql_where=text("is_current"),
            sqlite_where=text("is_current"),
        ),
        Index("ix_subscriptions_user_status_current", "user_id", "status", "is_current"),
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    package_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("packages.id", ondelete="RESTRICT"),
        nullable=False,
        index=True,
    )

    # Stripe identifiers
    stripe_customer_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)
    stripe_subscription_id: Mapped[str] = mapped_column(String(120), unique=True, nullable=False)
    stripe_price_id: Mapped[str] = mapped_column(String(120), nullable=False, index=True)

    # Lifecycle
    status: Mapped[str] = mapped_column(String(32), nullable=False, server_default="incomplete", index=True)
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)

    # Billing period (naive UTC)
    current_period_start: Mapped[datetime | None] = mapped_column(nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(nullable=True)
    cancel_at_period_end: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false())
    canceled_at: Mapped[datetime | None] = mapped_column(nullable=True)
    trial_start: Mapped[datetime | None] = mapped_column(nullable=True)
    trial_end: Mapped[datetime | None] = mapped_column(nullable=True)

    # Payment methods
    default_payment_method_id: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)
    cards: Mapped[list[dict]] = mapped_column(JSONVariant, nullable=False, default=list)

    # History pointers
    latest_invoice_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    latest_event_id: Mapped[str | None] = mapped_column(String(120), nullable=True)

    is_current: Mapped[bool] = mapped_column(Boolean, nullable=False, server_default=false())

    # Relationships
    package: Mapped["Package"] = relationship(lazy="selectin")  # type: ignore[name-defined]  # noqa: F821
    transactions: Mapped[list["SubscriptionTransaction"]] = relationship(
        back_populates="subscription",
        lazy="selectin",
        cascade="all, delete-orphan",
        order_by="SubscriptionTransaction.invoice_created_at.desc()",
    )

    def __repr__(self) -> str:
        return (
            f"<Subscription(id={self.id}, user_id={self.user_id}, "
            f"stripe_subscription_id={self.stripe_subscription_id}, status={self.status}, "
            f"is_current={self.is_current})>"
        )


class SubscriptionTransaction(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """Invoice-derived payment record, unique per subscription and invoice."""

    __tablename__ = "subscription_transactions"
    __table_args__ = (
        UniqueConstraint("subscription_id", "stripe_invoice_id", name="uq_subscription_transactions_invoice"),
    )

    subscription_id: Mapped[uuid.UUID] = mapped_column(
        ForeignKey("subscriptions.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )

    stripe_customer_id: Mapped[str] = mapped_column(String(120), nullable=False)
    stripe_subscription_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    stripe_invoice_id: Mapped[str] = mapped_column(String(120), nullable=False)
    stripe_payment_intent_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    stripe_charge_id: Mapped[str | None] = mapped_column(String(120), nullable=True)
    event_id: Mapped[str | None] = mapped_column(String(120), nullable=True, index=True)

    invoice_number: Mapped[str | None] = mapped_column(String(120), nullable=True)
    status: Mapped[str | None] = mapped_column(String(32), nullable=True)
    billing_reason: Mapped[str | None] = mapped_column(String(64), nullable=True)
    currency: Mapped[str | None] = mapped_column(String(3), nullable=True)
    amount_paid: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    amount_due: Mapped[Decimal | None] = mapped_column(Numeric(12, 2), nullable=True)
    hosted_invoice_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    invoice_pdf_url: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    invoice_created_at: Mapped[datetime | None] = mapped_column(nullable=True)

    # Point-in-time payment method snapshot; every key may be null
    card: Mapped[dict | None] = mapped_column(JSONVariant, nullable=True)

    subscription: Mapped["Subscription"] = relationship(back_populates="transactions")

    def __repr__(self) -> str:
        return (
            f"<SubscriptionTransaction(invoice={self.stripe_invoice_id}, "
            f"status={self.status}, amount_paid={self.amount_paid})>"
        )
