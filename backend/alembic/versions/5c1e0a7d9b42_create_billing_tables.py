"""create_billing_tables

Revision ID: 5c1e0a7d9b42
Revises:
Create Date: 2026-10-19 09:00:00.000000

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


# revision identifiers, used by Alembic.
revision: str = '5c1e0a7d9b42'
down_revision: Union[str, Sequence[str], None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column("created_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(), server_default=sa.func.now(), nullable=False),
    ]


def upgrade() -> None:
    op.create_table(
        "users",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        sa.Column("plan_type", sa.String(20), server_default="trial", nullable=False),
        sa.Column("access_expires_at", sa.DateTime(), nullable=True),
        *_timestamps(),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "packages",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("code", sa.String(50), nullable=False),
        sa.Column("name", sa.String(120), nullable=False),
        sa.Column("description", sa.Text(), nullable=True),
        sa.Column("stripe_product_id", sa.String(120), nullable=True),
        sa.Column("stripe_price_id", sa.String(120), nullable=True),
        sa.Column("billing_cycle", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("has_trial", sa.Boolean(), nullable=False),
        sa.Column("trial_period_days", sa.Integer(), nullable=False),
        sa.Column("is_active", sa.Boolean(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_packages_code", "packages", ["code"], unique=True)
    op.create_index("ix_packages_stripe_product_id", "packages", ["stripe_product_id"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column("user_id", sa.UUID(), sa.ForeignKey("users.id", ondelete="CASCADE"), nullable=False),
        sa.Column("package_id", sa.UUID(), sa.ForeignKey("packages.id", ondelete="RESTRICT"), nullable=False),
        sa.Column("stripe_customer_id", sa.String(120), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(120), nullable=False, unique=True),
        sa.Column("stripe_price_id", sa.String(120), nullable=False),
        sa.Column("status", sa.String(32), server_default="incomplete", nullable=False),
        sa.Column("billing_cycle", sa.String(20), nullable=False),
        sa.Column("amount", sa.Numeric(10, 2), nullable=False),
        sa.Column("currency", sa.String(3), nullable=False),
        sa.Column("current_period_start", sa.DateTime(), nullable=True),
        sa.Column("current_period_end", sa.DateTime(), nullable=True),
        sa.Column("cancel_at_period_end", sa.Boolean(), server_default=sa.false(), nullable=False),
        sa.Column("canceled_at", sa.DateTime(), nullable=True),
        sa.Column("trial_start", sa.DateTime(), nullable=True),
        sa.Column("trial_end", sa.DateTime(), nullable=True),
        sa.Column("default_payment_method_id", sa.String(120), nullable=True),
        sa.Column("cards", postgresql.JSONB(), server_default=sa.text("'[]'::jsonb"), nullable=False),
        sa.Column("latest_invoice_id", sa.String(120), nullable=True),
        sa.Column("latest_event_id", sa.String(120), nullable=True),
        sa.Column("is_current", sa.Boolean(), server_default=sa.false(), nullable=False),
        *_timestamps(),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_package_id", "subscriptions", ["package_id"])
    op.create_index("ix_subscriptions_stripe_customer_id", "subscriptions", ["stripe_customer_id"])
    op.create_index("ix_subscriptions_stripe_price_id", "subscriptions", ["stripe_price_id"])
    op.create_index("ix_subscriptions_status", "subscriptions", ["status"])
    op.create_index("ix_subscriptions_default_payment_method_id", "subscriptions", ["default_payment_method_id"])
    op.create_index("ix_subscriptions_user_status_current", "subscriptions", ["user_id", "status", "is_current"])
    # At most one current subscription per user
    op.create_index(
        "uq_subscriptions_one_current_per_user",
        "subscriptions",
        ["user_id"],
        unique=True,
        postgresql_where=sa.text("is_current"),
    )

    op.create_table(
        "subscription_transactions",
        sa.Column("id", sa.UUID(), primary_key=True),
        sa.Column(
            "subscription_id",
            sa.UUID(),
            sa.ForeignKey("subscriptions.id", ondelete="CASCADE"),
            nullable=False,
        ),
        sa.Column("stripe_customer_id", sa.String(120), nullable=False),
        sa.Column("stripe_subscription_id", sa.String(120), nullable=True),
        sa.Column("stripe_invoice_id", sa.String(120), nullable=False),
        sa.Column("stripe_payment_intent_id", sa.String(120), nullable=True),
        sa.Column("stripe_charge_id", sa.String(120), nullable=True),
        sa.Column("event_id", sa.String(120), nullable=True),
        sa.Column("invoice_number", sa.String(120), nullable=True),
        sa.Column("status", sa.String(32), nullable=True),
        sa.Column("billing_reason", sa.String(64), nullable=True),
        sa.Column("currency", sa.String(3), nullable=True),
        sa.Column("amount_paid", sa.Numeric(12, 2), nullable=True),
        sa.Column("amount_due", sa.Numeric(12, 2), nullable=True),
        sa.Column("hosted_invoice_url", sa.String(1024), nullable=True),
        sa.Column("invoice_pdf_url", sa.String(1024), nullable=True),
        sa.Column("invoice_created_at", sa.DateTime(), nullable=True),
        sa.Column("card", postgresql.JSONB(), nullable=True),
        *_timestamps(),
        sa.UniqueConstraint("subscription_id", "stripe_invoice_id", name="uq_subscription_transactions_invoice"),
    )
    op.create_index("ix_subscription_transactions_subscription_id", "subscription_transactions", ["subscription_id"])
    op.create_index("ix_subscription_transactions_event_id", "subscription_transactions", ["event_id"])


def downgrade() -> None:
    op.drop_table("subscription_transactions")
    op.drop_index("uq_subscriptions_one_current_per_user", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_table("packages")
    op.drop_table("users")
