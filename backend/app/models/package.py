"""Package model — billable catalog entry mapped to a Stripe product/price."""

from decimal import Decimal

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import Mapped, mapped_column, validates

from app.database import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Package(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """A sellable plan. Checkout metadata refers to it by ``code``."""

    __tablename__ = "packages"

    code: Mapped[str] = mapped_column(String(50), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(120), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Stripe catalog identifiers
    stripe_product_id: Mapped[str | None] = mapped_column(String(120), index=True, nullable=True)
    stripe_price_id: Mapped[str | None] = mapped_column(String(120), nullable=True)

    # Pricing
    billing_cycle: Mapped[str] = mapped_column(String(20), nullable=False, default="monthly")
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, default=Decimal("0"))
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")

    has_trial: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    trial_period_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    @validates("code")
    def _normalize_code(self, key: str, value: str) -> str:
        return value.strip().lower()

    def __repr__(self) -> str:
        return f"<Package code={self.code!r} cycle={self.billing_cycle} amount={self.amount} {self.currency}>"
