"""User model — account identity and billing access flags."""

from datetime import datetime

from sqlalchemy import Boolean, String
from sqlalchemy.orm import Mapped, mapped_column

from app.database import Base, TimestampMixin, UUIDPrimaryKeyMixin

PLAN_TRIAL = "trial"
PLAN_PAID = "paid"


class User(UUIDPrimaryKeyMixin, TimestampMixin, Base):
    """CRM account. Billing only reads identity and writes the access flags."""

    __tablename__ = "users"

    email: Mapped[str] = mapped_column(String(255), unique=True, index=True, nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    # Access flags maintained by the subscription reconciliation
    plan_type: Mapped[str] = mapped_column(String(20), nullable=False, default=PLAN_TRIAL, server_default=PLAN_TRIAL)
    access_expires_at: Mapped[datetime | None] = mapped_column(nullable=True)

    def __repr__(self) -> str:
        return f"<User id={self.id} email={self.email!r} plan_type={self.plan_type!r}>"
