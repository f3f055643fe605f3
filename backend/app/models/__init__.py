"""SQLAlchemy models for Cliento billing.

All models are imported here so that Alembic's autogenerate can discover
them via Base.metadata. If you add a new model, import it in this file.
"""

from app.models.package import Package
from app.models.subscription import Subscription, SubscriptionTransaction
from app.models.user import User

__all__ = [
    "Package",
    "Subscription",
    "SubscriptionTransaction",
    "User",
]
