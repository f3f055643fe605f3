"""Card ledger — saved-card normalisation, merging and default resolution.

Cards are stored on each subscription as a JSON list. The helpers here keep
that list free of duplicate payment method ids and decide which card is the
default when Stripe and the local record disagree.
"""

import logging
import uuid
from collections.abc import Iterable

from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession

from app.billing.stripe_objects import SubscriptionSnapshot
from app.schemas.billing import CardResponse, SavedCard
from app.services.subscription_service import list_user_subscriptions

logger = logging.getLogger(__name__)


def normalize_cards(raw: Iterable | None) -> list[SavedCard]:
    """Validate stored card entries, dropping any that are malformed."""
    cards: list[SavedCard] = []
    for entry in raw or []:
        if isinstance(entry, SavedCard):
            cards.append(entry)
            continue
        try:
            cards.append(SavedCard.model_validate(entry))
        except ValidationError:
            logger.warning("Dropping malformed stored card entry: %r", entry)
    return cards


def dedupe_cards(cards: Iterable[SavedCard]) -> list[SavedCard]:
    """Keep the first occurrence of each payment method id, preserving order."""
    seen: set[str] = set()
    result: list[SavedCard] = []
    for card in cards:
        if card.payment_method_id in seen:
            continue
        seen.add(card.payment_method_id)
        result.append(card)
    return result


def merge_card(existing: Iterable[SavedCard], card: SavedCard) -> list[SavedCard]:
    """Put ``card`` first and drop any older entry with the same id."""
    return [card, *[c for c in existing if c.payment_method_id != card.payment_method_id]]


def dump_cards(cards: Iterable[SavedCard]) -> list[dict]:
    return [card.model_dump() for card in cards]


def find_card(cards: Iterable[SavedCard], payment_method_id: str) -> SavedCard | None:
    return next((c for c in cards if c.payment_method_id == payment_method_id), None)


def cards_with_default(cards: Iterable[SavedCard], default_id: str | None) -> list[CardResponse]:
    """Project ``is_default`` onto the card matching ``default_id`` (at most one)."""
    return [
        CardResponse(**card.model_dump(), is_default=default_id is not None and card.payment_method_id == default_id)
        for card in cards
    ]


def resolve_default_payment_method_id(snapshot: SubscriptionSnapshot | None, fallback: str | None) -> str | None:
    """Pick the default payment method id, first non-null wins.

    Order: the subscription's own default, the latest invoice's payment
    intent method, the customer's invoice-settings default, then ``fallback``.
    """
    if snapshot is None:
        return fallback
    invoice_pm = snapshot.latest_invoice.payment_method_id if snapshot.latest_invoice else None
    return (
        snapshot.default_payment_method_id
        or invoice_pm
        or snapshot.customer_default_payment_method_id
        or fallback
    )


async def collect_known_cards(
    db: AsyncSession, user_id: uuid.UUID, preferred_customer_id: str | None
) -> list[SavedCard]:
    """Gather cards across all of a user's subscriptions.

    Subscriptions under ``preferred_customer_id`` come first, then the most
    recently updated; the first occurrence of a payment method id wins.
    """
    subscriptions = await list_user_subscriptions(db, user_id)
    ordered = sorted(
        subscriptions,
        key=lambda s: (
            s.stripe_customer_id != preferred_customer_id if preferred_customer_id else False,
            -(s.updated_at.timestamp() if s.updated_at else 0),
        ),
    )
    return dedupe_cards(card for sub in ordered for card in normalize_cards(sub.cards))
