"""Tests for saved-card list helpers and default resolution."""

from datetime import datetime

import pytest
from sqlalchemy.ext.asyncio import AsyncSession
from stripe_payloads import make_invoice, make_payment_method, make_subscription

from app.billing.cards import (
    cards_with_default,
    collect_known_cards,
    dedupe_cards,
    dump_cards,
    find_card,
    merge_card,
    normalize_cards,
    resolve_default_payment_method_id,
)
from app.billing.stripe_objects import parse_subscription
from app.schemas.billing import SavedCard


def _card(pm_id: str, last4: str = "4242") -> SavedCard:
    return SavedCard(payment_method_id=pm_id, brand="visa", last4=last4, exp_month=12, exp_year=2030)


def _stored(pm_id: str, last4: str = "4242") -> dict:
    return _card(pm_id, last4).model_dump()


class TestNormalizeCards:
    """Test validation of stored card entries."""

    def test_drops_malformed_entries(self):
        cards = normalize_cards([_stored("pm_a"), {"payment_method_id": "pm_b"}, "junk"])
        assert [c.payment_method_id for c in cards] == ["pm_a"]

    def test_none_is_empty(self):
        assert normalize_cards(None) == []

    def test_normalizes_brand_case(self):
        cards = normalize_cards([{**_stored("pm_a"), "brand": " MasterCard "}])
        assert cards[0].brand == "mastercard"


class TestCardListOperations:
    """Test dedupe, merge and default projection."""

    def test_dedupe_keeps_first_occurrence(self):
        cards = dedupe_cards([_card("pm_a", "1111"), _card("pm_b"), _card("pm_a", "2222")])
        assert [c.payment_method_id for c in cards] == ["pm_a", "pm_b"]
        assert cards[0].last4 == "1111"

    def test_merge_puts_card_first_and_replaces_old_entry(self):
        cards = merge_card([_card("pm_a"), _card("pm_b", "1111")], _card("pm_b", "9999"))
        assert [c.payment_method_id for c in cards] == ["pm_b", "pm_a"]
        assert cards[0].last4 == "9999"

    def test_merge_is_idempotent(self):
        existing = [_card("pm_a"), _card("pm_b", "1111")]
        once = merge_card(existing, _card("pm_b", "9999"))
        assert merge_card(once, _card("pm_b", "9999")) == once

    def test_find_card(self):
        cards = [_card("pm_a"), _card("pm_b")]
        assert find_card(cards, "pm_b").payment_method_id == "pm_b"
        assert find_card(cards, "pm_missing") is None

    def test_at_most_one_default(self):
        projected = cards_with_default([_card("pm_a"), _card("pm_b")], "pm_b")
        assert [c.is_default for c in projected] == [False, True]

    def test_no_default_when_id_not_in_list(self):
        projected = cards_with_default([_card("pm_a")], "pm_gone")
        assert not any(c.is_default for c in projected)

    def test_no_default_when_id_missing(self):
        projected = cards_with_default([_card("pm_a")], None)
        assert projected[0].is_default is False

    def test_dump_round_trips_through_normalize(self):
        cards = [_card("pm_a"), _card("pm_b")]
        assert normalize_cards(dump_cards(cards)) == cards


class TestResolveDefault:
    """Test default payment method precedence."""

    def test_subscription_default_wins(self):
        snapshot = parse_subscription(
            make_subscription(
                default_payment_method="pm_sub",
                latest_invoice=make_invoice(payment_method="pm_inv"),
                customer={"id": "cus_001", "invoice_settings": {"default_payment_method": "pm_cust"}},
            )
        )
        assert resolve_default_payment_method_id(snapshot, "pm_stored") == "pm_sub"

    def test_invoice_then_customer_then_fallback(self):
        snapshot = parse_subscription(
            make_subscription(
                latest_invoice=make_invoice(payment_method=make_payment_method("pm_inv")),
                customer={"id": "cus_001", "invoice_settings": {"default_payment_method": "pm_cust"}},
            )
        )
        assert resolve_default_payment_method_id(snapshot, "pm_stored") == "pm_inv"

        snapshot = parse_subscription(
            make_subscription(customer={"id": "cus_001", "invoice_settings": {"default_payment_method": "pm_cust"}})
        )
        assert resolve_default_payment_method_id(snapshot, "pm_stored") == "pm_cust"

        snapshot = parse_subscription(make_subscription())
        assert resolve_default_payment_method_id(snapshot, "pm_stored") == "pm_stored"

    def test_no_snapshot_uses_fallback(self):
        assert resolve_default_payment_method_id(None, "pm_stored") == "pm_stored"


class TestCollectKnownCards:
    """Test gathering cards across a user's subscriptions."""

    @pytest.mark.asyncio
    async def test_preferred_customer_first_then_most_recent(
        self, db_session: AsyncSession, test_user, subscription_factory
    ):
        """Cards under the preferred customer win; the rest follow by recency."""
        await subscription_factory(
            test_user,
            "sub_old",
            stripe_customer_id="cus_other",
            is_current=False,
            status="canceled",
            cards=[_stored("pm_shared", "1111"), _stored("pm_other")],
            updated_at=datetime(2026, 3, 1),
        )
        await subscription_factory(
            test_user,
            "sub_new",
            stripe_customer_id="cus_001",
            cards=[_stored("pm_shared", "2222")],
            updated_at=datetime(2026, 1, 1),
        )

        cards = await collect_known_cards(db_session, test_user.id, "cus_001")
        assert [c.payment_method_id for c in cards] == ["pm_shared", "pm_other"]
        assert cards[0].last4 == "2222"
