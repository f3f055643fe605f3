"""Tests for Stripe webhook handler functions with mocked Stripe events."""

from datetime import datetime
from decimal import Decimal
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from stripe_payloads import make_event, make_invoice, make_payment_method

from app.billing.stripe_client import StripeIntegrationError
from app.billing.webhooks import handle_invoice_event
from app.models.subscription import SubscriptionTransaction


async def _transactions(db_session: AsyncSession) -> list[SubscriptionTransaction]:
    result = await db_session.execute(
        select(SubscriptionTransaction).execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


def _patch_retrieve(invoice=None, side_effect=None):
    return patch(
        "app.billing.webhooks.retrieve_invoice",
        new_callable=AsyncMock,
        return_value=invoice,
        side_effect=side_effect,
    )


class TestIgnoredEvents:
    """Test events that are acknowledged without processing."""

    @pytest.mark.asyncio
    async def test_unhandled_event_type(self, db_session: AsyncSession):
        event = make_event("customer.created", {"id": "cus_001"})
        with _patch_retrieve() as mock_retrieve:
            result = await handle_invoice_event(db_session, event)

        assert result.status == "ignored"
        assert result.ok
        mock_retrieve.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_invoice_without_id(self, db_session: AsyncSession):
        event = make_event("invoice.paid", {"object": "invoice"})
        with _patch_retrieve() as mock_retrieve:
            result = await handle_invoice_event(db_session, event)

        assert result.status == "ignored"
        mock_retrieve.assert_not_awaited()


class TestInvoicePaid:
    """Test recording invoice events as transactions."""

    @pytest.mark.asyncio
    async def test_records_transaction(self, db_session: AsyncSession, test_user, subscription_factory):
        """invoice.paid creates a transaction on the matching subscription."""
        sub = await subscription_factory(test_user, "sub_001")
        invoice = make_invoice(payment_method=make_payment_method())
        event = make_event("invoice.paid", invoice, event_id="evt_paid_1")

        with _patch_retrieve(invoice) as mock_retrieve:
            result = await handle_invoice_event(db_session, event)

        assert result.status == "processed"
        mock_retrieve.assert_awaited_once_with("in_001")

        tx = result.value
        assert tx.subscription_id == sub.id
        assert tx.stripe_invoice_id == "in_001"
        assert tx.event_id == "evt_paid_1"
        assert tx.status == "paid"
        assert tx.amount_paid == Decimal("29.00")
        assert tx.currency == "usd"
        assert tx.stripe_payment_intent_id == "pi_in_001"
        assert tx.stripe_charge_id == "ch_in_001"
        assert tx.invoice_created_at == datetime(2026, 1, 1)
        assert tx.card["last4"] == "4242"

        assert sub.latest_invoice_id == "in_001"
        assert sub.latest_event_id == "evt_paid_1"
        assert [t.stripe_invoice_id for t in sub.transactions] == ["in_001"]

    @pytest.mark.asyncio
    async def test_fetched_invoice_wins_over_payload(
        self, db_session: AsyncSession, test_user, subscription_factory
    ):
        await subscription_factory(test_user, "sub_001")
        payload = make_invoice(status="open")
        event = make_event("invoice.paid", payload)

        with _patch_retrieve(make_invoice(status="paid")):
            result = await handle_invoice_event(db_session, event)

        assert result.value.status == "paid"

    @pytest.mark.asyncio
    async def test_duplicate_event_is_skipped(self, db_session: AsyncSession, test_user, subscription_factory):
        """Redelivery of an already recorded event does nothing."""
        await subscription_factory(test_user, "sub_001")
        invoice = make_invoice()
        event = make_event("invoice.paid", invoice, event_id="evt_dup")

        with _patch_retrieve(invoice):
            first = await handle_invoice_event(db_session, event)
        with _patch_retrieve(invoice) as mock_retrieve:
            second = await handle_invoice_event(db_session, event)

        assert first.status == "processed"
        assert second.status == "duplicate_event"
        mock_retrieve.assert_not_awaited()
        assert len(await _transactions(db_session)) == 1

    @pytest.mark.asyncio
    async def test_new_event_same_invoice_updates_in_place(
        self, db_session: AsyncSession, test_user, subscription_factory
    ):
        """A later event for the same invoice updates the one transaction row."""
        await subscription_factory(test_user, "sub_001")

        with _patch_retrieve(make_invoice(status="open", amount_paid=0)):
            finalized = make_event("invoice.finalized", make_invoice(), event_id="evt_1")
            await handle_invoice_event(db_session, finalized)
        with _patch_retrieve(make_invoice(status="paid")):
            paid = make_event("invoice.paid", make_invoice(), event_id="evt_2")
            result = await handle_invoice_event(db_session, paid)

        rows = await _transactions(db_session)
        assert len(rows) == 1
        assert rows[0].id == result.value.id
        assert rows[0].status == "paid"
        assert rows[0].event_id == "evt_2"
        assert rows[0].amount_paid == Decimal("29.00")

    @pytest.mark.asyncio
    async def test_falls_back_to_customer(self, db_session: AsyncSession, test_user, subscription_factory):
        """An invoice for an unknown subscription maps via the customer's latest subscription."""
        sub = await subscription_factory(test_user, "sub_001", stripe_customer_id="cus_fallback")
        invoice = make_invoice(customer="cus_fallback", subscription="sub_unknown")

        with _patch_retrieve(invoice):
            result = await handle_invoice_event(db_session, make_event("invoice.payment_failed", invoice))

        assert result.status == "processed"
        assert result.value.subscription_id == sub.id
        assert result.value.stripe_subscription_id == "sub_unknown"

    @pytest.mark.asyncio
    async def test_not_mapped(self, db_session: AsyncSession):
        invoice = make_invoice(customer="cus_nobody", subscription="sub_nobody")

        with _patch_retrieve(invoice):
            result = await handle_invoice_event(db_session, make_event("invoice.paid", invoice))

        assert result.status == "not_mapped"
        assert result.ok
        assert await _transactions(db_session) == []

    @pytest.mark.asyncio
    async def test_stripe_failure_is_reported(self, db_session: AsyncSession, test_user, subscription_factory):
        """A failed invoice fetch is a non-success so Stripe redelivers."""
        await subscription_factory(test_user, "sub_001")
        invoice = make_invoice()

        with _patch_retrieve(side_effect=StripeIntegrationError("timeout")):
            result = await handle_invoice_event(db_session, make_event("invoice.paid", invoice))

        assert not result.ok
        assert result.status == "stripe_error"
        assert result.http_status == 502
        assert await _transactions(db_session) == []

    @pytest.mark.asyncio
    async def test_distinct_invoices_get_own_rows(self, db_session: AsyncSession, test_user, subscription_factory):
        """Each distinct invoice gets its own row."""
        await subscription_factory(test_user, "sub_001")
        for invoice_id in ("in_001", "in_002"):
            invoice = make_invoice(invoice_id=invoice_id)
            with _patch_retrieve(invoice):
                await handle_invoice_event(db_session, make_event("invoice.paid", invoice))

        count = (
            await db_session.execute(select(func.count()).select_from(SubscriptionTransaction))
        ).scalar_one()
        assert count == 2
