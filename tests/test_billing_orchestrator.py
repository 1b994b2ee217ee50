"""Tests for billing runs across partners."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select, func

from retreat_billing.exceptions import GatewayError, PartnerNotFoundError
from retreat_billing.models import Invoice, InvoiceLineItem
from retreat_billing.services.billing_orchestrator import BillingOrchestrator, resolve_billing_cycle

CYCLE = date(2026, 11, 1)


@pytest.fixture
def orchestrator(session_factory, gateway, email_service):
    return BillingOrchestrator(session_factory=session_factory, gateway=gateway, email_service=email_service)


@pytest.fixture
def failing_for(gateway):
    """Make invoice creation fail for the given partner emails."""
    created = iter(range(1, 100))

    def _failing_for(*emails):
        async def create_invoice(payload, request_id=None):
            email = payload["primary_recipients"][0]["billing_info"]["email_address"]
            if email in emails:
                raise GatewayError(f"PayPal rejected invoice for {email}", status_code=500)
            remote_id = f"INV2-OK-{next(created)}"
            return {"id": remote_id, "href": f"https://www.paypal.com/invoice/p/#{remote_id}"}
        gateway.create_invoice.side_effect = create_invoice
    return _failing_for


async def invoices_by_partner(db):
    rows = await db.execute(select(Invoice.partner_id, Invoice.status, Invoice.paypal_invoice_id))
    return {partner_id: (status, remote_id) for partner_id, status, remote_id in rows.all()}


def test_resolve_billing_cycle():
    assert resolve_billing_cycle(date(2026, 7, 19)) == date(2026, 7, 1)
    assert resolve_billing_cycle(today=date(2026, 12, 10)) == date(2027, 1, 1)


@pytest.mark.asyncio
class TestRunBillingCycle:

    async def test_bills_every_partner_with_eligible_bookings(
        self, db, orchestrator, make_partner, make_booking, days_ago
    ):
        alpine = await make_partner(name="Alpine Lodge")
        zen = await make_partner(name="Zen Valley")
        quiet = await make_partner(name="Quiet Cove")
        await make_booking(alpine, days_ago(40))
        await make_booking(zen, days_ago(40))
        await make_booking(quiet, days_ago(2))

        result = await orchestrator.run_billing_cycle(cycle_override=CYCLE)

        assert result.billing_cycle == CYCLE
        assert result.total_partners == 2
        assert result.success_count == 2
        assert result.failure_count == 0
        invoices = await invoices_by_partner(db)
        assert set(invoices) == {alpine.id, zen.id}
        assert all(status == "sent" for status, _ in invoices.values())

    async def test_partial_batch_failure_is_isolated(
        self, db, orchestrator, failing_for, make_partner, make_booking, days_ago
    ):
        good = await make_partner(name="A Good Partner", email="a@example.com")
        bad = await make_partner(name="B Failing Partner", email="b@example.com")
        await make_booking(good, days_ago(40))
        await make_booking(bad, days_ago(40))
        failing_for("b@example.com")

        result = await orchestrator.run_billing_cycle(cycle_override=CYCLE)

        assert result.success_count == 1
        assert result.failure_count == 1
        assert len(result.errors) == 1
        assert result.errors[0].partner_id == bad.id
        assert result.errors[0].partner_name == "B Failing Partner"
        assert "b@example.com" in result.errors[0].error

        invoices = await invoices_by_partner(db)
        assert invoices[good.id][0] == "sent"
        assert invoices[bad.id] == ("pending", None)

    async def test_rerun_is_idempotent(self, db, orchestrator, gateway, make_partner, make_booking, days_ago):
        partner = await make_partner()
        await make_booking(partner, days_ago(40))

        await orchestrator.run_billing_cycle(cycle_override=CYCLE)
        second = await orchestrator.run_billing_cycle(cycle_override=CYCLE)

        assert second.total_partners == 0
        assert (await db.execute(select(func.count(Invoice.id)))).scalar() == 1
        assert gateway.create_invoice.await_count == 1

    async def test_partner_already_invoiced_for_cycle_is_skipped(
        self, db, orchestrator, gateway, make_partner, make_booking, make_invoice, days_ago
    ):
        partner = await make_partner()
        await make_invoice(partner, CYCLE, paypal_invoice_id="INV2-EARLIER")
        await make_booking(partner, days_ago(40))

        result = await orchestrator.run_billing_cycle(cycle_override=CYCLE)

        assert result.total_partners == 1
        assert result.success_count == 0
        assert result.skipped_count == 1
        assert result.failure_count == 0
        gateway.create_invoice.assert_not_awaited()

    async def test_empty_run(self, orchestrator):
        result = await orchestrator.run_billing_cycle(cycle_override=CYCLE)
        assert result.total_partners == 0
        assert result.errors == []


@pytest.mark.asyncio
class TestPublishPendingInvoices:

    async def test_republishes_stuck_invoice_without_recomputing(
        self, db, orchestrator, gateway, failing_for, make_partner, make_booking, days_ago
    ):
        partner = await make_partner(email="stuck@example.com")
        await make_booking(partner, days_ago(40))
        failing_for("stuck@example.com")
        await orchestrator.run_billing_cycle(cycle_override=CYCLE)

        failing_for()
        result = await orchestrator.publish_pending_invoices()

        assert result.checked == 1
        assert result.published_count == 1
        status, remote_id = (await invoices_by_partner(db))[partner.id]
        assert status == "sent"
        assert remote_id.startswith("INV2-OK-")
        assert (await db.execute(select(func.count(InvoiceLineItem.id)))).scalar() == 1

    async def test_still_failing_is_reported(
        self, orchestrator, failing_for, make_partner, make_booking, days_ago
    ):
        partner = await make_partner(name="Stuck Partner", email="stuck@example.com")
        await make_booking(partner, days_ago(40))
        failing_for("stuck@example.com")
        await orchestrator.run_billing_cycle(cycle_override=CYCLE)

        result = await orchestrator.publish_pending_invoices()

        assert result.failure_count == 1
        assert result.errors[0].partner_name == "Stuck Partner"


@pytest.mark.asyncio
class TestBillPartner:

    async def test_returns_invoice_with_line_items(self, orchestrator, make_partner, make_booking, days_ago):
        partner = await make_partner(commission_rate=Decimal("10"))
        await make_booking(partner, days_ago(40), final_net_revenue=Decimal("2000.00"))

        result = await orchestrator.bill_partner(partner.id, cycle_override=CYCLE)

        assert result.succeeded
        assert result.invoice.status == "sent"
        assert result.invoice.amount == Decimal("200.00")
        assert len(result.invoice.line_items) == 1

    async def test_nothing_to_bill(self, orchestrator, make_partner):
        partner = await make_partner()

        result = await orchestrator.bill_partner(partner.id, cycle_override=CYCLE)

        assert result.succeeded
        assert result.invoice is None

    async def test_gateway_failure_reported_not_raised(
        self, orchestrator, failing_for, make_partner, make_booking, days_ago
    ):
        partner = await make_partner(email="down@example.com")
        await make_booking(partner, days_ago(40))
        failing_for("down@example.com")

        result = await orchestrator.bill_partner(partner.id, cycle_override=CYCLE)

        assert not result.succeeded
        assert result.invoice.status == "pending"

    async def test_unknown_partner_raises(self, orchestrator):
        with pytest.raises(PartnerNotFoundError):
            await orchestrator.bill_partner(12345, cycle_override=CYCLE)


@pytest.mark.asyncio
async def test_reconcile_and_overdue_wrappers(orchestrator, gateway, make_partner, make_invoice):
    partner = await make_partner()
    await make_invoice(partner, date(2026, 8, 1), due_date=date(2026, 8, 4), paypal_invoice_id="INV2-1")

    overdue = await orchestrator.check_overdue_payments(as_of=date(2026, 9, 1))
    gateway.is_invoice_paid.return_value = True
    reconciled = await orchestrator.reconcile_payments()

    assert overdue == 1
    assert reconciled.paid_count == 1
