"""Tests for payment reconciliation and webhook confirmation."""

from datetime import date, datetime, timedelta, timezone
from decimal import Decimal

import pytest
from sqlalchemy import select

from retreat_billing.exceptions import GatewayError, GatewayTimeoutError
from retreat_billing.models import Invoice, Notification
from retreat_billing.services.payment_reconciler import PaymentReconciler


async def statuses(db):
    rows = await db.execute(select(Invoice.paypal_invoice_id, Invoice.status))
    return dict(rows.all())


@pytest.mark.asyncio
class TestReconcilePayments:

    async def test_marks_paid_and_counts(self, db, gateway, make_partner, make_invoice):
        partner = await make_partner(name="Mountain Calm")
        await make_invoice(partner, date(2026, 8, 1), paypal_invoice_id="PAID-1")
        await make_invoice(partner, date(2026, 9, 1), paypal_invoice_id="OPEN-1")
        await make_invoice(partner, date(2026, 10, 1), status="pending")
        gateway.is_invoice_paid.side_effect = lambda remote_id: remote_id.startswith("PAID")

        result = await PaymentReconciler(db, gateway).reconcile_payments()

        assert result.checked == 2
        assert result.paid_count == 1
        assert result.still_pending == 1
        assert result.failed == 0
        assert (await statuses(db))["PAID-1"] == "paid"
        assert (await statuses(db))["OPEN-1"] == "sent"

        paid = (await db.execute(select(Invoice).where(Invoice.paypal_invoice_id == "PAID-1"))).scalar_one()
        assert paid.paid_at is not None
        notification = (await db.execute(select(Notification))).scalar_one()
        assert notification.notification_type == "invoice_paid"
        assert "Mountain Calm" in notification.message

    async def test_paid_invoices_are_never_rechecked(self, db, gateway, make_partner, make_invoice):
        partner = await make_partner()
        await make_invoice(partner, date(2026, 8, 1), paypal_invoice_id="PAID-1")
        gateway.is_invoice_paid.return_value = True
        reconciler = PaymentReconciler(db, gateway)

        await reconciler.reconcile_payments()
        gateway.is_invoice_paid.return_value = False
        second = await reconciler.reconcile_payments()

        assert second.checked == 0
        assert (await statuses(db))["PAID-1"] == "paid"
        assert gateway.is_invoice_paid.await_count == 1

    async def test_gateway_error_skips_invoice(self, db, gateway, make_partner, make_invoice):
        partner = await make_partner()
        await make_invoice(partner, date(2026, 8, 1), paypal_invoice_id="BROKEN")
        await make_invoice(partner, date(2026, 9, 1), paypal_invoice_id="PAID-2")

        def is_paid(remote_id):
            if remote_id == "BROKEN":
                raise GatewayTimeoutError("timed out")
            return True
        gateway.is_invoice_paid.side_effect = is_paid

        result = await PaymentReconciler(db, gateway).reconcile_payments()

        assert result.failed == 1
        assert result.paid_count == 1
        assert await statuses(db) == {"BROKEN": "sent", "PAID-2": "paid"}

    async def test_oldest_sent_checked_first(self, db, gateway, make_partner, make_invoice):
        partner = await make_partner()
        newer = await make_invoice(partner, date(2026, 9, 1), paypal_invoice_id="NEWER")
        older = await make_invoice(partner, date(2026, 10, 1), paypal_invoice_id="OLDER")
        now = datetime.now(timezone.utc)
        newer.sent_at = now
        older.sent_at = now - timedelta(days=20)
        await db.commit()

        await PaymentReconciler(db, gateway).reconcile_payments()

        checked = [call.args[0] for call in gateway.is_invoice_paid.await_args_list]
        assert checked == ["OLDER", "NEWER"]


@pytest.mark.asyncio
class TestConfirmRemotePayment:

    async def test_confirmed_payment_marks_paid(self, db, gateway, make_partner, make_invoice):
        partner = await make_partner()
        await make_invoice(partner, date(2026, 8, 1), paypal_invoice_id="INV2-1")
        gateway.is_invoice_paid.return_value = True

        invoice = await PaymentReconciler(db, gateway).confirm_remote_payment("INV2-1")

        assert invoice.status == "paid"
        gateway.is_invoice_paid.assert_awaited_once_with("INV2-1")

    async def test_unconfirmed_event_is_ignored(self, db, gateway, make_partner, make_invoice):
        partner = await make_partner()
        await make_invoice(partner, date(2026, 8, 1), paypal_invoice_id="INV2-1")
        gateway.is_invoice_paid.return_value = False

        assert await PaymentReconciler(db, gateway).confirm_remote_payment("INV2-1") is None
        assert (await statuses(db))["INV2-1"] == "sent"

    async def test_unknown_invoice(self, db, gateway):
        assert await PaymentReconciler(db, gateway).confirm_remote_payment("NOPE") is None
        gateway.is_invoice_paid.assert_not_awaited()

    async def test_duplicate_event_is_a_no_op(self, db, gateway, make_partner, make_invoice):
        partner = await make_partner()
        await make_invoice(partner, date(2026, 8, 1), paypal_invoice_id="INV2-1", status="paid")

        invoice = await PaymentReconciler(db, gateway).confirm_remote_payment("INV2-1")

        assert invoice.status == "paid"
        gateway.is_invoice_paid.assert_not_awaited()
        assert (await db.execute(select(Notification))).first() is None

    async def test_gateway_error_propagates(self, db, gateway, make_partner, make_invoice):
        partner = await make_partner()
        await make_invoice(partner, date(2026, 8, 1), paypal_invoice_id="INV2-1")
        gateway.is_invoice_paid.side_effect = GatewayError("unavailable")

        with pytest.raises(GatewayError):
            await PaymentReconciler(db, gateway).confirm_remote_payment("INV2-1")
        assert (await statuses(db))["INV2-1"] == "sent"
