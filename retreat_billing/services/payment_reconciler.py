"""
Payment Reconciliation.

Polls the gateway for every ``sent`` invoice and records the ones the partner
has paid. Also serves the webhook path, where a paid event is only trusted
after re-querying the gateway.

An invoice only ever moves sent -> paid here; a paid invoice is never touched
again.
"""
import logging
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_billing.models.invoice import Invoice, InvoiceStatus
from retreat_billing.models.notifications import NotificationType
from retreat_billing.models.partner import Partner
from retreat_billing.schemas.billing import ReconciliationResult
from retreat_billing.services.billing_state_machine import transition_invoice
from retreat_billing.services.notification_service import NotificationService

logger = logging.getLogger(__name__)


class PaymentReconciler:
    """
    Marks invoices paid once the gateway reports them paid.

    Usage:
        reconciler = PaymentReconciler(db, PayPalClient.from_settings())
        result = await reconciler.reconcile_payments()
    """

    def __init__(self, db: AsyncSession, gateway):
        self.db = db
        self.gateway = gateway
        self.notifications = NotificationService(db)

    async def reconcile_payments(self) -> ReconciliationResult:
        """
        Check every sent invoice against the gateway, oldest first.

        Errors for one invoice are logged and counted; the pass continues.
        """
        result = await self.db.execute(
            select(Invoice.id, Invoice.paypal_invoice_id)
            .where(
                Invoice.status == InvoiceStatus.SENT.value,
                Invoice.paypal_invoice_id.isnot(None),
            )
            .order_by(Invoice.sent_at.asc(), Invoice.id.asc())
        )
        candidates = result.all()
        # Release the read transaction before talking to the gateway
        await self.db.commit()

        outcome = ReconciliationResult(checked=len(candidates))
        for invoice_id, remote_id in candidates:
            try:
                paid = await self.gateway.is_invoice_paid(remote_id)
                if not paid:
                    outcome.still_pending += 1
                    continue
                if await self._mark_paid(invoice_id):
                    outcome.paid_count += 1
            except Exception as e:
                await self.db.rollback()
                outcome.failed += 1
                logger.error(f"Error checking payment for invoice {invoice_id}: {e}")

        logger.info(
            f"Payment reconciliation: {outcome.checked} checked, {outcome.paid_count} paid, "
            f"{outcome.still_pending} still pending, {outcome.failed} failed"
        )
        return outcome

    async def confirm_remote_payment(self, remote_id: str) -> Optional[Invoice]:
        """
        Webhook path: verify a paid event with the gateway, then mark paid.

        Returns:
            The invoice when it is (now) paid, None when unknown or not paid remotely

        Raises:
            GatewayError: The gateway could not be queried
        """
        result = await self.db.execute(
            select(Invoice).where(Invoice.paypal_invoice_id == remote_id)
        )
        invoice = result.scalar_one_or_none()
        if invoice is None:
            logger.warning(f"Payment event for unknown PayPal invoice {remote_id}")
            return None
        invoice_id = invoice.id
        if invoice.status == InvoiceStatus.PAID.value:
            return invoice
        await self.db.commit()

        if not await self.gateway.is_invoice_paid(remote_id):
            logger.warning(f"Payment event for {remote_id} not confirmed by PayPal")
            return None

        await self._mark_paid(invoice_id)
        return await self.db.get(Invoice, invoice_id)

    async def _mark_paid(self, invoice_id: int) -> bool:
        """Apply sent -> paid under a row lock. False if someone else already did."""
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        invoice = result.scalar_one()
        if invoice.status != InvoiceStatus.SENT.value:
            await self.db.commit()
            return False

        transition_invoice(invoice, InvoiceStatus.PAID.value)
        await self.db.commit()
        logger.info(f"Invoice {invoice_id} marked as paid")

        partner = await self.db.get(Partner, invoice.partner_id)
        partner_name = partner.name if partner else f"Partner {invoice.partner_id}"
        try:
            await self.notifications.create_notification(
                NotificationType.INVOICE_PAID,
                title="Payment Received",
                message=f"{partner_name} paid invoice #{invoice_id} (${invoice.amount:,.2f})",
                partner_id=invoice.partner_id,
                invoice_id=invoice_id,
            )
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to record invoice_paid for invoice {invoice_id}: {e}")
        return True
