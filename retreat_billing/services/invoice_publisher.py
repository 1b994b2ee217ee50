"""
External invoice publishing.

Takes a committed, locally ``pending`` invoice to the PayPal gateway:
create -> send (skipped when PayPal already sent it) -> mark ``sent``.
Notification and partner email are dispatched only after the ``sent`` state
has been committed.

Publishing is idempotent by remote id: an invoice that already has one is
never submitted again, and the create call carries a PayPal-Request-Id derived
from the local invoice id so a retried create returns the same remote invoice.
"""
import logging
from datetime import date
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_billing.config import settings
from retreat_billing.models.invoice import Invoice, InvoiceLineItem, InvoiceStatus
from retreat_billing.models.notifications import NotificationType
from retreat_billing.models.partner import CommissionMode, Partner
from retreat_billing.services.billing_state_machine import transition_invoice
from retreat_billing.services.commission_calculator import to_money
from retreat_billing.services.notification_service import NotificationService

logger = logging.getLogger(__name__)

REMOTE_DRAFT_STATUS = "DRAFT"


def _money(value) -> str:
    return str(to_money(value))


def _rate(value: Decimal) -> str:
    return f"{Decimal(value).normalize():f}"


def describe_commission(item: InvoiceLineItem) -> str:
    if item.commission_mode == CommissionMode.FLAT_RATE.value:
        return f"Flat rate: ${to_money(item.flat_rate_amount):,.2f}"
    return f"{_rate(item.commission_rate)}% of ${to_money(item.revenue):,.2f}"


def remote_request_id(invoice: Invoice) -> str:
    return f"retreat-invoice-{invoice.id}"


def build_invoice_payload(
    partner: Partner,
    invoice: Invoice,
    line_items: List[InvoiceLineItem],
    invoice_date: Optional[date] = None,
) -> Dict[str, Any]:
    """
    Build the Invoicing v2 payload: one remote item per booking.
    """
    currency = settings.CURRENCY_CODE
    invoice_date = invoice_date or date.today()
    billing_month = invoice.billing_cycle.strftime("%B %Y")
    count = len(line_items)

    items = [
        {
            "name": f"Retreat - {item.guest_name}",
            "description": (
                f"Date: {item.retreat_date.isoformat()}\n"
                f"Revenue: ${to_money(item.revenue):,.2f}\n"
                f"Commission: {describe_commission(item)}"
            ),
            "quantity": "1",
            "unit_amount": {
                "currency_code": currency,
                "value": _money(item.line_item_amount),
            },
        }
        for item in line_items
    ]

    invoicer: Dict[str, Any] = {"name": {"given_name": settings.BUSINESS_NAME}}
    if settings.PAYPAL_MERCHANT_EMAIL:
        invoicer["email_address"] = settings.PAYPAL_MERCHANT_EMAIL

    return {
        "detail": {
            "invoice_number": f"INV-{invoice.id}",
            "invoice_date": invoice_date.isoformat(),
            "payment_term": {"due_date": invoice.due_date.isoformat()},
            "currency_code": currency,
            "note": (
                f"Monthly commission invoice for {billing_month}\n"
                f"{count} completed retreat{'s' if count != 1 else ''}"
            ),
            "memo": f"Thank you for your partnership with {settings.BUSINESS_NAME}",
        },
        "invoicer": invoicer,
        "primary_recipients": [
            {
                "billing_info": {
                    "name": {"given_name": partner.name},
                    "email_address": partner.email,
                },
            },
        ],
        "items": items,
        "configuration": {
            "partial_payment": {"allow_partial_payment": False},
            "allow_tip": False,
            "tax_calculated_after_discount": True,
            "tax_inclusive": False,
        },
        "amount": {
            "breakdown": {
                "item_total": {
                    "currency_code": currency,
                    "value": _money(invoice.amount),
                },
            },
        },
    }


class InvoicePublisher:
    """
    Publishes consolidated invoices to the payment gateway.

    Usage:
        publisher = InvoicePublisher(db, PayPalClient.from_settings(), get_email_service())
        remote_id = await publisher.publish(invoice, invoice.line_items)
    """

    def __init__(self, db: AsyncSession, gateway, email_service=None):
        self.db = db
        self.gateway = gateway
        self.email_service = email_service
        self.notifications = NotificationService(db)

    async def publish(
        self,
        invoice: Invoice,
        line_items: List[InvoiceLineItem],
        partner: Optional[Partner] = None,
    ) -> str:
        """
        Create and send the remote invoice, then mark the local one ``sent``.

        Gateway errors propagate unchanged; the invoice stays ``pending`` with
        no remote id so the next attempt starts over cleanly.

        Returns:
            The remote invoice id
        """
        if invoice.paypal_invoice_id:
            return invoice.paypal_invoice_id

        if partner is None:
            partner = await self.db.get(Partner, invoice.partner_id)

        payload = build_invoice_payload(partner, invoice, line_items)
        created = await self.gateway.create_invoice(payload, request_id=remote_request_id(invoice))
        remote_id = created["id"]
        remote_url = created.get("href") or f"https://www.paypal.com/invoice/p/#{remote_id}"

        # A repeated request id returns the invoice from an earlier attempt, which
        # may already have been sent before that attempt failed to commit
        remote = await self.gateway.get_invoice(remote_id)
        remote_status = remote.get("status")
        if remote_status == REMOTE_DRAFT_STATUS:
            await self.gateway.send_invoice(remote_id)
        else:
            logger.info(f"PayPal invoice {remote_id} is already {remote_status}, not sending again")

        # Re-read under a row lock so two racing publishers cannot both apply pending -> sent
        result = await self.db.execute(
            select(Invoice)
            .where(Invoice.id == invoice.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        current = result.scalar_one()
        if current.status != InvoiceStatus.PENDING.value:
            # Releases the lock; nothing was changed
            await self.db.commit()
            logger.info(f"Invoice {invoice.id} was already published as {current.paypal_invoice_id}")
            return current.paypal_invoice_id

        transition_invoice(
            current,
            InvoiceStatus.SENT.value,
            paypal_invoice_id=remote_id,
            paypal_invoice_url=remote_url,
        )
        await self.db.commit()
        logger.info(f"Invoice {invoice.id} published to PayPal as {remote_id}")

        await self._dispatch_side_effects(partner, current, len(line_items), remote_url)
        return remote_id

    async def _dispatch_side_effects(
        self,
        partner: Partner,
        invoice: Invoice,
        line_item_count: int,
        remote_url: str,
    ) -> None:
        """Email + notification for a committed invoice. Failures are logged only."""
        invoice_id = invoice.id
        message = (
            f"Consolidated invoice for {partner.name} created with "
            f"{line_item_count} line items (${invoice.amount:,.2f})"
        )

        if self.email_service is not None:
            try:
                sent = self.email_service.send_invoice_notification(partner, invoice, remote_url)
                if not sent:
                    logger.warning(f"Invoice email for invoice {invoice_id} was not delivered")
            except Exception as e:
                logger.error(f"Invoice email for invoice {invoice_id} failed: {e}")

        try:
            await self.notifications.create_notification(
                NotificationType.INVOICE_CREATED,
                title="Invoice Created",
                message=message,
                partner_id=partner.id,
                invoice_id=invoice_id,
            )
        except Exception as e:
            await self.db.rollback()
            logger.error(f"Failed to record invoice_created for invoice {invoice_id}: {e}")
