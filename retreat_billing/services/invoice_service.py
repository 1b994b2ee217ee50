"""
Consolidated invoicing service.

Builds one invoice per partner per billing cycle from the partner's eligible
bookings. Everything up to and including the booking ``invoiced`` flags is one
transaction; publishing to the gateway happens after that commit and never
rolls it back.
"""
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional

from sqlalchemy import select, func, case
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from retreat_billing.config import settings
from retreat_billing.exceptions import PartnerNotFoundError
from retreat_billing.models.invoice import Invoice, InvoiceLineItem, InvoiceStatus
from retreat_billing.models.partner import Partner
from retreat_billing.schemas.billing import InvoiceStats
from retreat_billing.services.billing_state_machine import mark_booking_invoiced
from retreat_billing.services.commission_calculator import compute_commission, to_money
from retreat_billing.services.eligibility import select_eligible_bookings

logger = logging.getLogger(__name__)


def first_of_month(value: date) -> date:
    return value.replace(day=1)


def next_billing_cycle(today: Optional[date] = None) -> date:
    """First day of the month following ``today``."""
    today = today or date.today()
    if today.month == 12:
        return date(today.year + 1, 1, 1)
    return date(today.year, today.month + 1, 1)


def invoice_due_date(now: Optional[datetime] = None) -> date:
    now = now or datetime.now(timezone.utc)
    return (now + timedelta(hours=settings.INVOICE_DUE_HOURS)).date()


class ConsolidationOutcome(str, Enum):
    """What a consolidation call did for (partner, cycle)."""
    CREATED = "created"
    RESUMED = "resumed"
    EXISTING = "existing"
    NOTHING_TO_BILL = "nothing_to_bill"


@dataclass
class ConsolidationResult:
    invoice: Optional[Invoice]
    outcome: ConsolidationOutcome

    @property
    def billed(self) -> bool:
        """True when this call created the invoice or finished publishing it."""
        return self.outcome in (ConsolidationOutcome.CREATED, ConsolidationOutcome.RESUMED)


class InvoiceService:
    """
    Consolidator for partner commission invoices.

    Usage:
        service = InvoiceService(db, publisher=InvoicePublisher(db, gateway, email))
        invoice = await service.create_consolidated_invoice(partner.id, date(2026, 11, 1))
    """

    def __init__(self, db: AsyncSession, publisher=None):
        self.db = db
        self.publisher = publisher

    async def get_invoice_for_cycle(self, partner_id: int, billing_cycle: date) -> Optional[Invoice]:
        result = await self.db.execute(
            select(Invoice)
            .options(selectinload(Invoice.line_items))
            .where(Invoice.partner_id == partner_id, Invoice.billing_cycle == billing_cycle)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def create_consolidated_invoice(
        self,
        partner_id: int,
        billing_cycle: date,
        as_of: Optional[date] = None,
    ) -> Optional[Invoice]:
        """
        Create (or resume) the partner's invoice for a billing cycle.

        Returns:
            The invoice for (partner, cycle), new or existing; None when the
            partner has nothing eligible and no invoice exists for the cycle.

        Raises:
            PartnerNotFoundError: Unknown partner
            GatewayError: Publishing failed; the invoice stays pending
        """
        result = await self.consolidate(partner_id, billing_cycle, as_of=as_of)
        return result.invoice

    async def consolidate(
        self,
        partner_id: int,
        billing_cycle: date,
        as_of: Optional[date] = None,
    ) -> ConsolidationResult:
        """Same as ``create_consolidated_invoice``, also reporting what was done."""
        billing_cycle = first_of_month(billing_cycle)

        partner = await self.db.get(Partner, partner_id)
        if partner is None:
            raise PartnerNotFoundError(partner_id)

        existing = await self.get_invoice_for_cycle(partner_id, billing_cycle)
        if existing is not None:
            return await self._resume_existing(existing, partner)

        try:
            invoice = await self._persist_invoice(partner, billing_cycle, as_of)
        except IntegrityError:
            # A concurrent run committed this (partner, cycle) first
            await self.db.rollback()
            existing = await self.get_invoice_for_cycle(partner_id, billing_cycle)
            if existing is None:
                raise
            logger.info(
                f"Concurrent billing run already created invoice {existing.id} "
                f"for partner {partner_id} billing cycle {billing_cycle}"
            )
            partner = await self.db.get(Partner, partner_id, populate_existing=True)
            return await self._resume_existing(existing, partner)

        if invoice is None:
            # The selection also comes back empty when a concurrent run invoiced
            # these bookings after the existence check above
            existing = await self.get_invoice_for_cycle(partner_id, billing_cycle)
            if existing is not None:
                return await self._resume_existing(existing, partner)
            logger.info(f"No bookings ready for invoicing for partner {partner_id}")
            return ConsolidationResult(None, ConsolidationOutcome.NOTHING_TO_BILL)

        logger.info(
            f"Consolidated invoice {invoice.id} created for partner {partner_id} "
            f"with {len(invoice.line_items)} line items (${invoice.amount:,.2f})"
        )

        if self.publisher is not None:
            await self.publisher.publish(invoice, invoice.line_items, partner)
        return ConsolidationResult(invoice, ConsolidationOutcome.CREATED)

    async def _resume_existing(self, existing: Invoice, partner: Partner) -> ConsolidationResult:
        logger.info(
            f"Invoice {existing.id} already exists for partner {partner.id} "
            f"billing cycle {existing.billing_cycle} ({existing.status})"
        )
        if existing.needs_publishing and self.publisher is not None:
            logger.info(f"Resuming publishing of pending invoice {existing.id}")
            await self.publisher.publish(existing, existing.line_items, partner)
            return ConsolidationResult(existing, ConsolidationOutcome.RESUMED)
        return ConsolidationResult(existing, ConsolidationOutcome.EXISTING)

    async def _persist_invoice(
        self,
        partner: Partner,
        billing_cycle: date,
        as_of: Optional[date],
    ) -> Optional[Invoice]:
        """Select, compute and write invoice + line items + booking flags in one commit."""
        try:
            bookings = await select_eligible_bookings(self.db, partner.id, as_of=as_of)
            if not bookings:
                # Ends the read transaction without expiring loaded objects
                await self.db.commit()
                return None

            total = Decimal("0")
            line_items = []
            for booking in bookings:
                commission = compute_commission(partner, booking.final_net_revenue)
                amount = to_money(commission.amount)
                total += amount

                line_items.append(InvoiceLineItem(
                    booking_id=booking.id,
                    guest_name=booking.guest_name,
                    retreat_date=booking.retreat_date,
                    revenue=to_money(booking.final_net_revenue),
                    commission_mode=commission.mode,
                    commission_rate=commission.rate,
                    flat_rate_amount=commission.flat_amount,
                    line_item_amount=amount,
                ))
                mark_booking_invoiced(booking)

            invoice = Invoice(
                partner_id=partner.id,
                billing_cycle=billing_cycle,
                amount=total,
                status=InvoiceStatus.PENDING.value,
                due_date=invoice_due_date(),
                line_items=line_items,
            )
            self.db.add(invoice)
            await self.db.commit()
            return invoice
        except Exception:
            await self.db.rollback()
            raise

    async def get_invoice_stats(self) -> InvoiceStats:
        """Counts per status and paid/outstanding totals."""
        result = await self.db.execute(
            select(
                func.count(case((Invoice.status == InvoiceStatus.PENDING.value, 1))),
                func.count(case((Invoice.status == InvoiceStatus.SENT.value, 1))),
                func.count(case((Invoice.status == InvoiceStatus.PAID.value, 1))),
                func.sum(case((Invoice.status == InvoiceStatus.PAID.value, Invoice.amount))),
                func.sum(case((
                    Invoice.status.in_([InvoiceStatus.PENDING.value, InvoiceStatus.SENT.value]),
                    Invoice.amount,
                ))),
            )
        )
        pending, sent, paid, total_revenue, outstanding = result.one()
        return InvoiceStats(
            pending_count=pending or 0,
            sent_count=sent or 0,
            paid_count=paid or 0,
            total_revenue=to_money(total_revenue or 0),
            outstanding_revenue=to_money(outstanding or 0),
        )
