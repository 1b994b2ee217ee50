"""
Billing Orchestrator.

Runs a billing cycle across every partner with eligible bookings. Each partner
is billed in its own session and transaction, so one partner's failure never
affects another's invoice.

Also the entry point for single-partner billing (after a verification
submission), re-publishing stuck invoices, and the payment checks.
"""
import logging
from datetime import date
from typing import Optional

from sqlalchemy import select

from retreat_billing.database import async_session_factory
from retreat_billing.exceptions import PartnerNotFoundError
from retreat_billing.models.invoice import Invoice, InvoiceStatus
from retreat_billing.models.partner import Partner
from retreat_billing.schemas.billing import (
    BillingRunResult,
    InvoiceResponse,
    PartnerBillingError,
    PartnerBillingResult,
    PublishRetryResult,
    ReconciliationResult,
)
from retreat_billing.services.eligibility import (
    count_unbillable_completed,
    select_partners_with_eligible_bookings,
)
from retreat_billing.services.email_service import get_email_service
from retreat_billing.services.invoice_publisher import InvoicePublisher
from retreat_billing.services.invoice_service import (
    InvoiceService,
    first_of_month,
    next_billing_cycle,
)
from retreat_billing.services.notification_service import NotificationService
from retreat_billing.services.payment_reconciler import PaymentReconciler
from retreat_billing.services.paypal_client import PayPalClient

logger = logging.getLogger(__name__)


def resolve_billing_cycle(cycle_override: Optional[date] = None, today: Optional[date] = None) -> date:
    if cycle_override is not None:
        return first_of_month(cycle_override)
    return next_billing_cycle(today)


class BillingOrchestrator:
    """
    Drives consolidated invoicing and payment checks.

    Usage:
        orchestrator = BillingOrchestrator()
        result = await orchestrator.run_billing_cycle()
        print(f"{result.success_count}/{result.total_partners} partners billed")
    """

    def __init__(self, session_factory=None, gateway=None, email_service=None):
        self.session_factory = session_factory or async_session_factory
        self.gateway = gateway if gateway is not None else PayPalClient.from_settings()
        self.email_service = email_service if email_service is not None else get_email_service()

    def _invoice_service(self, db) -> InvoiceService:
        publisher = InvoicePublisher(db, self.gateway, self.email_service)
        return InvoiceService(db, publisher=publisher)

    async def run_billing_cycle(
        self,
        cycle_override: Optional[date] = None,
        as_of: Optional[date] = None,
    ) -> BillingRunResult:
        """
        Bill every partner with eligible bookings for one cycle.

        Args:
            cycle_override: Any date in the cycle to bill; defaults to next month
            as_of: Date the hold period is measured from; defaults to today

        Returns:
            Counts of partners billed, skipped and failed, plus one error per failure.
            A partner counts as billed only when its invoice was created or its
            publishing resumed by this run.
        """
        billing_cycle = resolve_billing_cycle(cycle_override)
        logger.info(f"Starting billing run for cycle {billing_cycle}")

        async with self.session_factory() as db:
            partners = await select_partners_with_eligible_bookings(db, as_of=as_of)
            candidates = [(p.id, p.name) for p in partners]
            unbillable = await count_unbillable_completed(db)
        if unbillable:
            logger.warning(f"{unbillable} completed bookings have no final revenue and were skipped")

        result = BillingRunResult(billing_cycle=billing_cycle, total_partners=len(candidates))
        for partner_id, partner_name in candidates:
            try:
                async with self.session_factory() as db:
                    outcome = await self._invoice_service(db).consolidate(
                        partner_id, billing_cycle, as_of=as_of
                    )
                if outcome.billed:
                    result.success_count += 1
                else:
                    result.skipped_count += 1
            except Exception as e:
                result.failure_count += 1
                result.errors.append(PartnerBillingError(
                    partner_id=partner_id,
                    partner_name=partner_name,
                    error=str(e),
                ))
                logger.error(f"Billing failed for partner {partner_name} ({partner_id}): {e}")

        logger.info(
            f"Billing run {billing_cycle} complete: {result.success_count} succeeded, "
            f"{result.skipped_count} already billed or empty, {result.failure_count} failed "
            f"of {result.total_partners} partners"
        )
        return result

    async def bill_partner(
        self,
        partner_id: int,
        cycle_override: Optional[date] = None,
        as_of: Optional[date] = None,
    ) -> PartnerBillingResult:
        """
        Bill one partner now.

        Raises:
            PartnerNotFoundError: Unknown partner

        Other failures are reported in the result's ``error``.
        """
        billing_cycle = resolve_billing_cycle(cycle_override)
        async with self.session_factory() as db:
            service = self._invoice_service(db)
            error = None
            try:
                invoice = await service.create_consolidated_invoice(partner_id, billing_cycle, as_of=as_of)
            except PartnerNotFoundError:
                raise
            except Exception as e:
                await db.rollback()
                logger.error(f"Billing failed for partner {partner_id}: {e}")
                invoice = None
                error = str(e)

            # Reload with line items for the response, also after a publish failure
            if invoice is not None or error is not None:
                invoice = await service.get_invoice_for_cycle(partner_id, billing_cycle)

            return PartnerBillingResult(
                partner_id=partner_id,
                billing_cycle=billing_cycle,
                invoice=InvoiceResponse.model_validate(invoice) if invoice is not None else None,
                error=error,
            )

    async def publish_pending_invoices(self) -> PublishRetryResult:
        """Retry publishing for invoices committed locally but never sent."""
        async with self.session_factory() as db:
            rows = await db.execute(
                select(Invoice.id, Invoice.partner_id, Invoice.billing_cycle, Partner.name)
                .join(Partner, Partner.id == Invoice.partner_id)
                .where(
                    Invoice.status == InvoiceStatus.PENDING.value,
                    Invoice.paypal_invoice_id.is_(None),
                )
                .order_by(Invoice.created_at.asc(), Invoice.id.asc())
            )
            stuck = rows.all()

        result = PublishRetryResult(checked=len(stuck))
        for invoice_id, partner_id, billing_cycle, partner_name in stuck:
            try:
                async with self.session_factory() as db:
                    outcome = await self._invoice_service(db).consolidate(partner_id, billing_cycle)
                if outcome.billed:
                    result.published_count += 1
            except Exception as e:
                result.failure_count += 1
                result.errors.append(PartnerBillingError(
                    partner_id=partner_id,
                    partner_name=partner_name,
                    error=str(e),
                ))
                logger.error(f"Re-publishing invoice {invoice_id} failed: {e}")

        if stuck:
            logger.info(f"Re-published {result.published_count}/{result.checked} pending invoices")
        return result

    async def reconcile_payments(self) -> ReconciliationResult:
        async with self.session_factory() as db:
            return await PaymentReconciler(db, self.gateway).reconcile_payments()

    async def check_overdue_payments(self, as_of: Optional[date] = None) -> int:
        async with self.session_factory() as db:
            return await NotificationService(db).check_overdue_payments(as_of=as_of)
