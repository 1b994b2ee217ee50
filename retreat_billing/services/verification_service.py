"""
Verification submission.

A partner confirms what happened to their scheduled retreats: completed (with
the final net revenue), canceled or rescheduled. All updates commit together;
afterwards the partner is billed straight away. A billing failure there never
fails the verification; the scheduled run picks the bookings up later.
"""
import logging
from typing import List

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_billing.exceptions import BookingNotFoundError, PartnerNotFoundError
from retreat_billing.models.booking import Booking
from retreat_billing.models.partner import Partner
from retreat_billing.schemas.billing import VerificationEntry, VerificationResult
from retreat_billing.services.billing_state_machine import transition_booking

logger = logging.getLogger(__name__)


class VerificationService:
    def __init__(self, db: AsyncSession, orchestrator=None):
        self.db = db
        self.orchestrator = orchestrator

    async def submit_verification(
        self,
        partner_id: int,
        entries: List[VerificationEntry],
    ) -> VerificationResult:
        """
        Apply a partner's verification and trigger billing for that partner.

        Raises:
            PartnerNotFoundError: Unknown partner
            BookingNotFoundError: A booking is missing or belongs to another partner
            InvalidTransitionError: A booking cannot take the submitted status
        """
        partner = await self.db.get(Partner, partner_id)
        if partner is None:
            raise PartnerNotFoundError(partner_id)

        booking_ids = [entry.booking_id for entry in entries]
        result = await self.db.execute(
            select(Booking)
            .where(Booking.id.in_(booking_ids), Booking.partner_id == partner_id)
            .with_for_update()
        )
        bookings = {b.id: b for b in result.scalars().all()}

        try:
            for entry in entries:
                booking = bookings.get(entry.booking_id)
                if booking is None:
                    raise BookingNotFoundError(entry.booking_id, partner_id)

                fields = {"notes": entry.notes}
                if entry.final_net_revenue is not None:
                    fields["final_net_revenue"] = entry.final_net_revenue
                if entry.rescheduled_date is not None:
                    fields["rescheduled_date"] = entry.rescheduled_date
                transition_booking(booking, entry.status.value, **fields)

            await self.db.commit()
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Verification submitted for partner {partner_id}: {len(entries)} bookings updated")

        billing = None
        if self.orchestrator is not None:
            try:
                billing = await self.orchestrator.bill_partner(partner_id)
                if billing.invoice is not None:
                    logger.info(f"Invoice {billing.invoice.id} created for partner {partner_id} after verification")
            except Exception as e:
                logger.error(f"Error creating invoice after verification for partner {partner_id}: {e}")

        return VerificationResult(partner_id=partner_id, updated_count=len(entries), billing=billing)
