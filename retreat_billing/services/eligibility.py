"""
Eligibility selection for consolidated invoicing.

A booking is billable when it is completed, carries a final net revenue, has
never been invoiced, and its retreat took place at least the hold period ago
(inclusive). Completed bookings without a final revenue are left alone until
the revenue is recorded.
"""
import logging
from datetime import date, timedelta
from typing import List, Optional

from sqlalchemy import select, and_, func
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_billing.config import settings
from retreat_billing.models.booking import Booking, BookingStatus
from retreat_billing.models.partner import Partner

logger = logging.getLogger(__name__)


def eligibility_cutoff(as_of: Optional[date] = None, hold_period_days: Optional[int] = None) -> date:
    """Latest retreat date that is billable on ``as_of``."""
    as_of = as_of or date.today()
    if hold_period_days is None:
        hold_period_days = settings.BILLING_HOLD_PERIOD_DAYS
    return as_of - timedelta(days=hold_period_days)


def _eligibility_filter(cutoff: date):
    return and_(
        Booking.status == BookingStatus.COMPLETED.value,
        Booking.invoiced == False,  # noqa: E712
        Booking.final_net_revenue.is_not(None),
        Booking.retreat_date <= cutoff,
    )


async def select_eligible_bookings(
    db: AsyncSession,
    partner_id: int,
    as_of: Optional[date] = None,
    hold_period_days: Optional[int] = None,
) -> List[Booking]:
    """
    Bookings ready to bill for a partner, oldest retreat first.

    The order defines line-item order on the resulting invoice. An empty list
    means "nothing to bill" and is not an error.
    """
    cutoff = eligibility_cutoff(as_of, hold_period_days)
    result = await db.execute(
        select(Booking)
        .where(Booking.partner_id == partner_id, _eligibility_filter(cutoff))
        .order_by(Booking.retreat_date.asc(), Booking.id.asc())
    )
    bookings = list(result.scalars().all())
    logger.debug(f"Partner {partner_id}: {len(bookings)} eligible bookings (cutoff {cutoff})")
    return bookings


async def select_partners_with_eligible_bookings(
    db: AsyncSession,
    as_of: Optional[date] = None,
    hold_period_days: Optional[int] = None,
) -> List[Partner]:
    """Distinct active partners with at least one eligible booking, by name."""
    cutoff = eligibility_cutoff(as_of, hold_period_days)
    result = await db.execute(
        select(Partner)
        .where(
            Partner.is_active == True,  # noqa: E712
            Partner.id.in_(
                select(Booking.partner_id).where(_eligibility_filter(cutoff))
            )
        )
        .order_by(Partner.name.asc(), Partner.id.asc())
    )
    return list(result.scalars().all())


async def count_unbillable_completed(db: AsyncSession, partner_id: Optional[int] = None) -> int:
    """Completed, uninvoiced bookings that are stuck without a final revenue."""
    query = select(func.count(Booking.id)).where(
        Booking.status == BookingStatus.COMPLETED.value,
        Booking.invoiced == False,  # noqa: E712
        Booking.final_net_revenue.is_(None),
    )
    if partner_id is not None:
        query = query.where(Booking.partner_id == partner_id)
    result = await db.execute(query)
    return result.scalar() or 0
