"""
Billing Notification Service

Persists structured billing events (invoice_created, invoice_paid,
payment_overdue) for the admin dashboard. Rendering is not this module's
concern; it only records what happened.

Events are written after the billing state they describe has been committed,
in their own commit, so a failed event never undoes billing.
"""
import logging
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import select, and_
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_billing.config import settings
from retreat_billing.models.invoice import Invoice, InvoiceStatus
from retreat_billing.models.notifications import Notification, NotificationType
from retreat_billing.models.partner import Partner

logger = logging.getLogger(__name__)


class NotificationService:
    """Service for recording billing events."""

    def __init__(self, db: AsyncSession):
        self.db = db

    async def create_notification(
        self,
        notification_type: NotificationType,
        title: str,
        message: str,
        partner_id: Optional[int] = None,
        booking_id: Optional[int] = None,
        invoice_id: Optional[int] = None,
    ) -> Notification:
        """Persist and commit one event."""
        notification = Notification(
            notification_type=notification_type.value,
            title=title,
            message=message,
            partner_id=partner_id,
            booking_id=booking_id,
            invoice_id=invoice_id,
            is_read=False,
        )
        self.db.add(notification)
        await self.db.commit()

        logger.info(f"[NOTIFICATION] {notification_type.value}: {message[:100]}")
        return notification

    async def check_overdue_payments(self, as_of: Optional[date] = None) -> int:
        """
        Emit payment_overdue for unpaid invoices past their grace period.

        At most one alert per invoice per day.

        Returns:
            Number of notifications created
        """
        as_of = as_of or date.today()
        threshold = as_of - timedelta(days=settings.PAYMENT_OVERDUE_GRACE_DAYS)
        since = datetime.now(timezone.utc) - timedelta(days=1)

        result = await self.db.execute(
            select(Invoice, Partner.name)
            .join(Partner, Partner.id == Invoice.partner_id)
            .where(
                and_(
                    Invoice.status.in_([InvoiceStatus.PENDING.value, InvoiceStatus.SENT.value]),
                    Invoice.due_date < threshold,
                )
            )
            .order_by(Invoice.due_date.asc())
        )
        overdue = result.all()

        count = 0
        for invoice, partner_name in overdue:
            existing = await self.db.execute(
                select(Notification.id).where(
                    Notification.notification_type == NotificationType.PAYMENT_OVERDUE.value,
                    Notification.invoice_id == invoice.id,
                    Notification.created_at > since,
                ).limit(1)
            )
            if existing.first() is not None:
                continue

            await self.create_notification(
                NotificationType.PAYMENT_OVERDUE,
                title="Payment Overdue",
                message=(
                    f"{partner_name} has an overdue payment of ${invoice.amount:,.2f} "
                    f"(Invoice #{invoice.id}, due {invoice.due_date.isoformat()})"
                ),
                partner_id=invoice.partner_id,
                invoice_id=invoice.id,
            )
            count += 1

        logger.info(f"Overdue payment check: {len(overdue)} overdue invoices, {count} alerts created")
        return count
