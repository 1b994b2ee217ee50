"""Database models for billing notifications (admin dashboard events)."""
from datetime import datetime, timezone
from enum import Enum

from sqlalchemy import Column, Integer, String, Text, DateTime, Boolean, ForeignKey, Index

from retreat_billing.database import Base


class NotificationType(str, Enum):
    """Billing events emitted for downstream display."""
    INVOICE_CREATED = "invoice_created"
    INVOICE_PAID = "invoice_paid"
    PAYMENT_OVERDUE = "payment_overdue"


class Notification(Base):
    """
    Notification model - structured billing events.
    """
    __tablename__ = "notifications"

    id = Column(Integer, primary_key=True, autoincrement=True)

    notification_type = Column(String(50), nullable=False, index=True, comment="invoice_created, invoice_paid, payment_overdue")
    title = Column(String(200), nullable=False)
    message = Column(Text, nullable=False)

    # Reference to related entities
    partner_id = Column(Integer, ForeignKey("partners.id", ondelete="SET NULL"), nullable=True, index=True)
    booking_id = Column(Integer, ForeignKey("retreat_bookings.id", ondelete="SET NULL"), nullable=True)
    invoice_id = Column(Integer, ForeignKey("invoices.id", ondelete="SET NULL"), nullable=True, index=True)

    # Status
    is_read = Column(Boolean, default=False, nullable=False, index=True)

    created_at = Column(DateTime(timezone=True), default=lambda: datetime.now(timezone.utc), nullable=False)

    __table_args__ = (
        Index("ix_notifications_type_invoice", "notification_type", "invoice_id"),
    )

    def __repr__(self):
        return f"<Notification {self.id}: {self.notification_type}>"
