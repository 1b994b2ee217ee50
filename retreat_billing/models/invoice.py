"""Consolidated invoice models.

One ``Invoice`` per partner per billing cycle; the unique constraint on
(partner_id, billing_cycle) is what makes repeated billing runs idempotent.
Line items are written once, in the same transaction as the invoice.
"""
from datetime import datetime, date, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, DateTime, Date, ForeignKey, Integer, Numeric, UniqueConstraint, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retreat_billing.database import Base

if TYPE_CHECKING:
    from retreat_billing.models.partner import Partner
    from retreat_billing.models.booking import Booking


class InvoiceStatus(str, Enum):
    """Invoice lifecycle status."""
    PENDING = "pending"     # Persisted locally, not yet on the gateway
    SENT = "sent"           # Created and dispatched on the gateway
    PAID = "paid"           # Payment confirmed by the gateway


class Invoice(Base):
    """Consolidated commission invoice for a partner's billing cycle."""
    __tablename__ = "invoices"
    __table_args__ = (
        UniqueConstraint("partner_id", "billing_cycle", name="uq_invoice_partner_cycle"),
        Index("ix_invoices_status", "status"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    partner_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("partners.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    billing_cycle: Mapped[date] = mapped_column(
        Date,
        nullable=False,
        comment="First day of the billing month"
    )

    amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)
    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=InvoiceStatus.PENDING.value,
        comment="pending, sent, paid"
    )
    due_date: Mapped[date] = mapped_column(Date, nullable=False)

    # Gateway reference
    paypal_invoice_id: Mapped[Optional[str]] = mapped_column(String(100), unique=True, nullable=True)
    paypal_invoice_url: Mapped[Optional[str]] = mapped_column(String(500), nullable=True)

    sent_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    paid_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    # Relationships
    partner: Mapped["Partner"] = relationship("Partner", back_populates="invoices")
    line_items: Mapped[List["InvoiceLineItem"]] = relationship(
        "InvoiceLineItem",
        back_populates="invoice",
        order_by="InvoiceLineItem.id",
    )

    @property
    def needs_publishing(self) -> bool:
        """Committed locally but never made it to the gateway."""
        return self.status == InvoiceStatus.PENDING.value and not self.paypal_invoice_id

    def __repr__(self) -> str:
        return (
            f"<Invoice(id={self.id}, partner_id={self.partner_id}, "
            f"cycle={self.billing_cycle}, status='{self.status}')>"
        )


class InvoiceLineItem(Base):
    """One booking's commission on a consolidated invoice. Immutable."""
    __tablename__ = "invoice_line_items"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    invoice_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("invoices.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    # A booking can be billed on at most one line item, ever
    booking_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("retreat_bookings.id", ondelete="RESTRICT"),
        nullable=False,
        unique=True
    )

    guest_name: Mapped[str] = mapped_column(String(255), nullable=False)
    retreat_date: Mapped[date] = mapped_column(Date, nullable=False)
    revenue: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    commission_mode: Mapped[str] = mapped_column(String(20), nullable=False)
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(Numeric(5, 2), nullable=True)
    flat_rate_amount: Mapped[Optional[Decimal]] = mapped_column(Numeric(12, 2), nullable=True)
    line_item_amount: Mapped[Decimal] = mapped_column(Numeric(12, 2), nullable=False)

    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=lambda: datetime.now(timezone.utc),
        nullable=False
    )

    invoice: Mapped["Invoice"] = relationship("Invoice", back_populates="line_items")
    booking: Mapped["Booking"] = relationship("Booking")
