"""Retreat booking model."""
from datetime import datetime, date, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, Date, ForeignKey, Integer, Numeric, Text, Index
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retreat_billing.database import Base

if TYPE_CHECKING:
    from retreat_billing.models.partner import Partner


class BookingStatus(str, Enum):
    """Booking lifecycle status."""
    SCHEDULED = "scheduled"
    COMPLETED = "completed"
    CANCELED = "canceled"
    RESCHEDULED = "rescheduled"


class Booking(Base):
    """
    A guest's retreat booking referred to a partner.

    ``final_net_revenue`` is set at verification. ``invoiced`` flips
    false -> true exactly once, when the booking lands on an invoice line item.
    """
    __tablename__ = "retreat_bookings"
    __table_args__ = (
        Index("ix_retreat_bookings_billing", "partner_id", "status", "invoiced", "retreat_date"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    partner_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("partners.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    guest_name: Mapped[str] = mapped_column(String(255), nullable=False)
    retreat_date: Mapped[date] = mapped_column(Date, nullable=False)

    expected_net_revenue: Mapped[Decimal] = mapped_column(
        Numeric(12, 2),
        nullable=False,
        default=Decimal("0")
    )
    final_net_revenue: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Set only when the partner verifies the booking as completed"
    )

    status: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=BookingStatus.SCHEDULED.value,
        comment="scheduled, completed, canceled, rescheduled"
    )
    invoiced: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    verification_date: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    rescheduled_date: Mapped[Optional[date]] = mapped_column(Date, nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

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

    partner: Mapped["Partner"] = relationship("Partner", back_populates="bookings")

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, partner_id={self.partner_id}, status='{self.status}')>"
