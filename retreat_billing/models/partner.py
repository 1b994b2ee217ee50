"""Partner model - retreat centres that owe commission on referred bookings."""
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Optional, List
from decimal import Decimal

from sqlalchemy import String, Boolean, DateTime, Integer, Numeric
from sqlalchemy.orm import Mapped, mapped_column, relationship

from retreat_billing.database import Base

if TYPE_CHECKING:
    from retreat_billing.models.booking import Booking
    from retreat_billing.models.invoice import Invoice


class CommissionMode(str, Enum):
    """How a partner's commission is calculated."""
    PERCENTAGE = "percentage"   # rate % of final net revenue
    FLAT_RATE = "flat_rate"     # fixed amount per completed booking


class Partner(Base):
    """
    Partner with its commission configuration.

    Read as a snapshot when an invoice is built; edited only by administrators.
    """
    __tablename__ = "partners"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False, index=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    # Commission configuration
    commission_mode: Mapped[str] = mapped_column(
        String(20),
        nullable=False,
        default=CommissionMode.PERCENTAGE.value,
        comment="percentage, flat_rate"
    )
    commission_rate: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(5, 2),
        nullable=True,
        comment="Commission % (falls back to DEFAULT_COMMISSION_RATE)"
    )
    flat_rate_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(12, 2),
        nullable=True,
        comment="Fixed commission per booking when mode is flat_rate"
    )

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

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
    bookings: Mapped[List["Booking"]] = relationship("Booking", back_populates="partner")
    invoices: Mapped[List["Invoice"]] = relationship("Invoice", back_populates="partner")

    def __repr__(self) -> str:
        return f"<Partner(id={self.id}, name='{self.name}', mode='{self.commission_mode}')>"
