"""Commission calculation for completed retreat bookings.

Pure functions only: no database access, no rounding. Callers quantize to
cents with ``to_money`` when persisting or rendering amounts.
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP
from typing import Optional, Union

from retreat_billing.config import settings
from retreat_billing.models.partner import CommissionMode

CENTS = Decimal("0.01")

Number = Union[Decimal, int, float, str]


@dataclass(frozen=True)
class CommissionResult:
    """Commission owed for one booking and the terms used to compute it."""
    amount: Decimal
    mode: str
    rate: Optional[Decimal] = None
    flat_amount: Optional[Decimal] = None


def _to_decimal(value: Optional[Number]) -> Decimal:
    if value is None:
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def to_money(value: Number) -> Decimal:
    """Round to 2 decimal places for persistence and display."""
    return _to_decimal(value).quantize(CENTS, rounding=ROUND_HALF_UP)


def compute_commission(
    partner,
    revenue: Optional[Number],
    default_rate: Optional[Number] = None,
) -> CommissionResult:
    """
    Compute the commission for a booking under the partner's configuration.

    Flat-rate partners with a configured flat amount owe that amount regardless
    of revenue. Everyone else (including flat-rate partners with no amount set)
    owes ``revenue * rate / 100``, the rate falling back to the system default.

    Args:
        partner: Anything with commission_mode, commission_rate, flat_rate_amount
        revenue: Final net revenue of the booking
        default_rate: Override for settings.DEFAULT_COMMISSION_RATE

    Returns:
        CommissionResult with the unrounded amount
    """
    mode = getattr(partner, "commission_mode", None) or CommissionMode.PERCENTAGE.value
    flat_amount = getattr(partner, "flat_rate_amount", None)

    if mode == CommissionMode.FLAT_RATE.value and flat_amount:
        flat = _to_decimal(flat_amount)
        return CommissionResult(
            amount=flat,
            mode=CommissionMode.FLAT_RATE.value,
            flat_amount=flat,
        )

    rate = getattr(partner, "commission_rate", None)
    if not rate:
        rate = default_rate if default_rate is not None else settings.DEFAULT_COMMISSION_RATE
    rate = _to_decimal(rate)

    return CommissionResult(
        amount=_to_decimal(revenue) * rate / Decimal("100"),
        mode=CommissionMode.PERCENTAGE.value,
        rate=rate,
    )
