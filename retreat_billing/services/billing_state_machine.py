"""
Booking and Invoice State Machines

All booking status changes, the booking ``invoiced`` flag, and invoice status
changes go through this module. Callers never assign those fields directly.

Invoice lifecycle is strictly forward: pending -> sent -> paid.
"""

from typing import Dict, List
from datetime import datetime, timezone

from retreat_billing.exceptions import InvalidTransitionError
from retreat_billing.models.booking import BookingStatus
from retreat_billing.models.invoice import InvoiceStatus


# =============================================================================
# TRANSITION RULES
# =============================================================================

BOOKING_TRANSITIONS: Dict[str, List[str]] = {
    BookingStatus.SCHEDULED.value: [
        BookingStatus.COMPLETED.value,      # Verified as held
        BookingStatus.CANCELED.value,       # Guest canceled
        BookingStatus.RESCHEDULED.value,    # Moved to a new date
    ],
    BookingStatus.RESCHEDULED.value: [
        BookingStatus.COMPLETED.value,      # Held on the new date
        BookingStatus.CANCELED.value,
        BookingStatus.RESCHEDULED.value,    # Moved again
    ],
    BookingStatus.COMPLETED.value: [],      # Terminal
    BookingStatus.CANCELED.value: [],       # Terminal
}

INVOICE_TRANSITIONS: Dict[str, List[str]] = {
    InvoiceStatus.PENDING.value: [InvoiceStatus.SENT.value],
    InvoiceStatus.SENT.value: [InvoiceStatus.PAID.value],
    InvoiceStatus.PAID.value: [],           # Terminal
}


# =============================================================================
# HELPER FUNCTIONS
# =============================================================================

def can_transition_booking(current_status: str, new_status: str) -> bool:
    return new_status in BOOKING_TRANSITIONS.get(current_status, [])


def can_transition_invoice(current_status: str, new_status: str) -> bool:
    return new_status in INVOICE_TRANSITIONS.get(current_status, [])


def validate_booking_transition(current_status: str, new_status: str) -> None:
    """Raise InvalidTransitionError if the booking status change is not allowed."""
    if current_status == new_status and new_status != BookingStatus.RESCHEDULED.value:
        return  # No change, always allowed

    if not can_transition_booking(current_status, new_status):
        raise InvalidTransitionError(
            "booking", current_status, new_status,
            BOOKING_TRANSITIONS.get(current_status, []),
        )


def validate_invoice_transition(current_status: str, new_status: str) -> None:
    """Raise InvalidTransitionError if the invoice status change is not allowed.

    Unlike bookings, a same-status "transition" is rejected too: applying
    sent or paid twice means two writers raced and one of them is stale.
    """
    if not can_transition_invoice(current_status, new_status):
        raise InvalidTransitionError(
            "invoice", current_status, new_status,
            INVOICE_TRANSITIONS.get(current_status, []),
        )


# =============================================================================
# TRANSITION EXECUTORS
# =============================================================================

def transition_booking(booking, new_status: str, **fields) -> None:
    """
    Move a booking to a new status and set the fields that go with it.

    Args:
        booking: Booking model instance
        new_status: Target status
        fields: final_net_revenue (completed), rescheduled_date (rescheduled), notes

    Raises:
        InvalidTransitionError: If transition is not allowed
    """
    validate_booking_transition(booking.status, new_status)

    if booking.invoiced:
        raise InvalidTransitionError("booking", booking.status, new_status)

    if new_status == BookingStatus.COMPLETED.value:
        if fields.get("final_net_revenue") is None:
            raise InvalidTransitionError(
                "booking", booking.status, new_status,
                BOOKING_TRANSITIONS.get(booking.status, []),
            )
        booking.final_net_revenue = fields["final_net_revenue"]
    elif new_status == BookingStatus.RESCHEDULED.value:
        booking.rescheduled_date = fields.get("rescheduled_date")

    if "notes" in fields:
        booking.notes = fields["notes"]

    booking.status = new_status
    booking.verification_date = datetime.now(timezone.utc)


def mark_booking_invoiced(booking) -> None:
    """
    Flip ``invoiced`` false -> true.

    Only a completed booking with a final revenue, not yet invoiced, may be
    billed.
    """
    if (
        booking.invoiced
        or booking.status != BookingStatus.COMPLETED.value
        or booking.final_net_revenue is None
    ):
        raise InvalidTransitionError(
            "booking", f"{booking.status}/invoiced={booking.invoiced}", "invoiced"
        )
    booking.invoiced = True


def transition_invoice(invoice, new_status: str, **fields) -> None:
    """
    Move an invoice forward and set the audit fields for the transition.

    Args:
        invoice: Invoice model instance
        new_status: Target status
        fields: paypal_invoice_id and paypal_invoice_url (sent)

    Raises:
        InvalidTransitionError: If transition is not allowed
    """
    validate_invoice_transition(invoice.status, new_status)

    now = datetime.now(timezone.utc)

    if new_status == InvoiceStatus.SENT.value:
        remote_id = fields.get("paypal_invoice_id")
        if not remote_id:
            raise InvalidTransitionError(
                "invoice", invoice.status, new_status,
                INVOICE_TRANSITIONS.get(invoice.status, []),
            )
        invoice.paypal_invoice_id = remote_id
        invoice.paypal_invoice_url = fields.get("paypal_invoice_url")
        invoice.sent_at = now

    elif new_status == InvoiceStatus.PAID.value:
        invoice.paid_at = now

    invoice.status = new_status
