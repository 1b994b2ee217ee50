"""Billing error hierarchy.

Everything raised by the billing engine derives from ``BillingError`` so the
orchestrator and the HTTP layer can tell engine failures apart from bugs.
Gateway errors are always retryable: local state is left ``pending``.
"""
from typing import Optional


class BillingError(Exception):
    """Base class for billing engine errors."""


class PartnerNotFoundError(BillingError):
    def __init__(self, partner_id: int):
        self.partner_id = partner_id
        super().__init__(f"Partner {partner_id} not found")


class BookingNotFoundError(BillingError):
    def __init__(self, booking_id: int, partner_id: Optional[int] = None):
        self.booking_id = booking_id
        self.partner_id = partner_id
        owner = f" for partner {partner_id}" if partner_id is not None else ""
        super().__init__(f"Booking {booking_id} not found{owner}")


class InvalidTransitionError(BillingError):
    """Raised when a status change is not allowed by the transition table."""

    def __init__(self, entity: str, current_status: str, new_status: str, allowed=None):
        self.entity = entity
        self.current_status = current_status
        self.new_status = new_status
        self.allowed = list(allowed or [])
        if self.allowed:
            detail = f"Allowed transitions: {', '.join(self.allowed)}"
        else:
            detail = "This is a terminal state."
        super().__init__(
            f"Cannot change {entity} from '{current_status}' to '{new_status}'. {detail}"
        )


class GatewayError(BillingError):
    """Remote invoicing gateway call failed (network, auth, payload, timeout)."""

    def __init__(self, message: str, status_code: Optional[int] = None, response_body=None):
        self.status_code = status_code
        self.response_body = response_body
        super().__init__(message)


class GatewayAuthError(GatewayError):
    pass


class GatewayTimeoutError(GatewayError):
    pass
