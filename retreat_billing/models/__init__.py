from retreat_billing.models.partner import Partner, CommissionMode
from retreat_billing.models.booking import Booking, BookingStatus
from retreat_billing.models.invoice import Invoice, InvoiceLineItem, InvoiceStatus
from retreat_billing.models.notifications import Notification, NotificationType

__all__ = [
    "Partner",
    "CommissionMode",
    "Booking",
    "BookingStatus",
    "Invoice",
    "InvoiceLineItem",
    "InvoiceStatus",
    "Notification",
    "NotificationType",
]
