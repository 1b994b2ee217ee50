# Services module
from retreat_billing.services.invoice_service import InvoiceService
from retreat_billing.services.invoice_publisher import InvoicePublisher
from retreat_billing.services.payment_reconciler import PaymentReconciler
from retreat_billing.services.billing_orchestrator import BillingOrchestrator
from retreat_billing.services.notification_service import NotificationService
from retreat_billing.services.verification_service import VerificationService
from retreat_billing.services.paypal_client import PayPalClient
from retreat_billing.services.email_service import EmailService

__all__ = [
    "InvoiceService",
    "InvoicePublisher",
    "PaymentReconciler",
    "BillingOrchestrator",
    "NotificationService",
    "VerificationService",
    "PayPalClient",
    "EmailService",
]
