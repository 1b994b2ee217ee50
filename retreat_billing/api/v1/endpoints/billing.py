"""API endpoints for partner billing.

Admin triggers for billing runs, payment checks and verification, plus the
PayPal webhook. Admin routes require the ADMIN_API_TOKEN bearer token; the
webhook is open but never trusts the event body, it re-queries PayPal.
"""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, HTTPException, Query, status

from retreat_billing.api.deps import DB, AdminToken, Gateway, Orchestrator
from retreat_billing.exceptions import (
    BillingError,
    BookingNotFoundError,
    GatewayError,
    InvalidTransitionError,
    PartnerNotFoundError,
)
from retreat_billing.schemas.billing import (
    BillingRunResult,
    InvoiceStats,
    PartnerBillingResult,
    PayPalWebhookEvent,
    ReconciliationResult,
    VerificationResult,
    VerificationSubmission,
)
from retreat_billing.services.invoice_service import InvoiceService
from retreat_billing.services.payment_reconciler import PaymentReconciler
from retreat_billing.services.verification_service import VerificationService

logger = logging.getLogger(__name__)

router = APIRouter()

PAID_EVENT_TYPES = {"INVOICING.INVOICE.PAID"}


def _to_http_error(exc: BillingError) -> HTTPException:
    """Map billing engine errors to HTTP responses."""
    if isinstance(exc, (PartnerNotFoundError, BookingNotFoundError)):
        return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
    if isinstance(exc, InvalidTransitionError):
        return HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(exc))
    if isinstance(exc, GatewayError):
        return HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=str(exc))
    return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


# ==================== Billing Runs ====================

@router.post("/run", response_model=BillingRunResult, dependencies=[AdminToken])
async def run_billing_cycle(
    orchestrator: Orchestrator,
    billing_cycle: Optional[date] = Query(None, description="Any date in the cycle to bill; defaults to next month"),
):
    """Bill every partner with eligible bookings."""
    return await orchestrator.run_billing_cycle(cycle_override=billing_cycle)


@router.post("/partners/{partner_id}/run", response_model=PartnerBillingResult, dependencies=[AdminToken])
async def run_partner_billing(
    partner_id: int,
    orchestrator: Orchestrator,
    billing_cycle: Optional[date] = Query(None),
):
    """Bill a single partner now."""
    try:
        return await orchestrator.bill_partner(partner_id, cycle_override=billing_cycle)
    except BillingError as e:
        raise _to_http_error(e)


@router.post("/invoices/publish-pending", dependencies=[AdminToken])
async def publish_pending_invoices(orchestrator: Orchestrator):
    """Retry publishing invoices that never reached PayPal."""
    result = await orchestrator.publish_pending_invoices()
    return result.model_dump(mode="json")


# ==================== Verification ====================

@router.post(
    "/partners/{partner_id}/verification",
    response_model=VerificationResult,
    dependencies=[AdminToken],
)
async def submit_verification(
    partner_id: int,
    submission: VerificationSubmission,
    db: DB,
    orchestrator: Orchestrator,
):
    """Record a partner's verification and bill them straight away."""
    service = VerificationService(db, orchestrator=orchestrator)
    try:
        return await service.submit_verification(partner_id, submission.entries)
    except BillingError as e:
        raise _to_http_error(e)


# ==================== Payments ====================

@router.post("/payments/reconcile", response_model=ReconciliationResult, dependencies=[AdminToken])
async def reconcile_payments(orchestrator: Orchestrator):
    """Check every sent invoice with PayPal."""
    return await orchestrator.reconcile_payments()


@router.post("/payments/overdue-check", dependencies=[AdminToken])
async def check_overdue_payments(orchestrator: Orchestrator):
    """Raise payment_overdue alerts for unpaid invoices past their grace period."""
    alerts = await orchestrator.check_overdue_payments()
    return {"alerts_created": alerts}


@router.get("/invoices/stats", response_model=InvoiceStats, dependencies=[AdminToken])
async def get_invoice_stats(db: DB):
    """Invoice counts per status and paid/outstanding totals."""
    return await InvoiceService(db).get_invoice_stats()


# ==================== WEBHOOK ENDPOINT ====================

@router.post(
    "/webhooks/paypal",
    summary="PayPal webhook handler",
    include_in_schema=False,
)
async def paypal_webhook(event: PayPalWebhookEvent, db: DB, gateway: Gateway):
    """
    Handle PayPal invoicing webhook events.

    Events handled:
    - INVOICING.INVOICE.PAID: confirmed with PayPal, then the invoice is marked paid

    Idempotent: a repeated event for a paid invoice is a no-op.
    """
    logger.info(f"Received PayPal webhook: {event.event_type}")

    if event.event_type not in PAID_EVENT_TYPES:
        logger.info(f"Unhandled webhook event: {event.event_type}")
        return {"status": "ignored", "event": event.event_type}

    remote_id = event.resource.id
    if not remote_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Webhook resource has no invoice id",
        )

    try:
        invoice = await PaymentReconciler(db, gateway).confirm_remote_payment(remote_id)
    except GatewayError as e:
        # Non-2xx makes PayPal redeliver later
        logger.error(f"Could not confirm PayPal invoice {remote_id}: {e}")
        raise _to_http_error(e)

    if invoice is None:
        return {"status": "unconfirmed", "event": event.event_type}
    return {"status": "ok", "event": event.event_type, "invoice_id": invoice.id}
