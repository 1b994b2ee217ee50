"""Pydantic schemas for billing runs, reconciliation and verification."""
from datetime import datetime, date
from typing import Optional, List
from decimal import Decimal
from pydantic import BaseModel, Field, model_validator

from retreat_billing.schemas.base import BaseResponseSchema, BaseCreateSchema
from retreat_billing.models.booking import BookingStatus


# ==================== Invoice Schemas ====================

class InvoiceLineItemResponse(BaseResponseSchema):
    """One booking's commission on an invoice."""
    id: int
    booking_id: int
    guest_name: str
    retreat_date: date
    revenue: Decimal
    commission_mode: str
    commission_rate: Optional[Decimal] = None
    flat_rate_amount: Optional[Decimal] = None
    line_item_amount: Decimal


class InvoiceResponse(BaseResponseSchema):
    """Response schema for Invoice."""
    id: int
    partner_id: int
    billing_cycle: date
    amount: Decimal
    status: str
    due_date: date
    paypal_invoice_id: Optional[str] = None
    paypal_invoice_url: Optional[str] = None
    sent_at: Optional[datetime] = None
    paid_at: Optional[datetime] = None
    line_items: List[InvoiceLineItemResponse] = []


class InvoiceStats(BaseModel):
    """Invoice counts and totals for the admin dashboard."""
    pending_count: int = 0
    sent_count: int = 0
    paid_count: int = 0
    total_revenue: Decimal = Decimal("0.00")
    outstanding_revenue: Decimal = Decimal("0.00")


# ==================== Billing Run Schemas ====================

class PartnerBillingError(BaseModel):
    """A partner whose billing attempt failed during a run."""
    partner_id: int
    partner_name: Optional[str] = None
    error: str


class BillingRunResult(BaseModel):
    """Outcome of a full-cycle billing run."""
    billing_cycle: date
    total_partners: int = 0
    success_count: int = 0
    skipped_count: int = 0
    failure_count: int = 0
    errors: List[PartnerBillingError] = []


class PartnerBillingResult(BaseModel):
    """Outcome of a single-partner billing attempt."""
    partner_id: int
    billing_cycle: date
    invoice: Optional[InvoiceResponse] = None
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


class PublishRetryResult(BaseModel):
    """Outcome of re-publishing invoices stuck in pending."""
    checked: int = 0
    published_count: int = 0
    failure_count: int = 0
    errors: List[PartnerBillingError] = []


class ReconciliationResult(BaseModel):
    """Outcome of a payment reconciliation pass."""
    checked: int = 0
    paid_count: int = 0
    still_pending: int = 0
    failed: int = 0


# ==================== Verification Schemas ====================

class VerificationEntry(BaseCreateSchema):
    """A partner's verdict on one booking."""
    booking_id: int
    status: BookingStatus
    final_net_revenue: Optional[Decimal] = Field(None, ge=0)
    rescheduled_date: Optional[date] = None
    notes: Optional[str] = None

    @model_validator(mode="after")
    def check_required_fields(self):
        if self.status == BookingStatus.COMPLETED and self.final_net_revenue is None:
            raise ValueError("final_net_revenue is required for completed bookings")
        if self.status == BookingStatus.RESCHEDULED and self.rescheduled_date is None:
            raise ValueError("rescheduled_date is required for rescheduled bookings")
        if self.status == BookingStatus.SCHEDULED:
            raise ValueError("status must be completed, canceled or rescheduled")
        return self


class VerificationSubmission(BaseCreateSchema):
    """A partner's verification form."""
    entries: List[VerificationEntry] = Field(..., min_length=1)


class VerificationResult(BaseModel):
    """Bookings updated by a verification plus the follow-up billing attempt."""
    partner_id: int
    updated_count: int
    billing: Optional[PartnerBillingResult] = None


# ==================== Webhook Schemas ====================

class PayPalWebhookResource(BaseModel):
    id: Optional[str] = None


class PayPalWebhookEvent(BaseModel):
    """Subset of a PayPal webhook notification."""
    id: Optional[str] = None
    event_type: str
    resource: PayPalWebhookResource = PayPalWebhookResource()
