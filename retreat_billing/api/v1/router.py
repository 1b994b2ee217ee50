from fastapi import APIRouter

from retreat_billing.api.v1.endpoints import billing

# Create main API router
api_router = APIRouter(prefix="/api/v1")

# Partner billing, payment checks and PayPal webhooks
api_router.include_router(
    billing.router,
    prefix="/billing",
    tags=["Billing"]
)
