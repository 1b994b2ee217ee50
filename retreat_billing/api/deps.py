from functools import lru_cache
from typing import Annotated, Optional
import hmac
import logging

from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from retreat_billing.config import settings
from retreat_billing.database import get_db, async_session_factory
from retreat_billing.services.billing_orchestrator import BillingOrchestrator
from retreat_billing.services.email_service import EmailService, get_email_service
from retreat_billing.services.paypal_client import PayPalClient


logger = logging.getLogger(__name__)

# HTTP Bearer security scheme
security = HTTPBearer(auto_error=False)


async def require_admin_token(
    credentials: Annotated[Optional[HTTPAuthorizationCredentials], Depends(security)],
) -> None:
    """
    Dependency guarding the admin trigger routes.

    The bearer token must equal ADMIN_API_TOKEN. With no token configured
    every request is rejected.
    """
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )

    if not settings.ADMIN_API_TOKEN:
        logger.warning("Admin route called but ADMIN_API_TOKEN is not configured")
        raise credentials_exception
    if credentials is None:
        raise credentials_exception

    if not hmac.compare_digest(credentials.credentials.encode(), settings.ADMIN_API_TOKEN.encode()):
        logger.warning("Admin token verification failed")
        raise credentials_exception


@lru_cache()
def get_gateway() -> PayPalClient:
    """One PayPal client per process so its access token is reused."""
    return PayPalClient.from_settings()


def get_mailer() -> EmailService:
    return get_email_service()


def get_orchestrator(
    gateway: Annotated[PayPalClient, Depends(get_gateway)],
    email_service: Annotated[EmailService, Depends(get_mailer)],
) -> BillingOrchestrator:
    return BillingOrchestrator(
        session_factory=async_session_factory,
        gateway=gateway,
        email_service=email_service,
    )


# Type aliases for cleaner dependency injection
DB = Annotated[AsyncSession, Depends(get_db)]
AdminToken = Depends(require_admin_token)
Gateway = Annotated[PayPalClient, Depends(get_gateway)]
Orchestrator = Annotated[BillingOrchestrator, Depends(get_orchestrator)]
