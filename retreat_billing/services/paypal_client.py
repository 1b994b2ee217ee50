"""
PayPal Invoicing Integration.

Handles the PayPal Invoicing v2 API calls the billing engine needs:
- Authentication (OAuth2 client credentials, token cached until expiry)
- Invoice creation (idempotent per local invoice via PayPal-Request-Id)
- Sending an invoice to the recipient
- Invoice status lookup for payment reconciliation

Every call is bounded by a timeout. Timeouts, network errors, auth failures
and rejected payloads all raise GatewayError, which callers treat as retryable.

API Docs: https://developer.paypal.com/docs/api/invoicing/v2/
"""
import asyncio
import time
import httpx
import logging
from typing import Optional, Dict, Any

from retreat_billing.config import settings
from retreat_billing.exceptions import GatewayError, GatewayAuthError, GatewayTimeoutError

logger = logging.getLogger(__name__)

PAID_STATUSES = frozenset({"PAID", "MARKED_AS_PAID"})


class PayPalClient:
    """
    Client for the PayPal Invoicing API.

    Holds its own access token and expiry, so each instance is an explicit
    dependency rather than process-wide state.

    Usage:
        client = PayPalClient.from_settings()

        created = await client.create_invoice(payload, request_id="invoice-42")
        await client.send_invoice(created["id"])

        paid = await client.is_invoice_paid(created["id"])
    """

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        base_url: str = "https://api-m.sandbox.paypal.com",
        timeout: float = 30.0,
        refresh_margin_seconds: int = 300,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.client_id = client_id
        self.client_secret = client_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = httpx.Timeout(timeout)
        self.refresh_margin_seconds = refresh_margin_seconds
        self._transport = transport
        self._access_token: Optional[str] = None
        self._token_expiry: float = 0.0
        self._token_lock = asyncio.Lock()

    @classmethod
    def from_settings(cls) -> "PayPalClient":
        return cls(
            client_id=settings.PAYPAL_CLIENT_ID,
            client_secret=settings.PAYPAL_CLIENT_SECRET,
            base_url=settings.paypal_base_url,
            timeout=settings.PAYPAL_TIMEOUT_SECONDS,
            refresh_margin_seconds=settings.PAYPAL_TOKEN_REFRESH_MARGIN_SECONDS,
        )

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=self.timeout,
            transport=self._transport,
        )

    def _token_is_valid(self) -> bool:
        return bool(self._access_token) and time.monotonic() < self._token_expiry

    async def get_valid_token(self) -> str:
        """
        Get an OAuth access token, reusing the cached one until it nears expiry.
        """
        if self._token_is_valid():
            return self._access_token

        async with self._token_lock:
            # Another caller may have refreshed while we waited
            if self._token_is_valid():
                return self._access_token

            try:
                async with self._client() as client:
                    response = await client.post(
                        "/v1/oauth2/token",
                        data={"grant_type": "client_credentials"},
                        auth=(self.client_id, self.client_secret),
                        headers={"Accept": "application/json"},
                    )
            except httpx.TimeoutException as e:
                raise GatewayTimeoutError(f"PayPal authentication timed out: {e}") from e
            except httpx.HTTPError as e:
                raise GatewayAuthError(f"PayPal authentication failed: {e}") from e

            if response.status_code != 200:
                logger.error(f"PayPal auth failed: {response.status_code} {response.text}")
                raise GatewayAuthError(
                    "Failed to authenticate with PayPal",
                    status_code=response.status_code,
                    response_body=response.text,
                )

            data = response.json()
            token = data.get("access_token")
            if not token:
                raise GatewayAuthError("No access_token in PayPal auth response")

            expires_in = int(data.get("expires_in", 0))
            self._access_token = token
            self._token_expiry = time.monotonic() + max(expires_in - self.refresh_margin_seconds, 0)
            return token

    def invalidate_token(self) -> None:
        self._access_token = None
        self._token_expiry = 0.0

    async def _request(
        self,
        method: str,
        path: str,
        json: Optional[Dict[str, Any]] = None,
        headers: Optional[Dict[str, str]] = None,
    ) -> httpx.Response:
        """Make an authenticated request, mapping failures to GatewayError."""
        token = await self.get_valid_token()
        request_headers = {
            "Authorization": f"Bearer {token}",
            "Content-Type": "application/json",
        }
        if headers:
            request_headers.update(headers)

        try:
            async with self._client() as client:
                response = await client.request(method, path, json=json, headers=request_headers)
        except httpx.TimeoutException as e:
            raise GatewayTimeoutError(f"PayPal {method} {path} timed out: {e}") from e
        except httpx.HTTPError as e:
            raise GatewayError(f"PayPal {method} {path} failed: {e}") from e

        if response.status_code == 401:
            self.invalidate_token()
            raise GatewayAuthError(
                f"PayPal rejected credentials for {method} {path}",
                status_code=401,
                response_body=response.text,
            )
        if response.status_code >= 400:
            logger.error(f"PayPal {method} {path} returned {response.status_code}: {response.text}")
            raise GatewayError(
                f"PayPal {method} {path} returned {response.status_code}",
                status_code=response.status_code,
                response_body=response.text,
            )
        return response

    async def create_invoice(
        self,
        invoice_data: Dict[str, Any],
        request_id: Optional[str] = None,
    ) -> Dict[str, Any]:
        """
        Create a draft invoice.

        Args:
            invoice_data: Invoicing v2 payload
            request_id: Idempotency key; PayPal returns the same invoice for a repeated key

        Returns:
            {"id": remote invoice id, "href": payer-facing URL}
        """
        headers = {"Prefer": "return=representation"}
        if request_id:
            headers["PayPal-Request-Id"] = request_id

        response = await self._request("POST", "/v2/invoicing/invoices", json=invoice_data, headers=headers)
        data = response.json() if response.content else {}

        invoice_id = data.get("id")
        if not invoice_id and data.get("href"):
            # return=minimal style: a link description pointing at the new invoice
            invoice_id = data["href"].rstrip("/").rsplit("/", 1)[-1]
        if not invoice_id:
            raise GatewayError("PayPal create invoice response has no invoice id", response_body=data)

        href = (data.get("detail") or {}).get("metadata", {}).get("recipient_view_url")
        if not href:
            href = f"https://www.paypal.com/invoice/p/#{invoice_id}"

        logger.info(f"PayPal invoice created: {invoice_id}")
        return {"id": invoice_id, "href": href}

    async def send_invoice(self, invoice_id: str) -> None:
        """Send a draft invoice to its recipient."""
        await self._request(
            "POST",
            f"/v2/invoicing/invoices/{invoice_id}/send",
            json={"send_to_invoicer": False},
        )
        logger.info(f"PayPal invoice sent: {invoice_id}")

    async def get_invoice(self, invoice_id: str) -> Dict[str, Any]:
        """Get invoice details, including its ``status``."""
        response = await self._request("GET", f"/v2/invoicing/invoices/{invoice_id}")
        return response.json()

    async def is_invoice_paid(self, invoice_id: str) -> bool:
        """True only when PayPal reports the invoice as paid. Errors propagate."""
        invoice = await self.get_invoice(invoice_id)
        return invoice.get("status") in PAID_STATUSES
