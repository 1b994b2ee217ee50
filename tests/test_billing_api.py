"""Tests for the billing HTTP endpoints."""

from datetime import date
from decimal import Decimal

import httpx
import pytest
import pytest_asyncio

from retreat_billing.api.deps import get_gateway, get_orchestrator
from retreat_billing.config import settings
from retreat_billing.database import get_db
from retreat_billing.main import app
from retreat_billing.services.billing_orchestrator import BillingOrchestrator

TOKEN = "test-admin-token"
AUTH = {"Authorization": f"Bearer {TOKEN}"}


@pytest_asyncio.fixture
async def client(session_factory, gateway, email_service, monkeypatch):
    monkeypatch.setattr(settings, "ADMIN_API_TOKEN", TOKEN)

    async def override_get_db():
        async with session_factory() as session:
            yield session
            await session.commit()

    orchestrator = BillingOrchestrator(session_factory, gateway=gateway, email_service=email_service)
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    app.dependency_overrides[get_gateway] = lambda: gateway

    async with httpx.AsyncClient(transport=httpx.ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()


@pytest.mark.asyncio
class TestAdminAuth:

    async def test_missing_token(self, client):
        response = await client.post("/api/v1/billing/run")
        assert response.status_code == 401

    async def test_wrong_token(self, client):
        response = await client.post("/api/v1/billing/run", headers={"Authorization": "Bearer nope"})
        assert response.status_code == 401

    async def test_unconfigured_token_rejects_everything(self, client, monkeypatch):
        monkeypatch.setattr(settings, "ADMIN_API_TOKEN", "")
        response = await client.post("/api/v1/billing/run", headers={"Authorization": "Bearer "})
        assert response.status_code == 401


@pytest.mark.asyncio
class TestBillingRoutes:

    async def test_run_billing_cycle(self, client, make_partner, make_booking, days_ago):
        partner = await make_partner(name="Sunrise Yoga")
        await make_booking(partner, days_ago(40))

        response = await client.post("/api/v1/billing/run", params={"billing_cycle": "2026-11-15"}, headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["billing_cycle"] == "2026-11-01"
        assert body["total_partners"] == 1
        assert body["success_count"] == 1

    async def test_partner_run_unknown_partner(self, client):
        response = await client.post("/api/v1/billing/partners/999/run", headers=AUTH)
        assert response.status_code == 404

    async def test_verification_then_billing(self, client, make_partner, make_booking, days_ago):
        partner = await make_partner()
        booking = await make_booking(partner, days_ago(45), status="scheduled", final_net_revenue=None)

        response = await client.post(
            f"/api/v1/billing/partners/{partner.id}/verification",
            json={"entries": [{"booking_id": booking.id, "status": "completed", "final_net_revenue": "800.00"}]},
            headers=AUTH,
        )

        assert response.status_code == 200
        body = response.json()
        assert body["updated_count"] == 1
        assert Decimal(body["billing"]["invoice"]["amount"]) == Decimal("120.00")

    async def test_verification_invalid_transition(self, client, make_partner, make_booking, days_ago):
        partner = await make_partner()
        booking = await make_booking(partner, days_ago(45), status="canceled", final_net_revenue=None)

        response = await client.post(
            f"/api/v1/billing/partners/{partner.id}/verification",
            json={"entries": [{"booking_id": booking.id, "status": "completed", "final_net_revenue": "10"}]},
            headers=AUTH,
        )

        assert response.status_code == 409

    async def test_verification_validation_error(self, client, make_partner):
        partner = await make_partner()
        response = await client.post(
            f"/api/v1/billing/partners/{partner.id}/verification",
            json={"entries": [{"booking_id": 1, "status": "completed"}]},
            headers=AUTH,
        )
        assert response.status_code == 422

    async def test_invoice_stats(self, client, make_partner, make_invoice):
        partner = await make_partner()
        await make_invoice(partner, date(2026, 9, 1), amount=Decimal("75.00"), paypal_invoice_id="INV2-1")

        response = await client.get("/api/v1/billing/invoices/stats", headers=AUTH)

        assert response.status_code == 200
        body = response.json()
        assert body["sent_count"] == 1
        assert Decimal(body["outstanding_revenue"]) == Decimal("75.00")

    async def test_reconcile_and_overdue(self, client, gateway):
        gateway.is_invoice_paid.return_value = True

        reconcile = await client.post("/api/v1/billing/payments/reconcile", headers=AUTH)
        overdue = await client.post("/api/v1/billing/payments/overdue-check", headers=AUTH)

        assert reconcile.json() == {"checked": 0, "paid_count": 0, "still_pending": 0, "failed": 0}
        assert overdue.json() == {"alerts_created": 0}


@pytest.mark.asyncio
class TestPayPalWebhook:

    async def test_paid_event_is_confirmed(self, client, gateway, make_partner, make_invoice):
        partner = await make_partner()
        invoice = await make_invoice(partner, date(2026, 9, 1), paypal_invoice_id="INV2-HOOK")
        gateway.is_invoice_paid.return_value = True

        response = await client.post("/api/v1/billing/webhooks/paypal", json={
            "id": "WH-1",
            "event_type": "INVOICING.INVOICE.PAID",
            "resource": {"id": "INV2-HOOK", "status": "PAID"},
        })

        assert response.status_code == 200
        assert response.json() == {"status": "ok", "event": "INVOICING.INVOICE.PAID", "invoice_id": invoice.id}
        gateway.is_invoice_paid.assert_awaited_once_with("INV2-HOOK")

    async def test_unconfirmed_event(self, client, gateway, make_partner, make_invoice):
        partner = await make_partner()
        await make_invoice(partner, date(2026, 9, 1), paypal_invoice_id="INV2-HOOK")
        gateway.is_invoice_paid.return_value = False

        response = await client.post("/api/v1/billing/webhooks/paypal", json={
            "event_type": "INVOICING.INVOICE.PAID",
            "resource": {"id": "INV2-HOOK"},
        })

        assert response.json()["status"] == "unconfirmed"

    async def test_other_events_ignored(self, client, gateway):
        response = await client.post("/api/v1/billing/webhooks/paypal", json={
            "event_type": "INVOICING.INVOICE.CREATED",
            "resource": {"id": "INV2-X"},
        })

        assert response.json()["status"] == "ignored"
        gateway.is_invoice_paid.assert_not_awaited()

    async def test_gateway_outage_asks_for_redelivery(self, client, gateway, make_partner, make_invoice):
        from retreat_billing.exceptions import GatewayError

        partner = await make_partner()
        await make_invoice(partner, date(2026, 9, 1), paypal_invoice_id="INV2-HOOK")
        gateway.is_invoice_paid.side_effect = GatewayError("unavailable")

        response = await client.post("/api/v1/billing/webhooks/paypal", json={
            "event_type": "INVOICING.INVOICE.PAID",
            "resource": {"id": "INV2-HOOK"},
        })

        assert response.status_code == 502
