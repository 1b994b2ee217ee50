"""Shared fixtures: in-memory database, model factories, fake gateway and mailer."""

import itertools
from datetime import date, timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, Mock

import pytest
import pytest_asyncio
from sqlalchemy.pool import StaticPool

from retreat_billing.database import build_engine, build_session_factory, init_db
from retreat_billing.models import Booking, BookingStatus, CommissionMode, Invoice, InvoiceStatus, Partner


@pytest_asyncio.fixture
async def engine():
    # One shared in-memory connection so every session sees the same data
    engine = build_engine("sqlite+aiosqlite://", poolclass=StaticPool)
    await init_db(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return build_session_factory(engine)


@pytest_asyncio.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
def days_ago():
    def _days_ago(days: int) -> date:
        return date.today() - timedelta(days=days)
    return _days_ago


@pytest.fixture
def make_partner(db):
    counter = itertools.count(1)

    async def _make_partner(
        name: str = None,
        commission_mode: str = CommissionMode.PERCENTAGE.value,
        commission_rate=None,
        flat_rate_amount=None,
        email: str = None,
        is_active: bool = True,
    ) -> Partner:
        n = next(counter)
        partner = Partner(
            name=name or f"Partner {n}",
            email=email or f"partner{n}@retreats.example",
            commission_mode=commission_mode,
            commission_rate=commission_rate,
            flat_rate_amount=flat_rate_amount,
            is_active=is_active,
        )
        db.add(partner)
        await db.commit()
        return partner
    return _make_partner


@pytest.fixture
def make_booking(db):
    async def _make_booking(
        partner: Partner,
        retreat_date: date,
        final_net_revenue=Decimal("1000.00"),
        status: str = BookingStatus.COMPLETED.value,
        invoiced: bool = False,
        guest_name: str = "Guest",
    ) -> Booking:
        booking = Booking(
            partner_id=partner.id,
            guest_name=guest_name,
            retreat_date=retreat_date,
            expected_net_revenue=Decimal("1000.00"),
            final_net_revenue=final_net_revenue,
            status=status,
            invoiced=invoiced,
        )
        db.add(booking)
        await db.commit()
        return booking
    return _make_booking


@pytest.fixture
def make_invoice(db):
    async def _make_invoice(
        partner: Partner,
        billing_cycle: date,
        amount=Decimal("150.00"),
        status: str = InvoiceStatus.SENT.value,
        due_date: date = None,
        paypal_invoice_id: str = None,
    ) -> Invoice:
        invoice = Invoice(
            partner_id=partner.id,
            billing_cycle=billing_cycle,
            amount=amount,
            status=status,
            due_date=due_date or date.today(),
            paypal_invoice_id=paypal_invoice_id,
        )
        db.add(invoice)
        await db.commit()
        return invoice
    return _make_invoice


@pytest.fixture
def gateway():
    """Stand-in for PayPalClient: every create returns a fresh remote id."""
    counter = itertools.count(1)
    fake = Mock()

    async def create_invoice(payload, request_id=None):
        remote_id = f"INV2-TEST-{next(counter):04d}"
        return {"id": remote_id, "href": f"https://www.paypal.com/invoice/p/#{remote_id}"}

    fake.create_invoice = AsyncMock(side_effect=create_invoice)
    fake.send_invoice = AsyncMock(return_value=None)
    fake.get_invoice = AsyncMock(side_effect=lambda remote_id: {"id": remote_id, "status": "DRAFT"})
    fake.is_invoice_paid = AsyncMock(return_value=False)
    return fake


@pytest.fixture
def email_service():
    fake = Mock()
    fake.send_invoice_notification.return_value = True
    return fake
