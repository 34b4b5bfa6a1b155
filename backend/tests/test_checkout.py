"""
Tests for checkout orchestration: provider ordering, fallback, cash, settings.
"""

from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy import select

from settlement.core.money import from_minor_units, to_minor_units
from settlement.models import Booking, Payment
from settlement.models.enums import BookingStatus, PaymentStatus, ProviderId
from settlement.services import provider_factory
from settlement.services.checkout_service import candidate_providers
from settlement.services.interfaces.payment_provider import (
    CheckoutResult,
    PaymentProvider,
    PaymentProviderError,
    RefundResult,
)

from conftest import configure_providers, make_booking, reload

CHECKOUT_URLS = {"success_url": "https://app.test/ok", "cancel_url": "https://app.test/cancel"}


class FakeProvider(PaymentProvider):
    """Records checkout requests; fails with `error` when set."""

    def __init__(self, provider_id: ProviderId, error: str = None):
        self.provider_id = provider_id
        self.error = error
        self.requests = []

    async def create_checkout(self, request):
        self.requests.append(request)
        if self.error:
            raise PaymentProviderError(self.provider_id, self.error)
        return CheckoutResult(
            redirect_url=f"https://{self.provider_id.value.lower()}.test/pay/{request.metadata['paymentId']}",
            provider_payment_id=f"{self.provider_id.value.lower()}_{request.metadata['paymentId']}",
        )

    async def create_refund(self, request):
        return RefundResult(provider_refund_id="re_fake")


@pytest.fixture
def fake_providers(monkeypatch):
    fakes = {provider_id: FakeProvider(provider_id) for provider_id in ProviderId if provider_id != ProviderId.CASH}
    for provider_id, fake in fakes.items():
        monkeypatch.setitem(provider_factory.PROVIDERS, provider_id, lambda test_mode, fake=fake: fake)
    return fakes


def test_minor_unit_conversion_rounds_half_up():
    assert to_minor_units(Decimal("19.995")) == 2000
    assert to_minor_units(Decimal("100.00")) == 10000
    assert to_minor_units("0.1") == 10
    assert from_minor_units(1999) == Decimal("19.99")


def test_candidate_order_and_filtering():
    order = candidate_providers(ProviderId.PAYPAL, "STRIPE", ["stripe", "CMI", "PAYZONE", "PAYPAL"])
    assert order == [ProviderId.PAYPAL, ProviderId.STRIPE, ProviderId.PAYZONE]


def test_candidates_without_request():
    assert candidate_providers(None, "CMI", ["CMI"]) == []
    assert candidate_providers(None, "PAYZONE", []) == [ProviderId.PAYZONE]


@pytest.mark.asyncio
async def test_checkout_with_default_provider(client: AsyncClient, db_session, explorer_headers, pending_booking, fake_providers):
    response = await client.post(
        "/api/v1/payments/checkout",
        json={"booking_id": pending_booking.id, **CHECKOUT_URLS},
        headers=explorer_headers,
    )
    assert response.status_code == 200
    data = response.json()
    assert data["redirect_url"] == f"https://stripe.test/pay/{data['payment_id']}"

    payment = await reload(db_session, Payment, data["payment_id"])
    assert payment.provider == ProviderId.STRIPE.value
    assert payment.status == PaymentStatus.REQUIRES_PAYMENT_METHOD.value
    assert payment.amount == 10000
    assert payment.provider_payment_id == f"stripe_{payment.id}"

    booking = await reload(db_session, Booking, pending_booking.id)
    assert booking.payment_id == payment.id
    assert booking.payment_status == PaymentStatus.REQUIRES_PAYMENT_METHOD.value
    assert booking.status == BookingStatus.PENDING.value

    sent = fake_providers[ProviderId.STRIPE].requests[0]
    assert sent.amount == 10000
    assert sent.metadata == {"bookingId": str(pending_booking.id), "paymentId": str(payment.id)}


@pytest.mark.asyncio
async def test_checkout_falls_back_and_corrects_provider(
    client: AsyncClient, db_session, explorer_headers, pending_booking, fake_providers
):
    await configure_providers(db_session, "STRIPE", ["STRIPE", "PAYZONE"])
    fake_providers[ProviderId.STRIPE].error = "Stripe API error: card processing unavailable"

    response = await client.post(
        "/api/v1/payments/checkout",
        json={"booking_id": pending_booking.id, **CHECKOUT_URLS},
        headers=explorer_headers,
    )
    assert response.status_code == 200
    payment = await reload(db_session, Payment, response.json()["payment_id"])
    assert payment.provider == ProviderId.PAYZONE.value
    assert response.json()["redirect_url"].startswith("https://payzone.test/")


@pytest.mark.asyncio
async def test_checkout_requested_provider_first(client: AsyncClient, db_session, explorer_headers, pending_booking, fake_providers):
    await configure_providers(db_session, "STRIPE", ["STRIPE", "PAYPAL"])

    response = await client.post(
        "/api/v1/payments/checkout",
        json={"booking_id": pending_booking.id, "provider_id": "PAYPAL", **CHECKOUT_URLS},
        headers=explorer_headers,
    )
    assert response.status_code == 200
    assert fake_providers[ProviderId.PAYPAL].requests
    assert not fake_providers[ProviderId.STRIPE].requests


@pytest.mark.asyncio
async def test_checkout_exhausted_leaves_orphan_payment(
    client: AsyncClient, db_session, explorer_headers, pending_booking, fake_providers
):
    await configure_providers(db_session, "STRIPE", ["STRIPE", "PAYPAL"])
    fake_providers[ProviderId.STRIPE].error = "stripe down"
    fake_providers[ProviderId.PAYPAL].error = "PayPal auth failed: 401"
    booking_id = pending_booking.id

    response = await client.post(
        "/api/v1/payments/checkout",
        json={"booking_id": booking_id, **CHECKOUT_URLS},
        headers=explorer_headers,
    )
    assert response.status_code == 400
    assert response.json()["detail"] == "PayPal auth failed: 401"

    result = await db_session.execute(select(Payment).where(Payment.booking_id == booking_id))
    payments = result.scalars().all()
    await db_session.commit()
    assert len(payments) == 1
    assert payments[0].status == PaymentStatus.REQUIRES_PAYMENT_METHOD.value

    booking = await reload(db_session, Booking, booking_id)
    assert booking.payment_id is None


@pytest.mark.asyncio
async def test_cash_confirms_immediately(client: AsyncClient, db_session, explorer_headers, pending_booking, fake_providers):
    await configure_providers(db_session, "CASH", ["CASH", "STRIPE"])

    response = await client.post(
        "/api/v1/payments/checkout",
        json={"booking_id": pending_booking.id, **CHECKOUT_URLS},
        headers=explorer_headers,
    )
    assert response.status_code == 200
    assert response.json()["redirect_url"] == CHECKOUT_URLS["success_url"]

    payment = await reload(db_session, Payment, response.json()["payment_id"])
    assert payment.provider == ProviderId.CASH.value
    assert payment.status == PaymentStatus.PROCESSING.value

    booking = await reload(db_session, Booking, pending_booking.id)
    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.payment_status == PaymentStatus.PROCESSING.value
    assert booking.expires_at is None
    assert not fake_providers[ProviderId.STRIPE].requests


@pytest.mark.asyncio
async def test_cash_is_never_a_fallback(client: AsyncClient, db_session, explorer_headers, pending_booking, fake_providers):
    await configure_providers(db_session, "STRIPE", ["STRIPE", "CASH"])
    fake_providers[ProviderId.STRIPE].error = "stripe down"
    booking_id = pending_booking.id

    response = await client.post(
        "/api/v1/payments/checkout",
        json={"booking_id": booking_id, **CHECKOUT_URLS},
        headers=explorer_headers,
    )
    assert response.status_code == 400
    booking = await reload(db_session, Booking, booking_id)
    assert booking.status == BookingStatus.PENDING.value


@pytest.mark.asyncio
async def test_no_supported_provider(client: AsyncClient, db_session, explorer_headers, pending_booking):
    await configure_providers(db_session, "CMI", ["CMI"])

    response = await client.post(
        "/api/v1/payments/checkout",
        json={"booking_id": pending_booking.id, **CHECKOUT_URLS},
        headers=explorer_headers,
    )
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_checkout_of_cancelled_booking(
    client: AsyncClient, db_session, explorer, explorer_headers, session, fake_providers
):
    booking = await make_booking(db_session, explorer, session, guests=1, status=BookingStatus.CANCELLED)
    response = await client.post(
        "/api/v1/payments/checkout",
        json={"booking_id": booking.id, **CHECKOUT_URLS},
        headers=explorer_headers,
    )
    assert response.status_code == 409


@pytest.mark.asyncio
async def test_payment_settings_created_lazily(client: AsyncClient, admin_headers):
    response = await client.get("/api/v1/payments/settings", headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"default_provider": "STRIPE", "enabled_providers": ["STRIPE"], "test_mode": True}


@pytest.mark.asyncio
async def test_replace_payment_settings(client: AsyncClient, admin_headers, explorer_headers):
    payload = {"default_provider": "paypal", "enabled_providers": ["paypal", "cash"], "test_mode": False}

    forbidden = await client.put("/api/v1/payments/settings", json=payload, headers=explorer_headers)
    assert forbidden.status_code == 403

    response = await client.put("/api/v1/payments/settings", json=payload, headers=admin_headers)
    assert response.status_code == 200
    assert response.json() == {"default_provider": "PAYPAL", "enabled_providers": ["PAYPAL", "CASH"], "test_mode": False}
