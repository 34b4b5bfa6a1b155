"""
Tests for settlement: signed Stripe events, Payzone notifications, PayPal capture, manual settlement.
"""

import hashlib
import hmac
import json
import time

import pytest
from httpx import AsyncClient

from settlement.infrastructure.payzone_provider import build_signature
from settlement.infrastructure.paypal_provider import PaypalCapture
from settlement.models import Booking, Payment
from settlement.models.enums import BookingStatus, PaymentStatus, ProviderId
from settlement.services import provider_factory

from conftest import auth_headers_for, make_booking, make_payment, reload

STRIPE_SECRET = "whsec_test_secret"
PAYZONE_SECRET = "payzone_test_secret"


def stripe_signature(payload: bytes, secret: str = STRIPE_SECRET, timestamp: int = None) -> str:
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def stripe_event(event_type: str, obj: dict) -> bytes:
    return json.dumps({"id": "evt_test", "type": event_type, "data": {"object": obj}}).encode()


async def post_stripe(client: AsyncClient, payload: bytes, signature: str = None):
    return await client.post(
        "/api/v1/webhooks/stripe",
        content=payload,
        headers={
            "Content-Type": "application/json",
            "Stripe-Signature": signature if signature is not None else stripe_signature(payload),
        },
    )


def succeeded_event(booking_id: int, payment_id: int) -> bytes:
    return stripe_event(
        "payment_intent.succeeded",
        {
            "id": "pi_123",
            "metadata": {"bookingId": str(booking_id), "paymentId": str(payment_id)},
            "charges": {"data": [{"receipt_url": "https://pay.stripe.com/receipts/r_1"}]},
        },
    )


@pytest.mark.asyncio
async def test_payment_succeeded_confirms_booking(client: AsyncClient, db_session, pending_booking):
    payment = await make_payment(db_session, pending_booking)

    response = await post_stripe(client, succeeded_event(pending_booking.id, payment.id))
    assert response.status_code == 200
    assert response.json()["received"] is True
    assert response.json()["booking_id"] == pending_booking.id

    stored = await reload(db_session, Payment, payment.id)
    assert stored.status == PaymentStatus.SUCCEEDED.value
    assert stored.provider_payment_id == "pi_123"
    assert stored.receipt_url == "https://pay.stripe.com/receipts/r_1"
    assert stored.captured_at is not None

    booking = await reload(db_session, Booking, pending_booking.id)
    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.payment_status == PaymentStatus.SUCCEEDED.value
    assert booking.expires_at is None


@pytest.mark.asyncio
async def test_redelivery_converges(client: AsyncClient, db_session, pending_booking):
    """Replaying the same event leaves the same state, captured_at included."""
    payment = await make_payment(db_session, pending_booking)
    payload = succeeded_event(pending_booking.id, payment.id)

    await post_stripe(client, payload)
    first = await reload(db_session, Payment, payment.id)
    captured_at = first.captured_at

    replay = await post_stripe(client, payload)
    assert replay.status_code == 200
    second = await reload(db_session, Payment, payment.id)
    assert second.status == PaymentStatus.SUCCEEDED.value
    assert second.captured_at == captured_at


@pytest.mark.asyncio
async def test_checkout_completed_records_payment_intent(client: AsyncClient, db_session, pending_booking):
    payment = await make_payment(db_session, pending_booking)
    payload = stripe_event(
        "checkout.session.completed",
        {
            "id": "cs_test_123",
            "payment_intent": "pi_from_session",
            "metadata": {"bookingId": str(pending_booking.id), "paymentId": str(payment.id)},
        },
    )

    response = await post_stripe(client, payload)
    assert response.status_code == 200

    stored = await reload(db_session, Payment, payment.id)
    assert stored.status == PaymentStatus.PROCESSING.value
    assert stored.provider_payment_id == "pi_from_session"
    booking = await reload(db_session, Booking, pending_booking.id)
    assert booking.status == BookingStatus.PENDING.value


@pytest.mark.asyncio
async def test_payment_failed(client: AsyncClient, db_session, pending_booking):
    payment = await make_payment(db_session, pending_booking)
    payload = stripe_event(
        "payment_intent.payment_failed",
        {
            "id": "pi_123",
            "metadata": {"bookingId": str(pending_booking.id), "paymentId": str(payment.id)},
            "last_payment_error": {"code": "card_declined", "message": "Your card was declined."},
        },
    )

    await post_stripe(client, payload)

    stored = await reload(db_session, Payment, payment.id)
    assert stored.status == PaymentStatus.CANCELLED.value
    assert stored.error_code == "card_declined"
    booking = await reload(db_session, Booking, pending_booking.id)
    assert booking.payment_status == PaymentStatus.CANCELLED.value
    assert booking.status == BookingStatus.PENDING.value


@pytest.mark.asyncio
async def test_failure_after_success_is_ignored(client: AsyncClient, db_session, pending_booking):
    payment = await make_payment(db_session, pending_booking)
    await post_stripe(client, succeeded_event(pending_booking.id, payment.id))

    late_failure = stripe_event(
        "payment_intent.payment_failed",
        {
            "id": "pi_123",
            "metadata": {"bookingId": str(pending_booking.id), "paymentId": str(payment.id)},
            "last_payment_error": {"code": "card_declined"},
        },
    )
    response = await post_stripe(client, late_failure)
    assert response.status_code == 200

    stored = await reload(db_session, Payment, payment.id)
    assert stored.status == PaymentStatus.SUCCEEDED.value
    booking = await reload(db_session, Booking, pending_booking.id)
    assert booking.payment_status == PaymentStatus.SUCCEEDED.value


@pytest.mark.asyncio
async def test_failure_of_abandoned_checkout_keeps_current_status(client: AsyncClient, db_session, pending_booking):
    abandoned = await make_payment(db_session, pending_booking, provider_payment_id="cs_old")
    current = await make_payment(db_session, pending_booking, status=PaymentStatus.PROCESSING, provider_payment_id="cs_new")
    booking_id, abandoned_id, current_id = pending_booking.id, abandoned.id, current.id

    payload = stripe_event(
        "payment_intent.payment_failed",
        {
            "id": "pi_old",
            "metadata": {"bookingId": str(booking_id), "paymentId": str(abandoned_id)},
            "last_payment_error": {"code": "expired_card"},
        },
    )
    response = await post_stripe(client, payload)
    assert response.status_code == 200

    stored = await reload(db_session, Payment, abandoned_id)
    assert stored.status == PaymentStatus.CANCELLED.value
    booking = await reload(db_session, Booking, booking_id)
    assert booking.payment_id == current_id
    assert booking.payment_status == PaymentStatus.PROCESSING.value

@pytest.mark.asyncio
async def test_invalid_signature_changes_nothing(client: AsyncClient, db_session, pending_booking):
    payment = await make_payment(db_session, pending_booking)
    payload = succeeded_event(pending_booking.id, payment.id)

    response = await post_stripe(client, payload, signature=stripe_signature(payload, secret="whsec_wrong"))
    assert response.status_code == 200
    assert response.json() == {"received": False, "event": None, "reason": "invalid-signature", "booking_id": None}

    stored = await reload(db_session, Payment, payment.id)
    assert stored.status == PaymentStatus.REQUIRES_PAYMENT_METHOD.value


@pytest.mark.asyncio
async def test_stale_signature_rejected(client: AsyncClient, db_session, pending_booking):
    payment = await make_payment(db_session, pending_booking)
    payload = succeeded_event(pending_booking.id, payment.id)

    response = await post_stripe(client, payload, signature=stripe_signature(payload, timestamp=int(time.time()) - 3600))
    assert response.json()["received"] is False


@pytest.mark.asyncio
async def test_missing_signature_header(client: AsyncClient):
    response = await client.post("/api/v1/webhooks/stripe", content=b"{}")
    assert response.status_code == 200
    assert response.json()["reason"] == "invalid-signature"


@pytest.mark.asyncio
async def test_metadata_pointing_at_other_booking(client: AsyncClient, db_session, explorer, session, pending_booking):
    """A payment id paired with the wrong booking id is a no-op."""
    payment = await make_payment(db_session, pending_booking)
    other = await make_booking(db_session, explorer, session, guests=1)

    response = await post_stripe(client, succeeded_event(other.id, payment.id))
    assert response.status_code == 200
    assert response.json()["received"] is False

    stored = await reload(db_session, Payment, payment.id)
    assert stored.status == PaymentStatus.REQUIRES_PAYMENT_METHOD.value


@pytest.mark.asyncio
async def test_unknown_event_acknowledged(client: AsyncClient):
    payload = stripe_event("customer.created", {"id": "cus_1"})
    response = await post_stripe(client, payload)
    assert response.status_code == 200
    assert response.json()["received"] is True


@pytest.mark.asyncio
async def test_payzone_approved_notification(client: AsyncClient, db_session, pending_booking):
    payment = await make_payment(db_session, pending_booking, provider=ProviderId.PAYZONE, provider_payment_id=None)
    fields = {"orderId": str(payment.id), "status": "approved", "amount": "10000"}
    fields["signature"] = build_signature(fields, PAYZONE_SECRET)

    response = await client.post("/api/v1/webhooks/payzone", data=fields)
    assert response.status_code == 200
    assert response.json()["received"] is True

    booking = await reload(db_session, Booking, pending_booking.id)
    assert booking.status == BookingStatus.CONFIRMED.value
    assert booking.payment_status == PaymentStatus.SUCCEEDED.value


@pytest.mark.asyncio
async def test_payzone_declined_json_notification(client: AsyncClient, db_session, pending_booking):
    payment = await make_payment(db_session, pending_booking, provider=ProviderId.PAYZONE, provider_payment_id=None)
    fields = {"orderId": str(payment.id), "status": "DECLINED"}
    fields["signature"] = build_signature(fields, PAYZONE_SECRET)

    response = await client.post("/api/v1/webhooks/payzone", json=fields)
    assert response.json()["received"] is True

    stored = await reload(db_session, Payment, payment.id)
    assert stored.status == PaymentStatus.CANCELLED.value


@pytest.mark.asyncio
async def test_payzone_bad_signature(client: AsyncClient, db_session, pending_booking):
    payment = await make_payment(db_session, pending_booking, provider=ProviderId.PAYZONE, provider_payment_id=None)
    fields = {"orderId": str(payment.id), "status": "APPROVED", "signature": "0" * 64}

    response = await client.post("/api/v1/webhooks/payzone", data=fields)
    assert response.json() == {"received": False, "event": None, "reason": "invalid-signature", "booking_id": None}

    stored = await reload(db_session, Payment, payment.id)
    assert stored.status == PaymentStatus.REQUIRES_PAYMENT_METHOD.value


class FakePaypal:
    def __init__(self, capture: PaypalCapture):
        self.capture = capture

    async def capture_order(self, order_id: str) -> PaypalCapture:
        return self.capture


@pytest.mark.asyncio
async def test_paypal_capture_settles(client: AsyncClient, db_session, explorer_headers, pending_booking, monkeypatch):
    payment = await make_payment(db_session, pending_booking, provider=ProviderId.PAYPAL, provider_payment_id="ORDER-1")
    capture = PaypalCapture(
        order_id="ORDER-1", status="COMPLETED", capture_id="CAP-1", booking_id=pending_booking.id, payment_id=payment.id
    )
    monkeypatch.setitem(provider_factory.PROVIDERS, ProviderId.PAYPAL, lambda test_mode: FakePaypal(capture))

    response = await client.post("/api/v1/payments/paypal/capture", json={"order_id": "ORDER-1"}, headers=explorer_headers)
    assert response.status_code == 200
    assert response.json()["status"] == "CONFIRMED"

    stored = await reload(db_session, Payment, payment.id)
    assert stored.status == PaymentStatus.SUCCEEDED.value
    assert stored.metadata_json["paypalCaptureId"] == "CAP-1"


@pytest.mark.asyncio
async def test_paypal_capture_not_completed(client: AsyncClient, db_session, explorer_headers, pending_booking, monkeypatch):
    await make_payment(db_session, pending_booking, provider=ProviderId.PAYPAL, provider_payment_id="ORDER-2")
    capture = PaypalCapture(order_id="ORDER-2", status="PAYER_ACTION_REQUIRED", capture_id=None, booking_id=None, payment_id=None)
    monkeypatch.setitem(provider_factory.PROVIDERS, ProviderId.PAYPAL, lambda test_mode: FakePaypal(capture))

    response = await client.post("/api/v1/payments/paypal/capture", json={"order_id": "ORDER-2"}, headers=explorer_headers)
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_mark_cash_booking_paid(client: AsyncClient, db_session, explorer, admin_headers, session):
    booking = await make_booking(db_session, explorer, session, guests=2, status=BookingStatus.CONFIRMED)
    payment = await make_payment(
        db_session, booking, provider=ProviderId.CASH, status=PaymentStatus.PROCESSING, provider_payment_id="CASH-1"
    )
    booking_id, payment_id = booking.id, payment.id

    forbidden = await client.post(
        f"/api/v1/payments/bookings/{booking_id}/mark-paid",
        headers=auth_headers_for(explorer),
    )
    assert forbidden.status_code == 403

    response = await client.post(f"/api/v1/payments/bookings/{booking_id}/mark-paid", headers=admin_headers)
    assert response.status_code == 200
    assert response.json()["payment_status"] == "SUCCEEDED"

    stored = await reload(db_session, Payment, payment_id)
    assert stored.status == PaymentStatus.SUCCEEDED.value
    assert stored.captured_at is not None
