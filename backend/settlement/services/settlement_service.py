"""
Settlement state machine: applies provider notifications to Payment and Booking.

Every transition is a plain field assignment, so redelivering a notification
converges on the same row state. SUCCEEDED is terminal for a payment: late
"completed" or "failed" notifications for it are acknowledged and ignored.

Webhook handlers never raise to the provider. A notification that fails its
signature, is not JSON, or cannot be tied to a Payment of the named Booking is
logged and acknowledged with `received=False`, so the provider stops
redelivering it.
"""

from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from settlement.core.logging import get_logger
from settlement.core.metrics import record_webhook_event
from settlement.core.timeutils import utcnow
from settlement.infrastructure.payzone_provider import verify_payzone_signature
from settlement.infrastructure.stripe_provider import WebhookVerificationError, verify_webhook
from settlement.models.booking import Booking
from settlement.models.enums import ACTIVE_BOOKING_STATUSES, BookingStatus, PaymentStatus, ProviderId
from settlement.models.payment import Payment
from settlement.models.user import User
from settlement.schemas.payment import WebhookAck
from settlement.services.interfaces.payment_provider import PaymentProviderError
from settlement.services.provider_factory import get_provider

logger = get_logger(__name__)

CHECKOUT_COMPLETED = "checkout.session.completed"
PAYMENT_SUCCEEDED = "payment_intent.succeeded"
PAYMENT_FAILED = "payment_intent.payment_failed"

PAYZONE_SUCCESS_STATUSES = {"APPROVED", "SUCCESS", "SUCCEEDED"}


def _as_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


async def resolve_payment(db: AsyncSession, booking_id, payment_id) -> Optional[Payment]:
    """The Payment named by notification metadata, only if it belongs to the named Booking."""
    booking_id, payment_id = _as_int(booking_id), _as_int(payment_id)
    if booking_id is None or payment_id is None:
        return None
    payment = await db.get(Payment, payment_id, populate_existing=True)
    if payment is None or payment.booking_id != booking_id:
        return None
    return payment


async def mark_processing(db: AsyncSession, payment: Payment, provider_payment_id: Optional[str]) -> bool:
    if payment.status == PaymentStatus.SUCCEEDED.value:
        return False
    payment.status = PaymentStatus.PROCESSING.value
    if provider_payment_id:
        payment.provider_payment_id = provider_payment_id
    await db.flush()
    return True


async def mark_succeeded(
    db: AsyncSession,
    payment: Payment,
    provider_payment_id: Optional[str] = None,
    receipt_url: Optional[str] = None,
) -> Booking:
    payment.status = PaymentStatus.SUCCEEDED.value
    if provider_payment_id:
        payment.provider_payment_id = provider_payment_id
    if receipt_url:
        payment.receipt_url = receipt_url
    if payment.captured_at is None:
        payment.captured_at = utcnow()

    booking = await db.get(Booking, payment.booking_id, populate_existing=True)
    booking.payment_id = payment.id
    booking.payment_status = PaymentStatus.SUCCEEDED.value
    if booking.status in ACTIVE_BOOKING_STATUSES:
        booking.status = BookingStatus.CONFIRMED.value
        booking.expires_at = None
    else:
        # Seats were already released; staff refund or rebook by hand
        logger.warning(
            "payment_succeeded_for_inactive_booking",
            booking_id=booking.id,
            payment_id=payment.id,
            booking_status=booking.status,
        )
    await db.flush()
    return booking


async def mark_failed(
    db: AsyncSession,
    payment: Payment,
    error_code: Optional[str],
    error_message: Optional[str],
) -> bool:
    if payment.status == PaymentStatus.SUCCEEDED.value:
        return False
    payment.status = PaymentStatus.CANCELLED.value
    payment.error_code = error_code
    payment.error_message = error_message

    booking = await db.get(Booking, payment.booking_id, populate_existing=True)
    # an abandoned earlier checkout must not overwrite the current one
    if booking.payment_id == payment.id:
        booking.payment_status = PaymentStatus.CANCELLED.value
    await db.flush()
    return True


def _ignored(provider: str, event: str, reason: str, **context) -> WebhookAck:
    logger.warning("webhook_ignored", provider=provider, webhook_event=event, reason=reason, **context)
    record_webhook_event(provider, event, "rejected")
    return WebhookAck(received=False, event=event or None, reason=reason)


async def handle_stripe_webhook(db: AsyncSession, payload: bytes, signature_header: Optional[str]) -> WebhookAck:
    provider = ProviderId.STRIPE.value
    try:
        event = verify_webhook(payload, signature_header)
    except WebhookVerificationError as e:
        logger.warning("webhook_signature_invalid", provider=provider, error=str(e))
        record_webhook_event(provider, "unknown", "rejected")
        return WebhookAck(received=False, reason="invalid-signature")
    except ValueError as e:
        return _ignored(provider, "unknown", "invalid-payload", error=str(e))

    event_type = str(event.get("type", ""))
    obj = (event.get("data") or {}).get("object") or {}
    if event_type not in (CHECKOUT_COMPLETED, PAYMENT_SUCCEEDED, PAYMENT_FAILED):
        logger.info("webhook_event_unhandled", provider=provider, webhook_event=event_type)
        record_webhook_event(provider, event_type or "unknown", "ignored")
        return WebhookAck(received=True, event=event_type or None)

    metadata = obj.get("metadata") or {}
    payment = await resolve_payment(db, metadata.get("bookingId"), metadata.get("paymentId"))
    if payment is None:
        return _ignored(provider, event_type, "unresolved-metadata", metadata=metadata)

    booking_id = payment.booking_id
    applied = True
    if event_type == CHECKOUT_COMPLETED:
        applied = await mark_processing(db, payment, obj.get("payment_intent") or obj.get("id"))
    elif event_type == PAYMENT_SUCCEEDED:
        charges = (obj.get("charges") or {}).get("data") or [{}]
        await mark_succeeded(db, payment, obj.get("id"), charges[0].get("receipt_url"))
    else:
        error = obj.get("last_payment_error") or {}
        applied = await mark_failed(db, payment, error.get("code"), error.get("message"))
    await db.commit()

    record_webhook_event(provider, event_type, "applied" if applied else "ignored")
    logger.info(
        "webhook_applied" if applied else "webhook_after_success_ignored",
        provider=provider,
        webhook_event=event_type,
        booking_id=booking_id,
        payment_id=payment.id,
    )
    return WebhookAck(received=True, event=event_type, booking_id=booking_id)


async def handle_payzone_notification(db: AsyncSession, fields: dict[str, str]) -> WebhookAck:
    provider = ProviderId.PAYZONE.value
    if not verify_payzone_signature(fields):
        logger.warning("webhook_signature_invalid", provider=provider)
        record_webhook_event(provider, "notification", "rejected")
        return WebhookAck(received=False, reason="invalid-signature")

    order_id = _as_int(fields.get("orderId"))
    payment = await db.get(Payment, order_id, populate_existing=True) if order_id is not None else None
    if payment is None:
        return _ignored(provider, "notification", "payment-not-found", order_id=fields.get("orderId"))

    outcome = str(fields.get("status", "")).upper()
    booking_id = payment.booking_id
    if outcome in PAYZONE_SUCCESS_STATUSES:
        event, applied = "succeeded", True
        await mark_succeeded(db, payment, receipt_url=fields.get("receiptUrl"))
    else:
        event = "failed"
        applied = await mark_failed(db, payment, outcome or None, fields.get("message"))
    await db.commit()

    record_webhook_event(provider, event, "applied" if applied else "ignored")
    logger.info("webhook_applied", provider=provider, webhook_event=event, booking_id=booking_id, payment_id=payment.id)
    return WebhookAck(received=True, event=event, booking_id=booking_id)


async def capture_paypal_order(db: AsyncSession, order_id: str, user: User, test_mode: bool) -> Booking:
    """Capture an approved PayPal order and settle its payment."""
    user_id, is_admin = user.id, user.is_admin
    try:
        capture = await get_provider(ProviderId.PAYPAL, test_mode).capture_order(order_id)
    except PaymentProviderError as e:
        logger.warning("paypal_capture_failed", order_id=order_id, error=e.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    payment = await resolve_payment(db, capture.booking_id, capture.payment_id)
    if payment is None:
        result = await db.execute(
            select(Payment).where(
                Payment.provider == ProviderId.PAYPAL.value,
                Payment.provider_payment_id == order_id,
            )
        )
        payment = result.scalars().first()
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found for this order")

    booking = await db.get(Booking, payment.booking_id)
    if not is_admin and booking.explorer_id != user_id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="You do not have access to this booking")
    if not capture.completed:
        record_webhook_event(ProviderId.PAYPAL.value, "capture", "rejected")
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"PayPal order is not completed ({capture.status})",
        )

    payment.metadata_json = {**(payment.metadata_json or {}), "paypalCaptureId": capture.capture_id}
    booking = await mark_succeeded(db, payment, provider_payment_id=capture.order_id)
    await db.refresh(booking)
    await db.commit()

    record_webhook_event(ProviderId.PAYPAL.value, "capture", "applied")
    logger.info("paypal_payment_settled", order_id=order_id, booking_id=booking.id, payment_id=payment.id)
    return booking


async def mark_booking_paid(db: AsyncSession, booking_id: int) -> Booking:
    """Staff confirmation that an out-of-band (cash) payment was collected."""
    booking = await db.get(Booking, booking_id)
    if booking is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    if booking.status not in ACTIVE_BOOKING_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only pending or confirmed bookings can be marked as paid",
        )
    if booking.payment_id is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Booking has no payment to settle")

    payment = await db.get(Payment, booking.payment_id, populate_existing=True)
    booking = await mark_succeeded(db, payment)
    await db.refresh(booking)
    await db.commit()

    logger.info("booking_marked_paid", booking_id=booking.id, payment_id=payment.id, provider=payment.provider)
    return booking
