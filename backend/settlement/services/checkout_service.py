"""
Checkout orchestration across payment providers.

The Payment row is committed before any provider is called and the provider
calls happen outside a transaction. A checkout that fails at every provider
leaves its Payment behind in REQUIRES_PAYMENT_METHOD; the webhook side
ignores such rows, and a retry simply creates a new Payment.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from settlement.core.config import get_settings
from settlement.core.logging import get_logger
from settlement.core.metrics import record_checkout_attempt
from settlement.core.money import to_minor_units
from settlement.core.timeutils import as_utc, utcnow
from settlement.models.booking import Booking
from settlement.models.enums import BookingStatus, PaymentStatus, ProviderId
from settlement.models.experience import Experience, ExperienceSession
from settlement.models.payment import Payment, PaymentSettings
from settlement.models.user import User
from settlement.schemas.payment import PaymentSettingsPayload
from settlement.services.interfaces.payment_provider import CheckoutRequest, PaymentProviderError
from settlement.services.provider_factory import get_provider, parse_provider_id

logger = get_logger(__name__)
settings = get_settings()


async def get_payment_settings(db: AsyncSession) -> PaymentSettings:
    """The singleton settings row, created with Stripe-only defaults on first use."""
    result = await db.execute(select(PaymentSettings).order_by(PaymentSettings.id).limit(1))
    row = result.scalar_one_or_none()
    if row is None:
        row = PaymentSettings(
            default_provider=ProviderId.STRIPE.value,
            enabled_providers=[ProviderId.STRIPE.value],
            test_mode=True,
        )
        db.add(row)
        await db.flush()
        await db.refresh(row)
        logger.info("payment_settings_initialised")
    return row


async def update_payment_settings(db: AsyncSession, payload: PaymentSettingsPayload) -> PaymentSettings:
    row = await get_payment_settings(db)
    row.default_provider = payload.default_provider.strip().upper()
    row.enabled_providers = [value.strip().upper() for value in payload.enabled_providers]
    row.test_mode = payload.test_mode
    await db.flush()
    await db.refresh(row)
    await db.commit()

    logger.info(
        "payment_settings_updated",
        default_provider=row.default_provider,
        enabled_providers=row.enabled_providers,
        test_mode=row.test_mode,
    )
    return row


def candidate_providers(
    requested: Optional[ProviderId],
    default_provider: str,
    enabled_providers: list,
) -> list[ProviderId]:
    """Requested, then default, then enabled; de-duplicated and limited to implemented providers."""
    ordered: list[ProviderId] = []
    for raw in [requested, default_provider, *(enabled_providers or [])]:
        if raw is None:
            continue
        provider_id = parse_provider_id(raw)
        if provider_id is not None and provider_id not in ordered:
            ordered.append(provider_id)
    return ordered


async def _describe(db: AsyncSession, booking: Booking) -> tuple[Experience, str, Optional[str]]:
    experience = await db.get(Experience, booking.experience_id)
    session = await db.get(ExperienceSession, booking.session_id)
    explorer = await db.get(User, booking.explorer_id)
    description = experience.title
    if session is not None:
        description = f"{description} - {as_utc(session.start_at):%Y-%m-%d %H:%M} UTC"
    return experience, description, explorer.email if explorer else None


async def create_checkout_for_booking(
    db: AsyncSession,
    booking: Booking,
    success_url: str,
    cancel_url: str,
    provider_id: Optional[ProviderId] = None,
) -> tuple[str, Payment]:
    """
    Start paying for a pending booking.

    Returns the URL to send the customer to and the Payment created for
    this attempt.
    """
    if booking.status != BookingStatus.PENDING.value:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only pending bookings can be checked out",
        )

    payment_settings = await get_payment_settings(db)
    candidates = candidate_providers(
        provider_id, payment_settings.default_provider, payment_settings.enabled_providers
    )
    if not candidates:
        await db.rollback()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No supported payment provider is enabled",
        )

    test_mode = payment_settings.test_mode
    experience, description, customer_email = await _describe(db, booking)
    booking_id = booking.id
    amount = to_minor_units(booking.total_price)
    currency = experience.currency

    if candidates[0] == ProviderId.CASH:
        return await _settle_in_cash(db, booking, amount, currency, success_url, cancel_url, description, test_mode)

    chosen = candidates[0]
    payment = Payment(
        booking_id=booking_id,
        provider=chosen.value,
        amount=amount,
        currency=currency,
        status=PaymentStatus.REQUIRES_PAYMENT_METHOD.value,
        metadata_json={"bookingId": booking_id},
    )
    db.add(payment)
    await db.flush()
    await db.refresh(payment)
    await db.commit()
    payment_id = payment.id

    result = None
    used = chosen
    last_error = "Failed to create checkout session."
    for candidate in [c for c in candidates if c != ProviderId.CASH]:
        request = CheckoutRequest(
            booking_id=booking_id,
            amount=amount,
            currency=currency,
            success_url=success_url,
            cancel_url=cancel_url,
            description=description,
            customer_email=customer_email,
            metadata={"bookingId": str(booking_id), "paymentId": str(payment_id)},
        )
        try:
            result = await get_provider(candidate, test_mode).create_checkout(request)
        except PaymentProviderError as e:
            last_error = e.message
            record_checkout_attempt(candidate.value, success=False)
            logger.warning(
                "checkout_provider_failed",
                booking_id=booking_id,
                payment_id=payment_id,
                provider=candidate.value,
                error=e.message,
            )
            continue
        record_checkout_attempt(candidate.value, success=True)
        used = candidate
        break

    if result is None:
        logger.error("checkout_exhausted", booking_id=booking_id, payment_id=payment_id, error=last_error)
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=last_error)

    payment = await db.get(Payment, payment_id, populate_existing=True)
    if used != chosen:
        payment.provider = used.value
    if result.provider_payment_id:
        payment.provider_payment_id = result.provider_payment_id

    booking = await db.get(Booking, booking_id, populate_existing=True)
    booking.payment_id = payment_id
    booking.payment_status = PaymentStatus.REQUIRES_PAYMENT_METHOD.value
    if booking.status == BookingStatus.PENDING.value:
        booking.expires_at = utcnow() + timedelta(minutes=settings.CHECKOUT_HOLD_MINUTES)
    await db.flush()
    await db.refresh(payment)
    await db.commit()

    logger.info(
        "checkout_created",
        booking_id=booking_id,
        payment_id=payment_id,
        provider=used.value,
        fallback=used != chosen,
        amount=amount,
        currency=currency,
    )
    return result.redirect_url, payment


async def _settle_in_cash(
    db: AsyncSession,
    booking: Booking,
    amount: int,
    currency: str,
    success_url: str,
    cancel_url: str,
    description: str,
    test_mode: bool,
) -> tuple[str, Payment]:
    """Cash confirms the booking on the spot; the money is collected out-of-band."""
    result = await get_provider(ProviderId.CASH, test_mode).create_checkout(
        CheckoutRequest(
            booking_id=booking.id,
            amount=amount,
            currency=currency,
            success_url=success_url,
            cancel_url=cancel_url,
            description=description,
        )
    )
    payment = Payment(
        booking_id=booking.id,
        provider=ProviderId.CASH.value,
        provider_payment_id=result.provider_payment_id,
        amount=amount,
        currency=currency,
        status=PaymentStatus.PROCESSING.value,
        metadata_json={"bookingId": booking.id},
    )
    db.add(payment)
    await db.flush()

    booking.status = BookingStatus.CONFIRMED.value
    booking.payment_id = payment.id
    booking.payment_status = PaymentStatus.PROCESSING.value
    booking.expires_at = None
    await db.flush()
    await db.refresh(payment)
    await db.commit()

    record_checkout_attempt(ProviderId.CASH.value, success=True)
    logger.info("checkout_cash_confirmed", booking_id=booking.id, payment_id=payment.id, amount=amount)
    return result.redirect_url, payment
