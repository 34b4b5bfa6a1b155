"""
Payment endpoints: checkout, refunds, manual settlement and gateway settings.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.db.session import get_db
from settlement.models.enums import UserRole
from settlement.models.user import User
from settlement.schemas.booking import BookingResponse
from settlement.schemas.payment import (
    CheckoutRequest,
    CheckoutResponse,
    RefundCreate,
    RefundResponse,
    PaymentSettingsPayload,
    PaymentSettingsResponse,
    PaypalCaptureRequest,
)
from settlement.services.booking_service import get_owned_booking
from settlement.services.checkout_service import (
    create_checkout_for_booking,
    get_payment_settings,
    update_payment_settings,
)
from settlement.services.refund_service import create_refund_for_payment
from settlement.services.settlement_service import capture_paypal_order, mark_booking_paid
from settlement.core.security import get_current_user_id, get_current_user, require_roles

router = APIRouter(prefix="/payments", tags=["Payments"])

admin_only = require_roles(UserRole.ADMIN)


@router.post("/checkout", response_model=CheckoutResponse)
async def checkout(
    payload: CheckoutRequest,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Start paying for a pending booking.

    Providers are tried in order (requested, default, enabled) until one
    accepts; cash confirms the booking immediately and redirects to the
    success URL.
    """
    booking = await get_owned_booking(db, payload.booking_id, user_id)
    redirect_url, payment = await create_checkout_for_booking(
        db,
        booking,
        success_url=payload.success_url,
        cancel_url=payload.cancel_url,
        provider_id=payload.provider_id,
    )
    return CheckoutResponse(redirect_url=redirect_url, payment_id=payment.id)


@router.post("/refunds", response_model=RefundResponse, status_code=status.HTTP_201_CREATED)
async def create_refund(
    payload: RefundCreate,
    _: User = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    """Ask the payment's provider for a (partial) refund. Amount is in minor units."""
    payment_settings = await get_payment_settings(db)
    return await create_refund_for_payment(
        db,
        payload.payment_id,
        payload.amount,
        payload.reason,
        test_mode=payment_settings.test_mode,
    )


@router.post("/bookings/{booking_id}/mark-paid", response_model=BookingResponse)
async def mark_paid(
    booking_id: int,
    _: User = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    """Record that an out-of-band payment was collected."""
    return await mark_booking_paid(db, booking_id)


@router.post("/paypal/capture", response_model=BookingResponse)
async def paypal_capture(
    payload: PaypalCaptureRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Capture an approved PayPal order once the customer is back from PayPal."""
    payment_settings = await get_payment_settings(db)
    return await capture_paypal_order(db, payload.order_id, user, test_mode=payment_settings.test_mode)


@router.get("/settings", response_model=PaymentSettingsResponse)
async def read_settings(
    _: User = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    return await get_payment_settings(db)


@router.put("/settings", response_model=PaymentSettingsResponse)
async def replace_settings(
    payload: PaymentSettingsPayload,
    _: User = Depends(admin_only),
    db: AsyncSession = Depends(get_db),
):
    return await update_payment_settings(db, payload)
