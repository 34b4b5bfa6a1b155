"""
Booking endpoints: seat reservation, guest changes, cancellation, coupons.
"""

from fastapi import APIRouter, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.db.session import get_db
from settlement.models.user import User
from settlement.schemas.booking import BookingCreate, BookingGuestsUpdate, BookingResponse, BookingCancelResponse
from settlement.schemas.coupon import CouponApplyRequest, CouponApplyResponse, CouponRemoveResponse
from settlement.services.booking_service import (
    reserve_seats,
    update_booking_guests,
    cancel_booking,
    get_owned_booking,
    get_user_bookings,
)
from settlement.services.coupon_service import apply_coupon, remove_coupon
from settlement.core.security import get_current_user, get_current_user_id

router = APIRouter(prefix="/bookings", tags=["Bookings"])


@router.post("/", response_model=BookingResponse, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """
    Reserve seats on a session.

    The seat check and the insert share one transaction guarded by the
    session version; a booking that loses the race is retried up to 3 times
    before a 409 is returned.
    """
    return await reserve_seats(
        db,
        explorer_id=user_id,
        experience_id=booking_data.experience_id,
        session_id=booking_data.session_id,
        guests=booking_data.guests,
        notes=booking_data.notes,
    )


@router.patch("/{booking_id}", response_model=BookingResponse)
async def update_guests(
    booking_id: int,
    payload: BookingGuestsUpdate,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Change how many guests a pending booking holds seats for."""
    booking = await get_owned_booking(db, booking_id, user_id)
    return await update_booking_guests(db, booking, payload.guests)


@router.delete("/{booking_id}", response_model=BookingCancelResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a pending booking and release its seats."""
    booking = await get_owned_booking(db, booking_id, user_id)
    booking = await cancel_booking(db, booking)
    return BookingCancelResponse(
        message="Booking cancelled successfully",
        booking_id=booking.id,
        status=booking.status,
    )


@router.get("/", response_model=list[BookingResponse])
async def list_user_bookings(
    user_id: int = Depends(get_current_user_id),
    db: AsyncSession = Depends(get_db),
):
    """Get all bookings for the authenticated explorer."""
    return await get_user_bookings(db, user_id)


@router.post("/{booking_id}/coupon", response_model=CouponApplyResponse)
async def apply_coupon_endpoint(
    booking_id: int,
    payload: CouponApplyRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_owned_booking(db, booking_id, user.id)
    booking, quote = await apply_coupon(db, booking, payload.code)
    return CouponApplyResponse(
        booking_id=booking.id,
        code=quote.code,
        discount_amount=quote.discount_amount,
        new_price=booking.total_price,
    )


@router.delete("/{booking_id}/coupon", response_model=CouponRemoveResponse)
async def remove_coupon_endpoint(
    booking_id: int,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    booking = await get_owned_booking(db, booking_id, user.id)
    booking = await remove_coupon(db, booking)
    return CouponRemoveResponse(booking_id=booking.id, original_price=booking.total_price)
