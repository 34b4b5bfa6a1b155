"""
Coupon engine: validation, redemption against a booking, removal, duplication.

Apply and remove are single transactions touching three rows (booking price,
usage row, coupon counter). The application checks run first; the unique
constraints on coupon_usages and the guarded counter update are what catch
the races those checks miss, and any of them failing rolls everything back.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import select, update, delete, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from settlement.core.logging import get_logger
from settlement.core.metrics import record_coupon_operation
from settlement.core.money import floor_percentage, quantize, to_decimal
from settlement.core.timeutils import as_utc, utcnow
from settlement.models.booking import Booking
from settlement.models.coupon import Coupon, CouponUsage
from settlement.models.enums import BookingStatus
from settlement.models.experience import Experience, ExperienceSession
from settlement.models.user import User
from settlement.schemas.coupon import CouponCreate, CouponQuote
from settlement.services.booking_service import load_session

logger = get_logger(__name__)

COPY_SUFFIX = "-COPY"

_RETRY_CONFLICT = "Coupon could not be applied right now. Please try again."


def _reject(operation: str, detail: str, status_code: int = status.HTTP_400_BAD_REQUEST) -> HTTPException:
    record_coupon_operation(operation, "rejected")
    return HTTPException(status_code=status_code, detail=detail)


def compute_discount(coupon: Coupon, total_amount) -> tuple[Decimal, Decimal]:
    """(discount, final_price) for an amount; the discount never exceeds the amount."""
    total = quantize(total_amount)
    discount = floor_percentage(total, coupon.discount_percentage)
    if coupon.max_reduction_amount is not None:
        discount = min(discount, to_decimal(coupon.max_reduction_amount))
    discount = quantize(min(discount, total))
    return discount, quantize(total - discount)


async def get_coupon_by_code(db: AsyncSession, code: str) -> Optional[Coupon]:
    result = await db.execute(select(Coupon).where(Coupon.code == code.strip().upper()))
    return result.scalar_one_or_none()


async def validate_coupon(
    db: AsyncSession,
    code: str,
    experience_id: int,
    session_id: int,
    requester_id: int,
    total_amount,
    operation: str = "validate",
) -> tuple[Coupon, CouponQuote]:
    """
    Check a code against a booking context and quote the discount.

    Rejections are evaluated in a fixed order so the caller always sees the
    first rule that failed.
    """
    coupon = await get_coupon_by_code(db, code)
    if coupon is None:
        raise _reject(operation, "Invalid coupon code")

    now = utcnow()
    if as_utc(coupon.valid_from) > now:
        raise _reject(operation, "Coupon is not yet valid")
    if coupon.expires_at is not None and as_utc(coupon.expires_at) < now:
        raise _reject(operation, "Coupon has expired")
    if coupon.max_uses is not None and coupon.used_count >= coupon.max_uses:
        raise _reject(operation, "Coupon usage limit reached")

    used = await db.execute(
        select(CouponUsage.id).where(
            CouponUsage.coupon_id == coupon.id,
            CouponUsage.user_id == requester_id,
        )
    )
    if used.first() is not None:
        raise _reject(operation, "You have already used this coupon")

    if coupon.experience_id is not None and coupon.experience_id != experience_id:
        raise _reject(operation, "Coupon is not valid for this experience")
    if coupon.session_id is not None and coupon.session_id != session_id:
        raise _reject(operation, "Coupon is not valid for this session")
    if coupon.created_by_id == requester_id:
        raise _reject(operation, "You cannot use your own coupon")

    discount, final_price = compute_discount(coupon, total_amount)
    if operation == "validate":
        record_coupon_operation(operation, "ok")
    return coupon, CouponQuote(
        coupon_id=coupon.id,
        code=coupon.code,
        discount_amount=discount,
        final_price=final_price,
    )


async def apply_coupon(db: AsyncSession, booking: Booking, code: str) -> tuple[Booking, CouponQuote]:
    """
    Redeem a coupon on a pending booking.

    The quote is recomputed from the booking itself, never from what the
    client last validated.
    """
    booking_id = booking.id
    try:
        if booking.status != BookingStatus.PENDING.value:
            raise _reject("apply", "Coupons can only be applied to pending bookings", status.HTTP_409_CONFLICT)
        existing = await db.execute(select(CouponUsage.id).where(CouponUsage.booking_id == booking.id))
        if existing.first() is not None:
            raise _reject("apply", "A coupon is already applied to this booking", status.HTTP_409_CONFLICT)

        price_before = quantize(booking.total_price)
        coupon, quote = await validate_coupon(
            db,
            code,
            booking.experience_id,
            booking.session_id,
            booking.explorer_id,
            price_before,
            operation="apply",
        )

        counted = await db.execute(
            update(Coupon)
            .where(
                Coupon.id == coupon.id,
                (Coupon.max_uses.is_(None)) | (Coupon.used_count < Coupon.max_uses),
            )
            .values(used_count=Coupon.used_count + 1)
            .execution_options(synchronize_session=False)
        )
        repriced = await db.execute(
            update(Booking)
            .where(Booking.id == booking.id, Booking.status == BookingStatus.PENDING.value)
            .values(total_price=quote.final_price)
            .execution_options(synchronize_session=False)
        )
        if counted.rowcount != 1 or repriced.rowcount != 1:
            raise _reject("apply", _RETRY_CONFLICT, status.HTTP_409_CONFLICT)

        db.add(
            CouponUsage(
                coupon_id=coupon.id,
                user_id=booking.explorer_id,
                booking_id=booking.id,
                price_before_discount=price_before,
            )
        )
        await db.flush()
    except HTTPException:
        await db.rollback()
        raise
    except IntegrityError:
        await db.rollback()
        logger.warning("coupon_apply_conflict", booking_id=booking_id, code=code)
        record_coupon_operation("apply", "conflict")
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=_RETRY_CONFLICT)

    booking = await db.get(Booking, booking.id, populate_existing=True)
    await db.commit()

    record_coupon_operation("apply", "ok")
    logger.info(
        "coupon_applied",
        booking_id=booking.id,
        coupon_id=quote.coupon_id,
        price_before=str(price_before),
        discount=str(quote.discount_amount),
        new_price=str(quote.final_price),
    )
    return booking, quote


async def remove_coupon(db: AsyncSession, booking: Booking) -> Booking:
    """Take the coupon off a pending booking and restore the list price."""
    try:
        if booking.status != BookingStatus.PENDING.value:
            raise _reject("remove", "Coupons can only be removed from pending bookings", status.HTTP_409_CONFLICT)

        result = await db.execute(select(CouponUsage).where(CouponUsage.booking_id == booking.id))
        usage = result.scalar_one_or_none()
        if usage is None:
            raise _reject("remove", "No coupon applied", status.HTTP_404_NOT_FOUND)

        session = await load_session(db, booking.session_id)
        original_price = quantize(session.unit_price() * booking.guests)
        if original_price != quantize(usage.price_before_discount):
            logger.warning(
                "coupon_removal_price_drift",
                booking_id=booking.id,
                snapshot=str(usage.price_before_discount),
                recomputed=str(original_price),
            )

        removed = await db.execute(
            delete(CouponUsage)
            .where(CouponUsage.id == usage.id)
            .execution_options(synchronize_session=False)
        )
        if removed.rowcount != 1:
            raise _reject("remove", "Coupon was already removed", status.HTTP_409_CONFLICT)

        await db.execute(
            update(Coupon)
            .where(Coupon.id == usage.coupon_id)
            .values(used_count=Coupon.used_count - 1)
            .execution_options(synchronize_session=False)
        )
        await db.execute(
            update(Booking)
            .where(Booking.id == booking.id)
            .values(total_price=original_price)
            .execution_options(synchronize_session=False)
        )
        db.expunge(usage)
        booking = await db.get(Booking, booking.id, populate_existing=True)
        await db.commit()
    except HTTPException:
        await db.rollback()
        raise

    record_coupon_operation("remove", "ok")
    logger.info(
        "coupon_removed",
        booking_id=booking.id,
        coupon_id=usage.coupon_id,
        original_price=str(original_price),
    )
    return booking


async def get_coupon(db: AsyncSession, coupon_id: int) -> Coupon:
    coupon = await db.get(Coupon, coupon_id)
    if not coupon:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Coupon not found",
        )
    return coupon


async def _check_scope(
    db: AsyncSession,
    user: User,
    experience_id: Optional[int],
    session_id: Optional[int],
) -> None:
    """Organizers may only scope coupons to their own experiences."""
    if session_id is not None:
        session = await db.get(ExperienceSession, session_id)
        if session is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Session not found")
        if experience_id is not None and session.experience_id != experience_id:
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Session does not belong to this experience",
            )
        experience_id = session.experience_id

    if experience_id is not None:
        experience = await db.get(Experience, experience_id)
        if experience is None:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Experience not found")
        if not user.is_admin and experience.organizer_id != user.id:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="You can only create coupons for your own experiences",
            )


async def _code_taken(db: AsyncSession, code: str) -> bool:
    result = await db.execute(select(func.count()).select_from(Coupon).where(Coupon.code == code))
    return result.scalar_one() > 0


async def create_coupon(db: AsyncSession, data: CouponCreate, creator: User) -> Coupon:
    try:
        await _check_scope(db, creator, data.experience_id, data.session_id)

        valid_from = data.valid_from or utcnow()
        if data.expires_at is not None and as_utc(data.expires_at) <= as_utc(valid_from):
            raise HTTPException(
                status_code=status.HTTP_400_BAD_REQUEST,
                detail="Expiry must be after the start of validity",
            )
        if await _code_taken(db, data.code):
            raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Coupon code already exists")

        coupon = Coupon(
            code=data.code,
            description=data.description,
            discount_percentage=data.discount_percentage,
            max_reduction_amount=data.max_reduction_amount,
            max_uses=data.max_uses,
            used_count=0,
            valid_from=valid_from,
            expires_at=data.expires_at,
            type=data.type.value,
            experience_id=data.experience_id,
            session_id=data.session_id,
            created_by_id=creator.id,
        )
        db.add(coupon)
        await db.flush()
        await db.refresh(coupon)
        await db.commit()
    except HTTPException:
        await db.rollback()
        raise
    except IntegrityError:
        await db.rollback()
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Coupon code already exists")

    logger.info("coupon_created", coupon_id=coupon.id, code=coupon.code, created_by=creator.id)
    return coupon


async def duplicate_coupon(db: AsyncSession, coupon: Coupon, duplicator: User) -> Coupon:
    """
    Copy a coupon under a fresh `-COPY` code, owned by the duplicator.
    Probing for a free code is not atomic; losing the race is a 409.
    """
    base = f"{coupon.code}{COPY_SUFFIX}"
    candidate, suffix = base, 0
    while await _code_taken(db, candidate):
        suffix += 1
        candidate = f"{base}-{suffix}"

    copy = Coupon(
        code=candidate,
        description=coupon.description,
        discount_percentage=coupon.discount_percentage,
        max_reduction_amount=coupon.max_reduction_amount,
        max_uses=coupon.max_uses,
        used_count=0,
        valid_from=coupon.valid_from,
        expires_at=coupon.expires_at,
        type=coupon.type,
        experience_id=coupon.experience_id,
        session_id=coupon.session_id,
        created_by_id=duplicator.id,
    )
    db.add(copy)
    try:
        await db.flush()
    except IntegrityError:
        await db.rollback()
        record_coupon_operation("duplicate", "conflict")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Coupon code was taken concurrently. Please try again.",
        )
    await db.refresh(copy)
    await db.commit()

    record_coupon_operation("duplicate", "ok")
    logger.info("coupon_duplicated", source_id=coupon.id, coupon_id=copy.id, code=copy.code)
    return copy
