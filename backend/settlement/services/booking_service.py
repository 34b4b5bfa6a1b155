"""
Booking service with concurrency-safe seat reservation.

CONCURRENCY STRATEGY: Optimistic Locking with Retry
====================================================

Problem:
  Two explorers ask for the last two seats of a session simultaneously.
  Both sum the active bookings (0 of 2 taken), both insert, both succeed.
  Result: Overbooking.

Solution:
  Seat usage is never stored; it is the sum of `guests` over the session's
  PENDING and CONFIRMED bookings. Every write that depends on that sum must
  also win a version bump on the session row, inside the same transaction:

  1. Read the session (capacity, version) and the reserved sum
  2. Reject if reserved + requested > capacity
  3. UPDATE experience_sessions SET version = version + 1
     WHERE id = :session_id AND version = :read_version
  4. If rows_affected == 0, another admission committed in between -> rollback, retry
  5. Insert/update the booking and commit

  The loser of a race blocks on the row in step 3 until the winner commits,
  then finds the version moved and re-reads a sum that includes the winner.
"""

from datetime import timedelta
from typing import Optional

from sqlalchemy import select, update, func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload
from fastapi import HTTPException, status

from settlement.core.config import get_settings
from settlement.core.logging import get_logger
from settlement.core.metrics import admission_latency, db_retries, record_admission
from settlement.core.money import quantize
from settlement.core.timeutils import utcnow
from settlement.models.booking import Booking
from settlement.models.coupon import CouponUsage
from settlement.models.enums import ACTIVE_BOOKING_STATUSES, BookingStatus
from settlement.models.experience import ExperienceSession
from settlement.services.strategy_factory import get_admission

logger = get_logger(__name__)
settings = get_settings()

MAX_RETRY_ATTEMPTS = 3


async def reserved_guests(
    db: AsyncSession,
    session_id: int,
    exclude_booking_id: Optional[int] = None,
) -> int:
    """Sum of guests over active bookings on a session."""
    query = select(func.coalesce(func.sum(Booking.guests), 0)).where(
        Booking.session_id == session_id,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)
    return int((await db.execute(query)).scalar_one())


async def load_session(db: AsyncSession, session_id: int) -> Optional[ExperienceSession]:
    """Fresh read of a session and its experience (bypasses the identity map)."""
    result = await db.execute(
        select(ExperienceSession)
        .options(selectinload(ExperienceSession.experience))
        .where(ExperienceSession.id == session_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def claim_session_version(db: AsyncSession, session: ExperienceSession, **values) -> bool:
    """
    Bump the session version if nobody else has since we read it.
    Extra column values are written in the same statement.
    """
    result = await db.execute(
        update(ExperienceSession)
        .where(
            ExperienceSession.id == session.id,
            ExperienceSession.version == session.version,
        )
        .values(version=ExperienceSession.version + 1, **values)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount == 1


async def _check_capacity(
    db: AsyncSession,
    session: ExperienceSession,
    guests: int,
    exclude_booking_id: Optional[int] = None,
) -> int:
    if guests > session.capacity:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Guest count exceeds session capacity.",
        )
    reserved = await reserved_guests(db, session.id, exclude_booking_id)
    if reserved + guests > session.capacity:
        logger.warning(
            "reservation_rejected_no_seats",
            session_id=session.id,
            requested=guests,
            reserved=reserved,
            capacity=session.capacity,
        )
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Not enough spots left for this session.",
        )
    return reserved


async def _readmit_from_ledger(db: AsyncSession, admission, session_id: int, guests: int) -> bool:
    """
    Second opinion after the gate says full.

    Bookings also leave the reserved set without passing through `release`
    (the expiry sweeper, admin edits), so the gate counter can only drift
    upwards. Reset it from the bookings table and ask once more.
    """
    session = await load_session(db, session_id)
    if session is None:
        await db.rollback()
        return True  # unknown session: the transactional path answers 404
    reserved = await reserved_guests(db, session_id)
    capacity = session.capacity
    await db.rollback()
    await admission.sync(session_id, capacity, reserved)
    if reserved + guests > capacity:
        return False
    logger.info("admission_gate_resynced", session_id=session_id, reserved=reserved, capacity=capacity)
    return await admission.admit(session_id, guests)


async def reserve_seats(
    db: AsyncSession,
    explorer_id: int,
    experience_id: int,
    session_id: int,
    guests: int,
    notes: Optional[str] = None,
) -> Booking:
    """
    Create a PENDING booking holding `guests` seats on a session.
    Retries up to MAX_RETRY_ATTEMPTS on version conflicts.
    """
    admission = get_admission()
    if not await admission.admit(session_id, guests) and not await _readmit_from_ledger(
        db, admission, session_id, guests
    ):
        record_admission("rejected")
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Not enough spots left for this session.",
        )

    try:
        with admission_latency.time():
            booking, reserved, capacity = await _reserve_with_retry(
                db, explorer_id, experience_id, session_id, guests, notes
            )
    except HTTPException as exc:
        await db.rollback()
        await admission.release(session_id, guests)
        record_admission("conflict" if exc.status_code == status.HTTP_409_CONFLICT else "rejected")
        raise

    record_admission("admitted")
    await admission.sync(session_id, capacity, reserved + guests)
    return booking


async def _reserve_with_retry(
    db: AsyncSession,
    explorer_id: int,
    experience_id: int,
    session_id: int,
    guests: int,
    notes: Optional[str],
) -> tuple[Booking, int, int]:
    for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
        session = await load_session(db, session_id)
        if not session or session.experience_id != experience_id:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Session not found for this experience.",
            )

        now = utcnow()
        existing_pending = await db.execute(
            select(Booking.id).where(
                Booking.experience_id == experience_id,
                Booking.explorer_id == explorer_id,
                Booking.status == BookingStatus.PENDING.value,
                Booking.expires_at > now,
            )
        )
        if existing_pending.first() is not None:
            raise HTTPException(
                status_code=status.HTTP_409_CONFLICT,
                detail="You already have a pending reservation for this experience.",
            )

        reserved = await _check_capacity(db, session, guests)

        if not await claim_session_version(db, session):
            logger.info("booking_retry", session_id=session_id, attempt=attempt, reason="version_conflict")
            db_retries.inc()
            await db.rollback()
            continue

        booking = Booking(
            experience_id=experience_id,
            session_id=session_id,
            explorer_id=explorer_id,
            guests=guests,
            total_price=quantize(session.unit_price() * guests),
            status=BookingStatus.PENDING.value,
            expires_at=now + timedelta(minutes=settings.BOOKING_HOLD_MINUTES),
            notes=notes,
        )
        db.add(booking)
        await db.flush()
        await db.refresh(booking)
        await db.commit()

        logger.info(
            "booking_reserved",
            booking_id=booking.id,
            explorer_id=explorer_id,
            session_id=session_id,
            guests=guests,
            attempt=attempt,
        )
        return booking, reserved, session.capacity

    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Reservation failed due to high demand. Please try again.",
    )


async def update_booking_guests(db: AsyncSession, booking: Booking, guests: int) -> Booking:
    """
    Change the guest count of a PENDING booking.
    The booking's own seats are excluded from the reserved sum it is checked against.
    """
    if booking.status != BookingStatus.PENDING.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Only pending bookings can be changed.",
        )
    has_coupon = await db.execute(select(CouponUsage.id).where(CouponUsage.booking_id == booking.id))
    if has_coupon.first() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Remove the applied coupon before changing guests.",
        )

    booking_id, session_id, previous = booking.id, booking.session_id, booking.guests
    try:
        for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
            session = await load_session(db, session_id)
            reserved = await _check_capacity(db, session, guests, exclude_booking_id=booking_id)

            if not await claim_session_version(db, session):
                logger.info("booking_retry", session_id=session_id, attempt=attempt, reason="version_conflict")
                db_retries.inc()
                await db.rollback()
                continue

            booking = await db.get(Booking, booking_id, populate_existing=True)
            if booking.status != BookingStatus.PENDING.value:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Only pending bookings can be changed.",
                )
            booking.guests = guests
            booking.total_price = quantize(session.unit_price() * guests)
            await db.flush()
            await db.refresh(booking)
            await db.commit()

            logger.info(
                "booking_guests_updated",
                booking_id=booking_id,
                session_id=session_id,
                previous=previous,
                guests=guests,
            )
            await get_admission().sync(session_id, session.capacity, reserved + guests)
            return booking
    except HTTPException:
        await db.rollback()
        raise

    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Update failed due to high demand. Please try again.",
    )


async def cancel_booking(db: AsyncSession, booking: Booking) -> Booking:
    """Cancel a pending booking, releasing its seats."""
    if booking.status != BookingStatus.PENDING.value:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="This booking can no longer be cancelled.",
        )

    booking.status = BookingStatus.CANCELLED.value
    await db.flush()
    await db.refresh(booking)
    await db.commit()
    await get_admission().release(booking.session_id, booking.guests)

    logger.info(
        "booking_cancelled",
        booking_id=booking.id,
        explorer_id=booking.explorer_id,
        session_id=booking.session_id,
        seats_released=booking.guests,
    )
    return booking


async def get_booking(db: AsyncSession, booking_id: int) -> Booking:
    booking = await db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Booking not found",
        )
    return booking


async def get_owned_booking(db: AsyncSession, booking_id: int, explorer_id: int) -> Booking:
    """Load a booking and make sure it belongs to the requesting explorer."""
    booking = await get_booking(db, booking_id)
    if booking.explorer_id != explorer_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You do not have access to this booking",
        )
    return booking


async def get_user_bookings(db: AsyncSession, explorer_id: int) -> list[Booking]:
    """Get all bookings for an explorer."""
    result = await db.execute(
        select(Booking)
        .where(Booking.explorer_id == explorer_id)
        .order_by(Booking.created_at.desc(), Booking.id.desc())
    )
    return list(result.scalars().all())
