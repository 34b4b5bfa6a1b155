"""
Organizer edits to sessions that are gated by reserved seats.

A session with reservations can be updated but never removed, and its
capacity can never drop below what is already reserved. Both checks share
the session version lock with seat admission, so a capacity cut cannot
interleave with a booking that would no longer fit.
"""

from decimal import Decimal
from typing import Optional

from sqlalchemy import select, delete
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from settlement.core.logging import get_logger
from settlement.core.metrics import db_retries
from settlement.models.booking import Booking
from settlement.models.coupon import Coupon
from settlement.models.experience import ExperienceSession
from settlement.models.user import User
from settlement.services.booking_service import (
    MAX_RETRY_ATTEMPTS,
    claim_session_version,
    load_session,
    reserved_guests,
)
from settlement.services.strategy_factory import get_admission

logger = get_logger(__name__)


async def _load_owned_session(db: AsyncSession, session_id: int, user_id: int, is_admin: bool) -> ExperienceSession:
    session = await load_session(db, session_id)
    if not session:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Session {session_id} not found",
        )
    if not is_admin and session.experience.organizer_id != user_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only manage sessions of your own experiences",
        )
    return session


async def update_session(
    db: AsyncSession,
    session_id: int,
    user: User,
    changes: dict,
) -> tuple[ExperienceSession, int]:
    """
    Apply a partial edit (capacity and/or price_override) to a session.
    Columns missing from `changes` keep their stored value.
    Returns the session and its reserved guests.
    """
    # rollback expires every instance, the caller included
    user_id, is_admin = user.id, user.is_admin
    values = {key: changes[key] for key in ("capacity", "price_override") if key in changes}
    try:
        for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
            session = await _load_owned_session(db, session_id, user_id, is_admin)
            reserved = await reserved_guests(db, session.id)
            capacity = values.get("capacity", session.capacity)
            if capacity < reserved:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail=f"Capacity for a session with reservations cannot be less than reserved ({reserved})",
                )

            if not await claim_session_version(db, session, **values):
                logger.info("session_update_retry", session_id=session_id, attempt=attempt)
                db_retries.inc()
                await db.rollback()
                continue

            await db.commit()
            session = await load_session(db, session_id)
            await db.commit()

            logger.info(
                "session_updated",
                session_id=session_id,
                fields=sorted(values),
                capacity=capacity,
                reserved=reserved,
                organizer_id=user_id,
            )
            await get_admission().sync(session_id, capacity, reserved)
            return session, reserved
    except HTTPException:
        await db.rollback()
        raise

    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Session is being booked right now. Please try again.",
    )


async def delete_session(db: AsyncSession, session_id: int, user: User) -> None:
    """Remove a session that has never been booked."""
    user_id, is_admin = user.id, user.is_admin
    try:
        for attempt in range(1, MAX_RETRY_ATTEMPTS + 1):
            session = await _load_owned_session(db, session_id, user_id, is_admin)

            if await reserved_guests(db, session.id) > 0:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Cannot remove session that already has reservations",
                )
            history = await db.execute(select(Booking.id).where(Booking.session_id == session.id).limit(1))
            if history.first() is not None:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Cannot remove a session with booking history",
                )
            scoped = await db.execute(select(Coupon.id).where(Coupon.session_id == session.id).limit(1))
            if scoped.first() is not None:
                raise HTTPException(
                    status_code=status.HTTP_409_CONFLICT,
                    detail="Cannot remove a session that coupons are scoped to",
                )

            result = await db.execute(
                delete(ExperienceSession)
                .where(
                    ExperienceSession.id == session.id,
                    ExperienceSession.version == session.version,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                logger.info("session_delete_retry", session_id=session_id, attempt=attempt)
                db_retries.inc()
                await db.rollback()
                continue

            await db.commit()
            db.expunge(session)
            logger.info("session_deleted", session_id=session_id, organizer_id=user_id)
            return
    except HTTPException:
        await db.rollback()
        raise

    raise HTTPException(
        status_code=status.HTTP_409_CONFLICT,
        detail="Session is being booked right now. Please try again.",
    )
