"""
Organizer endpoints for editing scheduled sessions.
"""

from fastapi import APIRouter, Depends, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.db.session import get_db
from settlement.models.enums import UserRole
from settlement.models.user import User
from settlement.schemas.session import SessionUpdate, SessionResponse
from settlement.services.session_service import update_session, delete_session
from settlement.core.security import require_roles

router = APIRouter(prefix="/sessions", tags=["Sessions"])

organizer_only = require_roles(UserRole.ORGANIZER, UserRole.ADMIN)


@router.patch("/{session_id}", response_model=SessionResponse)
async def update_session_endpoint(
    session_id: int,
    payload: SessionUpdate,
    user: User = Depends(organizer_only),
    db: AsyncSession = Depends(get_db),
):
    """Change capacity or price; capacity can never drop below the seats already reserved."""
    session, reserved = await update_session(db, session_id, user, payload.model_dump(exclude_unset=True))
    response = SessionResponse.model_validate(session)
    response.reserved_guests = reserved
    return response


@router.delete("/{session_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_session_endpoint(
    session_id: int,
    user: User = Depends(organizer_only),
    db: AsyncSession = Depends(get_db),
):
    """Remove a session nobody has booked."""
    await delete_session(db, session_id, user)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
