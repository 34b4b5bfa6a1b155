"""
Coupon endpoints. Creation and duplication are for organizers and admins;
validation is open to any signed-in explorer.
"""

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.db.session import get_db
from settlement.models.enums import UserRole
from settlement.models.user import User
from settlement.schemas.coupon import CouponCreate, CouponResponse, CouponValidateRequest, CouponQuote
from settlement.services.coupon_service import create_coupon, duplicate_coupon, get_coupon, validate_coupon
from settlement.core.security import get_current_user, require_roles

router = APIRouter(prefix="/coupons", tags=["Coupons"])

coupon_managers = require_roles(UserRole.ORGANIZER, UserRole.ADMIN)


@router.post("/", response_model=CouponResponse, status_code=status.HTTP_201_CREATED)
async def create_coupon_endpoint(
    payload: CouponCreate,
    user: User = Depends(coupon_managers),
    db: AsyncSession = Depends(get_db),
):
    return await create_coupon(db, payload, user)


@router.post("/validate", response_model=CouponQuote)
async def validate_coupon_endpoint(
    payload: CouponValidateRequest,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Quote the discount a code would give on an amount, without redeeming it."""
    _, quote = await validate_coupon(
        db,
        payload.code,
        payload.experience_id,
        payload.session_id,
        user.id,
        payload.amount,
    )
    return quote


@router.post("/{coupon_id}/duplicate", response_model=CouponResponse, status_code=status.HTTP_201_CREATED)
async def duplicate_coupon_endpoint(
    coupon_id: int,
    user: User = Depends(coupon_managers),
    db: AsyncSession = Depends(get_db),
):
    coupon = await get_coupon(db, coupon_id)
    if not user.is_admin and coupon.created_by_id != user.id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="You can only duplicate your own coupons",
        )
    return await duplicate_coupon(db, coupon, user)
