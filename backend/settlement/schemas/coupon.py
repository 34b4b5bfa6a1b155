"""
Pydantic schemas for coupon creation, validation and application.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator

from settlement.models.enums import CouponType


class CouponCreate(BaseModel):
    code: str = Field(..., min_length=3, max_length=20)
    description: Optional[str] = None
    discount_percentage: int = Field(..., ge=1, le=100)
    max_reduction_amount: Optional[Decimal] = Field(None, ge=0)
    type: CouponType = CouponType.INTERNAL
    max_uses: Optional[int] = Field(None, ge=1)
    valid_from: Optional[datetime] = None
    expires_at: Optional[datetime] = None
    experience_id: Optional[int] = None
    session_id: Optional[int] = None

    @field_validator("code")
    @classmethod
    def normalise_code(cls, value: str) -> str:
        code = value.strip().upper()
        if not all(ch.isascii() and (ch.isalnum() or ch in "-_") for ch in code):
            raise ValueError("Code must be alphanumeric, dashes or underscores")
        return code


class CouponResponse(BaseModel):
    id: int
    code: str
    description: Optional[str]
    discount_percentage: int
    max_reduction_amount: Optional[Decimal]
    max_uses: Optional[int]
    used_count: int
    valid_from: datetime
    expires_at: Optional[datetime]
    type: str
    experience_id: Optional[int]
    session_id: Optional[int]
    created_by_id: int

    model_config = {"from_attributes": True}


class CouponValidateRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)
    experience_id: int
    session_id: int
    amount: Decimal = Field(..., ge=0)


class CouponQuote(BaseModel):
    coupon_id: int
    code: str
    discount_amount: Decimal
    final_price: Decimal


class CouponApplyRequest(BaseModel):
    code: str = Field(..., min_length=1, max_length=64)


class CouponApplyResponse(BaseModel):
    booking_id: int
    code: str
    discount_amount: Decimal
    new_price: Decimal


class CouponRemoveResponse(BaseModel):
    booking_id: int
    original_price: Decimal
