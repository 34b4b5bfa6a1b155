"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field


class BookingCreate(BaseModel):
    experience_id: int
    session_id: int
    guests: int = Field(..., gt=0, le=100)
    notes: Optional[str] = Field(None, max_length=1000)


class BookingGuestsUpdate(BaseModel):
    guests: int = Field(..., gt=0, le=100)


class BookingResponse(BaseModel):
    id: int
    experience_id: int
    session_id: int
    explorer_id: int
    guests: int
    total_price: Decimal
    status: str
    payment_status: Optional[str]
    payment_id: Optional[int]
    expires_at: Optional[datetime]
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingCancelResponse(BaseModel):
    message: str
    booking_id: int
    status: str
