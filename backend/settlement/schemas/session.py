"""
Pydantic schemas for organizer session edits.
"""

from datetime import datetime
from decimal import Decimal
from typing import Optional
from pydantic import BaseModel, Field, field_validator


class SessionUpdate(BaseModel):
    """Partial edit: only the fields present in the request are written."""
    capacity: Optional[int] = Field(None, gt=0, le=100000)
    # null clears the override, absent leaves it alone
    price_override: Optional[Decimal] = Field(None, ge=0)

    @field_validator("capacity")
    @classmethod
    def capacity_not_null(cls, v):
        if v is None:
            raise ValueError("capacity cannot be null")
        return v


class SessionResponse(BaseModel):
    id: int
    experience_id: int
    start_at: datetime
    capacity: int
    price_override: Optional[Decimal]
    reserved_guests: int = 0

    model_config = {"from_attributes": True}
