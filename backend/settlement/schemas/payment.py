"""
Pydantic schemas for checkout, refunds and payment settings.
"""

from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

from settlement.models.enums import ProviderId


class CheckoutRequest(BaseModel):
    booking_id: int
    success_url: str = Field(..., min_length=1, max_length=2000)
    cancel_url: str = Field(..., min_length=1, max_length=2000)
    provider_id: Optional[ProviderId] = None


class CheckoutResponse(BaseModel):
    redirect_url: str
    payment_id: int


class RefundCreate(BaseModel):
    payment_id: int
    amount: int = Field(..., gt=0, description="Minor currency units")
    reason: Optional[str] = Field(None, max_length=255)


class RefundResponse(BaseModel):
    id: int
    payment_id: int
    amount: int
    reason: Optional[str]
    status: str
    provider_refund_id: Optional[str]
    created_at: datetime

    model_config = {"from_attributes": True}


class PaymentResponse(BaseModel):
    id: int
    booking_id: int
    provider: str
    provider_payment_id: Optional[str]
    amount: int
    currency: str
    status: str
    receipt_url: Optional[str]
    captured_at: Optional[datetime]

    model_config = {"from_attributes": True}


class PaymentSettingsPayload(BaseModel):
    default_provider: str = Field(..., min_length=1, max_length=20)
    enabled_providers: list[str] = Field(default_factory=list)
    test_mode: bool = True


class PaymentSettingsResponse(PaymentSettingsPayload):
    model_config = {"from_attributes": True}


class PaypalCaptureRequest(BaseModel):
    order_id: str = Field(..., min_length=1, max_length=255)


class WebhookAck(BaseModel):
    received: bool
    event: Optional[str] = None
    reason: Optional[str] = None
    booking_id: Optional[int] = None
