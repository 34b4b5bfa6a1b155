from settlement.schemas.booking import BookingCreate, BookingGuestsUpdate, BookingResponse, BookingCancelResponse
from settlement.schemas.session import SessionUpdate, SessionResponse
from settlement.schemas.coupon import (
    CouponCreate, CouponResponse, CouponValidateRequest, CouponQuote,
    CouponApplyRequest, CouponApplyResponse, CouponRemoveResponse,
)
from settlement.schemas.payment import (
    CheckoutRequest, CheckoutResponse, RefundCreate, RefundResponse, PaymentResponse,
    PaymentSettingsPayload, PaymentSettingsResponse, PaypalCaptureRequest, WebhookAck,
)

__all__ = [
    "BookingCreate", "BookingGuestsUpdate", "BookingResponse", "BookingCancelResponse",
    "SessionUpdate", "SessionResponse",
    "CouponCreate", "CouponResponse", "CouponValidateRequest", "CouponQuote",
    "CouponApplyRequest", "CouponApplyResponse", "CouponRemoveResponse",
    "CheckoutRequest", "CheckoutResponse", "RefundCreate", "RefundResponse", "PaymentResponse",
    "PaymentSettingsPayload", "PaymentSettingsResponse", "PaypalCaptureRequest", "WebhookAck",
]
