from settlement.models.user import User
from settlement.models.experience import Experience, ExperienceSession
from settlement.models.booking import Booking
from settlement.models.payment import Payment, Refund, PaymentSettings
from settlement.models.coupon import Coupon, CouponUsage

__all__ = [
    "User",
    "Experience", "ExperienceSession",
    "Booking",
    "Payment", "Refund", "PaymentSettings",
    "Coupon", "CouponUsage",
]
