"""
Closed value sets stored as plain strings (guarded by CHECK constraints).
"""

import enum


class UserRole(str, enum.Enum):
    EXPLORER = "EXPLORER"
    ORGANIZER = "ORGANIZER"
    ADMIN = "ADMIN"


class BookingStatus(str, enum.Enum):
    PENDING = "PENDING"
    CONFIRMED = "CONFIRMED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    COMPLETED = "COMPLETED"


# Bookings in these states hold seats on their session
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class PaymentStatus(str, enum.Enum):
    REQUIRES_PAYMENT_METHOD = "REQUIRES_PAYMENT_METHOD"
    PROCESSING = "PROCESSING"
    SUCCEEDED = "SUCCEEDED"
    CANCELLED = "CANCELLED"


class ProviderId(str, enum.Enum):
    STRIPE = "STRIPE"
    PAYPAL = "PAYPAL"
    PAYZONE = "PAYZONE"
    CASH = "CASH"


class CouponType(str, enum.Enum):
    INTERNAL = "INTERNAL"
    EXTERNAL = "EXTERNAL"


class RefundStatus(str, enum.Enum):
    PENDING = "PENDING"
    SUCCEEDED = "SUCCEEDED"
    FAILED = "FAILED"


def sql_in(values) -> str:
    """Render an enum for a CHECK ... IN (...) clause."""
    return ", ".join(f"'{member.value}'" for member in values)
