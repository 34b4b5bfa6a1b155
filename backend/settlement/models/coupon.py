"""
Discount coupons and their redemption ledger.

Key design decisions:
- `code` is stored upper-cased and is unique; duplicate-code races fail on it
- `used_count` only ever moves in the same transaction that inserts or deletes
  a CouponUsage row, so it always equals the number of usages
- CouponUsage is unique per booking (one coupon per booking) and per
  (coupon, user) (one redemption per user); these constraints are what
  catches two concurrent applies that both passed the application check
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Text, UniqueConstraint, CheckConstraint
from sqlalchemy.orm import relationship

from settlement.db.base import Base, TimestampMixin
from settlement.models.enums import CouponType, sql_in


class Coupon(Base, TimestampMixin):
    __tablename__ = "coupons"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(64), unique=True, nullable=False, index=True)
    description = Column(Text, nullable=True)
    discount_percentage = Column(Integer, nullable=False)
    max_reduction_amount = Column(Numeric(10, 2), nullable=True)
    max_uses = Column(Integer, nullable=True)
    used_count = Column(Integer, nullable=False, default=0)
    valid_from = Column(DateTime(timezone=True), nullable=False)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    type = Column(String(20), nullable=False, default=CouponType.INTERNAL.value)
    experience_id = Column(Integer, ForeignKey("experiences.id"), nullable=True, index=True)
    session_id = Column(Integer, ForeignKey("experience_sessions.id"), nullable=True)
    created_by_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    usages = relationship("CouponUsage", back_populates="coupon")

    __table_args__ = (
        CheckConstraint(
            "discount_percentage >= 1 AND discount_percentage <= 100",
            name="check_coupon_percentage_range",
        ),
        CheckConstraint("used_count >= 0", name="check_coupon_used_count_non_negative"),
        CheckConstraint(
            "max_uses IS NULL OR used_count <= max_uses",
            name="check_coupon_used_count_within_max",
        ),
        CheckConstraint(f"type IN ({sql_in(CouponType)})", name="check_coupon_type"),
    )

    def __repr__(self) -> str:
        return f"<Coupon(id={self.id}, code={self.code}, used={self.used_count}/{self.max_uses})>"


class CouponUsage(Base, TimestampMixin):
    __tablename__ = "coupon_usages"

    id = Column(Integer, primary_key=True, index=True)
    coupon_id = Column(Integer, ForeignKey("coupons.id"), nullable=False)
    user_id = Column(Integer, ForeignKey("users.id"), nullable=False)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False)
    price_before_discount = Column(Numeric(10, 2), nullable=False)

    coupon = relationship("Coupon", back_populates="usages")
    booking = relationship("Booking", back_populates="coupon_usage")

    __table_args__ = (
        UniqueConstraint("booking_id", name="uq_coupon_usage_booking"),
        UniqueConstraint("coupon_id", "user_id", name="uq_coupon_usage_coupon_user"),
    )
