"""
Booking model representing an explorer's reservation of N seats on a session.

Key design decisions:
- Status field allows cancellation/expiry without deleting records
- `payment_status` mirrors the linked Payment and stays NULL until checkout
- `total_price` is in major units; the payment side converts to minor units
- `payment_id` points at the latest Payment; older attempts stay in `payments`
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Text, Index, CheckConstraint
from sqlalchemy.orm import relationship

from settlement.db.base import Base, TimestampMixin
from settlement.models.enums import BookingStatus, PaymentStatus, sql_in


class Booking(Base, TimestampMixin):
    __tablename__ = "bookings"

    id = Column(Integer, primary_key=True, index=True)
    experience_id = Column(Integer, ForeignKey("experiences.id"), nullable=False, index=True)
    session_id = Column(Integer, ForeignKey("experience_sessions.id"), nullable=False)
    explorer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)
    guests = Column(Integer, nullable=False)
    total_price = Column(Numeric(10, 2), nullable=False)
    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value)
    payment_status = Column(String(30), nullable=True)
    expires_at = Column(DateTime(timezone=True), nullable=True)
    # use_alter: payments also reference bookings
    payment_id = Column(Integer, ForeignKey("payments.id", use_alter=True, name="fk_bookings_payment_id"), nullable=True)
    notes = Column(Text, nullable=True)

    experience = relationship("Experience")
    session = relationship("ExperienceSession", back_populates="bookings")
    explorer = relationship("User", back_populates="bookings")
    payment = relationship("Payment", foreign_keys=[payment_id], post_update=True)
    coupon_usage = relationship("CouponUsage", back_populates="booking", uselist=False)

    __table_args__ = (
        CheckConstraint("guests > 0", name="check_booking_guests_positive"),
        CheckConstraint("total_price >= 0", name="check_booking_total_non_negative"),
        CheckConstraint(f"status IN ({sql_in(BookingStatus)})", name="check_booking_status"),
        CheckConstraint(
            f"payment_status IS NULL OR payment_status IN ({sql_in(PaymentStatus)})",
            name="check_booking_payment_status",
        ),
        # Capacity sums scan active bookings per session
        Index("ix_bookings_session_status", "session_id", "status"),
    )

    def __repr__(self) -> str:
        return f"<Booking(id={self.id}, session={self.session_id}, guests={self.guests}, status={self.status})>"
