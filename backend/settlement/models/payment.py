"""
Payment, Refund and the singleton payment settings row.

Key design decisions:
- `amount` is integer minor units (cents), unlike bookings
- Payments are never deleted; a failed checkout leaves its row behind in
  REQUIRES_PAYMENT_METHOD and a retry creates a new one
- Refunds are an append-only audit trail (partial refunds allowed)
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Text, JSON, Boolean, CheckConstraint
from sqlalchemy.orm import relationship

from settlement.db.base import Base, TimestampMixin
from settlement.models.enums import PaymentStatus, ProviderId, RefundStatus, sql_in


class Payment(Base, TimestampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    booking_id = Column(Integer, ForeignKey("bookings.id"), nullable=False, index=True)
    provider = Column(String(20), nullable=False)
    provider_payment_id = Column(String(255), nullable=True, index=True)
    amount = Column(Integer, nullable=False)
    currency = Column(String(3), nullable=False)
    status = Column(String(30), nullable=False, default=PaymentStatus.REQUIRES_PAYMENT_METHOD.value)
    error_code = Column(String(100), nullable=True)
    error_message = Column(Text, nullable=True)
    receipt_url = Column(String(1000), nullable=True)
    captured_at = Column(DateTime(timezone=True), nullable=True)
    refunded_at = Column(DateTime(timezone=True), nullable=True)
    refunded_amount = Column(Integer, nullable=True)
    metadata_json = Column("metadata", JSON, nullable=True)

    booking = relationship("Booking", foreign_keys=[booking_id])
    refunds = relationship("Refund", back_populates="payment", order_by="Refund.id")

    __table_args__ = (
        CheckConstraint("amount >= 0", name="check_payment_amount_non_negative"),
        CheckConstraint(f"status IN ({sql_in(PaymentStatus)})", name="check_payment_status"),
        CheckConstraint(f"provider IN ({sql_in(ProviderId)})", name="check_payment_provider"),
    )

    def __repr__(self) -> str:
        return f"<Payment(id={self.id}, booking={self.booking_id}, provider={self.provider}, status={self.status})>"


class Refund(Base, TimestampMixin):
    __tablename__ = "refunds"

    id = Column(Integer, primary_key=True, index=True)
    payment_id = Column(Integer, ForeignKey("payments.id"), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    reason = Column(String(255), nullable=True)
    status = Column(String(20), nullable=False, default=RefundStatus.PENDING.value)
    provider_refund_id = Column(String(255), nullable=True)

    payment = relationship("Payment", back_populates="refunds")

    __table_args__ = (
        CheckConstraint("amount > 0", name="check_refund_amount_positive"),
        CheckConstraint(f"status IN ({sql_in(RefundStatus)})", name="check_refund_status"),
    )


class PaymentSettings(Base, TimestampMixin):
    __tablename__ = "payment_settings"

    id = Column(Integer, primary_key=True)
    default_provider = Column(String(20), nullable=False, default=ProviderId.STRIPE.value)
    # Raw strings: the admin may list providers this build does not implement
    enabled_providers = Column(JSON, nullable=False, default=lambda: [ProviderId.STRIPE.value])
    test_mode = Column(Boolean, nullable=False, default=True)
