"""
Experience and its scheduled sessions.

Key design decisions:
- Seat usage is NOT denormalised on the session; it is always the sum of
  guests over active bookings, read inside the admitting transaction
- `version` on the session is the optimistic lock every capacity-gated write
  must bump, so two transactions that read the same reserved count cannot
  both commit
"""

from sqlalchemy import Column, Integer, String, DateTime, ForeignKey, Numeric, Index, CheckConstraint
from sqlalchemy.orm import relationship

from settlement.db.base import Base, TimestampMixin


class Experience(Base, TimestampMixin):
    __tablename__ = "experiences"

    id = Column(Integer, primary_key=True, index=True)
    title = Column(String(255), nullable=False)
    price = Column(Numeric(10, 2), nullable=False)
    currency = Column(String(3), nullable=False, default="USD")
    organizer_id = Column(Integer, ForeignKey("users.id"), nullable=False, index=True)

    organizer = relationship("User", back_populates="experiences")
    sessions = relationship("ExperienceSession", back_populates="experience")

    __table_args__ = (
        CheckConstraint("price >= 0", name="check_experience_price_non_negative"),
    )

    def __repr__(self) -> str:
        return f"<Experience(id={self.id}, title={self.title}, price={self.price})>"


class ExperienceSession(Base, TimestampMixin):
    __tablename__ = "experience_sessions"

    id = Column(Integer, primary_key=True, index=True)
    experience_id = Column(Integer, ForeignKey("experiences.id"), nullable=False, index=True)
    start_at = Column(DateTime(timezone=True), nullable=False)
    capacity = Column(Integer, nullable=False)
    price_override = Column(Numeric(10, 2), nullable=True)

    # Optimistic locking version counter
    version = Column(Integer, nullable=False, default=1)

    experience = relationship("Experience", back_populates="sessions")
    bookings = relationship("Booking", back_populates="session")

    __table_args__ = (
        CheckConstraint("capacity > 0", name="check_session_capacity_positive"),
        Index("ix_experience_sessions_start_at", "start_at"),
    )

    def unit_price(self):
        """Per-guest price: the session override wins over the experience price."""
        if self.price_override is not None:
            return self.price_override
        return self.experience.price

    def __repr__(self) -> str:
        return f"<ExperienceSession(id={self.id}, experience={self.experience_id}, capacity={self.capacity})>"
