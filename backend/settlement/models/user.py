"""
User model. Authentication lives outside this service; only identity and
role are needed for ownership checks.
"""

from sqlalchemy import Column, Integer, String, Boolean, CheckConstraint
from sqlalchemy.orm import relationship

from settlement.db.base import Base, TimestampMixin
from settlement.models.enums import UserRole, sql_in


class User(Base, TimestampMixin):
    __tablename__ = "users"

    id = Column(Integer, primary_key=True, index=True)
    email = Column(String(255), unique=True, index=True, nullable=False)
    name = Column(String(255), nullable=True)
    role = Column(String(20), nullable=False, default=UserRole.EXPLORER.value)
    is_active = Column(Boolean, default=True, nullable=False)

    experiences = relationship("Experience", back_populates="organizer")
    bookings = relationship("Booking", back_populates="explorer")

    __table_args__ = (
        CheckConstraint(f"role IN ({sql_in(UserRole)})", name="check_user_role"),
    )

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN.value

    def __repr__(self) -> str:
        return f"<User(id={self.id}, email={self.email}, role={self.role})>"
