"""
Admission control strategy interface.
A fast gate consulted before the transactional seat check.
"""

from abc import ABC, abstractmethod


class AdmissionStrategy(ABC):
    """
    Interface for admission gates in front of the seat ledger.

    The gate is advisory: the transactional check in the booking service is
    the only thing that can actually admit a reservation.

    Implementations:
    - OptimisticAdmission: No pre-check, rely on the database
    - RedisAdmission: Fail fast on a Redis seat counter before the database
    """

    @abstractmethod
    async def admit(self, session_id: int, guests: int = 1) -> bool:
        """
        Check if a reservation request should reach the database.

        Returns:
            True if admitted (proceed to DB)
            False if rejected (fail fast, session looks full)
        """

    @abstractmethod
    async def release(self, session_id: int, guests: int = 1):
        """Give back seats taken by `admit` (DB rejection, cancellation)."""

    @abstractmethod
    async def sync(self, session_id: int, capacity: int, reserved: int):
        """Reconcile gate state with the database after a committed change."""
