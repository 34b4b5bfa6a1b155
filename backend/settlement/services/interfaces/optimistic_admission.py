"""
Optimistic admission strategy - no pre-check.
Relies entirely on the session version lock in the database.
"""

from settlement.services.interfaces.admission import AdmissionStrategy


class OptimisticAdmission(AdmissionStrategy):
    """
    No admission gate - always admit.

    Use when:
    - Sessions are small group activities (tens of seats)
    - Redis is not deployed
    """

    async def admit(self, session_id: int, guests: int = 1) -> bool:
        return True

    async def release(self, session_id: int, guests: int = 1):
        pass

    async def sync(self, session_id: int, capacity: int, reserved: int):
        pass
