"""
Admission gate backed by Redis.
Implements AdmissionStrategy with an atomic Lua check-and-reserve.

Circuit Breaker Pattern:
  On Redis failure, the gate "fails open" (admits all requests).
  The seat check inside the booking transaction remains authoritative, so
  a Redis outage only costs the fail-fast shortcut, never correctness.
"""

from pathlib import Path

from settlement.core.logging import get_logger
from settlement.core.metrics import redis_connection_errors, redis_circuit_breaker_open
from settlement.infrastructure.redis_client import get_redis
from settlement.services.interfaces.admission import AdmissionStrategy

logger = get_logger(__name__)

ADMISSION_SCRIPT = (Path(__file__).resolve().parent.parent / "infrastructure" / "admission.lua").read_text()


def _keys(session_id: int) -> tuple[str, str]:
    return f"session:{session_id}:capacity", f"session:{session_id}:reserved"


class RedisAdmission(AdmissionStrategy):
    """
    Redis-based admission gate.

    Use when:
    - Popular sessions draw far more requests than seats
    - The database needs shielding from doomed reservation attempts
    """

    def __init__(self):
        self._script = None

    async def _get_script(self):
        client = await get_redis()
        if client is None:
            return None
        if self._script is None:
            self._script = client.register_script(ADMISSION_SCRIPT)
        return self._script

    async def admit(self, session_id: int, guests: int = 1) -> bool:
        try:
            script = await self._get_script()
            if script is None:
                redis_circuit_breaker_open.set(1)
                return True
            result = await script(keys=list(_keys(session_id)), args=[guests])
            redis_circuit_breaker_open.set(0)
            return bool(result)
        except Exception as e:
            redis_connection_errors.inc()
            redis_circuit_breaker_open.set(1)
            logger.warning("admission_gate_failed_open", session_id=session_id, error=str(e))
            return True

    async def release(self, session_id: int, guests: int = 1):
        client = await get_redis()
        if client is None:
            return
        try:
            await client.decrby(_keys(session_id)[1], guests)
        except Exception as e:
            redis_connection_errors.inc()
            logger.warning("admission_release_failed", session_id=session_id, error=str(e))

    async def sync(self, session_id: int, capacity: int, reserved: int):
        client = await get_redis()
        if client is None:
            return
        capacity_key, reserved_key = _keys(session_id)
        try:
            async with client.pipeline(transaction=True) as pipe:
                pipe.set(capacity_key, capacity)
                pipe.set(reserved_key, reserved)
                await pipe.execute()
        except Exception as e:
            redis_connection_errors.inc()
            logger.warning("admission_sync_failed", session_id=session_id, error=str(e))
