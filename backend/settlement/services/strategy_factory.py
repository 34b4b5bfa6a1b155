"""
Admission strategy factory.
Configures which admission gate sits in front of the seat ledger.
"""

from typing import Optional

from settlement.core.config import get_settings
from settlement.services.admission_service import RedisAdmission
from settlement.services.interfaces.admission import AdmissionStrategy
from settlement.services.interfaces.optimistic_admission import OptimisticAdmission


def get_admission_strategy() -> AdmissionStrategy:
    """
    Build the configured admission gate.

    ADMISSION_STRATEGY=redis enables the Redis gate; anything else keeps the
    database-only optimistic path.
    """
    if get_settings().ADMISSION_STRATEGY == "redis":
        return RedisAdmission()
    return OptimisticAdmission()


# Singleton instance
_strategy: Optional[AdmissionStrategy] = None


def get_admission() -> AdmissionStrategy:
    """Get admission strategy singleton."""
    global _strategy
    if _strategy is None:
        _strategy = get_admission_strategy()
    return _strategy
