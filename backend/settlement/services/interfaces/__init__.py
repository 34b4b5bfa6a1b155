"""
Service interfaces for dependency inversion.
Allows swapping implementations without changing business logic.
"""

from .admission import AdmissionStrategy
from .optimistic_admission import OptimisticAdmission
from .payment_provider import (
    PaymentProvider,
    PaymentProviderError,
    CheckoutRequest,
    CheckoutResult,
    RefundRequest,
    RefundResult,
)

__all__ = [
    'AdmissionStrategy', 'OptimisticAdmission',
    'PaymentProvider', 'PaymentProviderError',
    'CheckoutRequest', 'CheckoutResult', 'RefundRequest', 'RefundResult',
]
