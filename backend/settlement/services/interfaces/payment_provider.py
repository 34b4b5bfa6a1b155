"""
Payment provider interface.
One implementation per external gateway, plus the cash pseudo-provider.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional

from settlement.models.enums import ProviderId


class PaymentProviderError(Exception):
    """Raised by a provider adapter when the gateway refuses or cannot be reached."""

    def __init__(self, provider: ProviderId, message: str, code: Optional[str] = None):
        super().__init__(message)
        self.provider = provider
        self.message = message
        self.code = code


@dataclass
class CheckoutRequest:
    booking_id: int
    amount: int  # minor units
    currency: str
    success_url: str
    cancel_url: str
    description: str
    customer_email: Optional[str] = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class CheckoutResult:
    redirect_url: str
    provider_payment_id: Optional[str] = None


@dataclass
class RefundRequest:
    provider_payment_id: str
    amount: int  # minor units
    reason: Optional[str] = None


@dataclass
class RefundResult:
    provider_refund_id: Optional[str] = None


class PaymentProvider(ABC):
    """
    Interface for payment gateways.

    Implementations:
    - StripeProvider: hosted Checkout Session, API refunds
    - PaypalProvider: Orders v2 approve link, capture on return
    - PayzoneProvider: HMAC-signed redirect, notifications by IPN
    - CashProvider: no redirect, settled by staff
    """

    provider_id: ProviderId

    @abstractmethod
    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        """Start a payment and return where to send the customer."""

    @abstractmethod
    async def create_refund(self, request: RefundRequest) -> RefundResult:
        """Refund (part of) a captured payment."""
