"""
Cash pseudo-provider. Nothing leaves the building: the customer goes straight
to the success page and staff settle the booking by hand.
"""

from settlement.core.timeutils import utcnow
from settlement.models.enums import ProviderId
from settlement.services.interfaces.payment_provider import (
    CheckoutRequest,
    CheckoutResult,
    PaymentProvider,
    PaymentProviderError,
    RefundRequest,
    RefundResult,
)


class CashProvider(PaymentProvider):
    provider_id = ProviderId.CASH

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        return CheckoutResult(
            redirect_url=request.success_url,
            provider_payment_id=f"CASH-{int(utcnow().timestamp() * 1000)}",
        )

    async def create_refund(self, request: RefundRequest) -> RefundResult:
        raise PaymentProviderError(self.provider_id, "Cash refunds must be handled manually.")
