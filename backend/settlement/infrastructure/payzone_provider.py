"""
Payzone adapter: the checkout is a redirect to the hosted page with a
signed query string; results arrive as signed notifications.

Signature: HMAC-SHA256 (hex) over the fields sorted by name and joined as
`k=v&k=v`, excluding the signature itself.
"""

import hashlib
import hmac
from typing import Mapping, Optional
from urllib.parse import urlencode

from settlement.core.config import get_settings
from settlement.models.enums import ProviderId
from settlement.services.interfaces.payment_provider import (
    CheckoutRequest,
    CheckoutResult,
    PaymentProvider,
    PaymentProviderError,
    RefundRequest,
    RefundResult,
)

SIGNATURE_FIELD = "signature"


def build_signature(fields: Mapping[str, str], secret: str) -> str:
    base = "&".join(f"{key}={fields[key]}" for key in sorted(fields))
    return hmac.new(secret.encode("utf-8"), base.encode("utf-8"), hashlib.sha256).hexdigest()


def verify_payzone_signature(fields: Mapping[str, str]) -> bool:
    secret = get_settings().PAYZONE_SECRET_KEY
    signature: Optional[str] = fields.get(SIGNATURE_FIELD)
    if not secret or not signature:
        return False
    unsigned = {key: value for key, value in fields.items() if key != SIGNATURE_FIELD}
    return hmac.compare_digest(build_signature(unsigned, secret), signature)


class PayzoneProvider(PaymentProvider):
    provider_id = ProviderId.PAYZONE

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        settings = get_settings()
        if not settings.PAYZONE_SECRET_KEY:
            raise PaymentProviderError(self.provider_id, "Missing PAYZONE_SECRET_KEY")

        order_id = request.metadata.get("paymentId") or str(request.booking_id)
        fields = {
            "orderId": order_id,
            "amount": str(request.amount),
            "currency": request.currency.upper(),
            "successUrl": request.success_url,
            "cancelUrl": request.cancel_url,
            "ipnUrl": f"{settings.PUBLIC_APP_URL.rstrip('/')}/api/v1/webhooks/payzone",
            "description": request.description,
        }
        if request.customer_email:
            fields["customerEmail"] = request.customer_email
        fields[SIGNATURE_FIELD] = build_signature(fields, settings.PAYZONE_SECRET_KEY)

        return CheckoutResult(
            redirect_url=f"{settings.PAYZONE_GATEWAY_URL}?{urlencode(fields)}",
            provider_payment_id=order_id,
        )

    async def create_refund(self, request: RefundRequest) -> RefundResult:
        raise PaymentProviderError(self.provider_id, "Payzone refunds are not supported via API")
