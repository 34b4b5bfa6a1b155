"""
PayPal adapter over the Orders v2 REST API (httpx).

Checkout creates an order and redirects to its approve link; the order is
captured when the customer comes back. Refunds are not offered through this
adapter.
"""

import json
from dataclasses import dataclass
from typing import Optional

import httpx

from settlement.core.config import get_settings
from settlement.core.logging import get_logger
from settlement.core.money import from_minor_units
from settlement.models.enums import ProviderId
from settlement.services.interfaces.payment_provider import (
    CheckoutRequest,
    CheckoutResult,
    PaymentProvider,
    PaymentProviderError,
    RefundRequest,
    RefundResult,
)

logger = get_logger(__name__)

SANDBOX_BASE = "https://api-m.sandbox.paypal.com"
LIVE_BASE = "https://api-m.paypal.com"


@dataclass
class PaypalCapture:
    order_id: str
    status: str
    capture_id: Optional[str]
    booking_id: Optional[int]
    payment_id: Optional[int]

    @property
    def completed(self) -> bool:
        return self.status == "COMPLETED"


def _parse_custom_id(raw: Optional[str]) -> tuple[Optional[int], Optional[int]]:
    if not raw:
        return None, None
    try:
        data = json.loads(raw)
        return int(data["bookingId"]), int(data["paymentId"])
    except (ValueError, KeyError, TypeError):
        return None, None


class PaypalProvider(PaymentProvider):
    provider_id = ProviderId.PAYPAL

    def __init__(self, test_mode: bool = True, transport: Optional[httpx.AsyncBaseTransport] = None):
        self.base_url = SANDBOX_BASE if test_mode else LIVE_BASE
        self._transport = transport

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=get_settings().PAYMENT_HTTP_TIMEOUT,
            transport=self._transport,
        )

    async def _access_token(self, client: httpx.AsyncClient) -> str:
        settings = get_settings()
        if not settings.PAYPAL_CLIENT_ID or not settings.PAYPAL_CLIENT_SECRET:
            raise PaymentProviderError(self.provider_id, "Missing PayPal credentials")

        resp = await client.post(
            "/v1/oauth2/token",
            data={"grant_type": "client_credentials"},
            auth=(settings.PAYPAL_CLIENT_ID, settings.PAYPAL_CLIENT_SECRET),
        )
        if resp.status_code != 200:
            raise PaymentProviderError(self.provider_id, f"PayPal auth failed: {resp.status_code}")
        token = resp.json().get("access_token")
        if not token:
            raise PaymentProviderError(self.provider_id, "PayPal auth: missing token")
        return token

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        body = {
            "intent": "CAPTURE",
            "purchase_units": [
                {
                    "amount": {
                        "currency_code": request.currency.upper(),
                        "value": str(from_minor_units(request.amount)),
                    },
                    "custom_id": json.dumps(
                        {"bookingId": request.booking_id, "paymentId": request.metadata.get("paymentId")}
                    ),
                    "description": request.description[:127],
                }
            ],
            "application_context": {
                "return_url": request.success_url,
                "cancel_url": request.cancel_url,
                "user_action": "PAY_NOW",
            },
        }

        try:
            async with self._client() as client:
                token = await self._access_token(client)
                resp = await client.post(
                    "/v2/checkout/orders",
                    json=body,
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            raise PaymentProviderError(self.provider_id, f"PayPal unreachable: {e}") from e

        if resp.status_code not in (200, 201):
            raise PaymentProviderError(
                self.provider_id, f"PayPal order create failed {resp.status_code}: {resp.text}"
            )
        data = resp.json()
        approve = next((link["href"] for link in data.get("links", []) if link.get("rel") == "approve"), None)
        if not data.get("id") or not approve:
            raise PaymentProviderError(self.provider_id, "PayPal response missing order id or approve link")
        return CheckoutResult(redirect_url=approve, provider_payment_id=data["id"])

    async def capture_order(self, order_id: str) -> PaypalCapture:
        try:
            async with self._client() as client:
                token = await self._access_token(client)
                resp = await client.post(
                    f"/v2/checkout/orders/{order_id}/capture",
                    json={},
                    headers={"Authorization": f"Bearer {token}"},
                )
        except httpx.HTTPError as e:
            raise PaymentProviderError(self.provider_id, f"PayPal unreachable: {e}") from e

        if resp.status_code not in (200, 201):
            raise PaymentProviderError(self.provider_id, f"PayPal capture failed {resp.status_code}: {resp.text}")

        data = resp.json()
        unit = (data.get("purchase_units") or [{}])[0]
        captures = (unit.get("payments") or {}).get("captures") or [{}]
        custom_id = unit.get("custom_id") or captures[0].get("custom_id")
        booking_id, payment_id = _parse_custom_id(custom_id)
        logger.info("paypal_order_captured", order_id=order_id, status=data.get("status"))
        return PaypalCapture(
            order_id=data.get("id", order_id),
            status=data.get("status", ""),
            capture_id=captures[0].get("id"),
            booking_id=booking_id,
            payment_id=payment_id,
        )

    async def create_refund(self, request: RefundRequest) -> RefundResult:
        raise PaymentProviderError(self.provider_id, "PayPal refunds are not supported")
