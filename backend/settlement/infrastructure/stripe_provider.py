"""
Stripe adapter: hosted Checkout Sessions and refunds through the official SDK.

The SDK is synchronous, so calls run in a worker thread to keep the event
loop free while Stripe answers.
"""

import asyncio
import json
from typing import Optional

import stripe

from settlement.core.config import get_settings
from settlement.core.logging import get_logger
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


class WebhookVerificationError(Exception):
    """Signature header missing, malformed, stale or not matching."""


def verify_webhook(payload: bytes, signature_header: Optional[str]) -> dict:
    """
    Check the Stripe-Signature header before anything is parsed and return
    the event as a plain dict.

    Raises WebhookVerificationError on a bad signature and ValueError on a
    body that is not JSON.
    """
    settings = get_settings()
    if not signature_header or not settings.STRIPE_WEBHOOK_SECRET:
        raise WebhookVerificationError("missing signature or webhook secret")

    text = payload.decode("utf-8")
    try:
        stripe.WebhookSignature.verify_header(
            text,
            signature_header,
            settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.WEBHOOK_TOLERANCE_SECONDS,
        )
    except stripe.SignatureVerificationError as e:
        raise WebhookVerificationError(str(e)) from e

    event = json.loads(text)
    if not isinstance(event, dict):
        raise ValueError("event body is not an object")
    return event


class StripeProvider(PaymentProvider):
    provider_id = ProviderId.STRIPE

    def _api_key(self) -> str:
        key = get_settings().STRIPE_SECRET_KEY
        if not key:
            raise PaymentProviderError(self.provider_id, "Missing STRIPE_SECRET_KEY")
        return key

    async def create_checkout(self, request: CheckoutRequest) -> CheckoutResult:
        api_key = self._api_key()
        params = dict(
            api_key=api_key,
            mode="payment",
            success_url=request.success_url,
            cancel_url=request.cancel_url,
            line_items=[
                {
                    "price_data": {
                        "currency": request.currency.lower(),
                        "unit_amount": request.amount,
                        "product_data": {"name": request.description},
                    },
                    "quantity": 1,
                }
            ],
            metadata=request.metadata,
            payment_intent_data={"metadata": request.metadata},
            idempotency_key=f"checkout_{request.metadata.get('paymentId', request.booking_id)}",
        )
        if request.customer_email:
            params["customer_email"] = request.customer_email

        try:
            session = await asyncio.to_thread(stripe.checkout.Session.create, **params)
        except stripe.StripeError as e:
            logger.warning("stripe_checkout_failed", booking_id=request.booking_id, error=str(e))
            raise PaymentProviderError(self.provider_id, f"Stripe API error: {e.user_message or e}", e.code) from e

        return CheckoutResult(redirect_url=session.url or "", provider_payment_id=session.id)

    async def create_refund(self, request: RefundRequest) -> RefundResult:
        api_key = self._api_key()
        params = dict(api_key=api_key, payment_intent=request.provider_payment_id, amount=request.amount)
        if request.reason:
            # Stripe only accepts its own reason vocabulary; free text goes to metadata
            params["metadata"] = {"reason": request.reason}

        try:
            refund = await asyncio.to_thread(stripe.Refund.create, **params)
        except stripe.StripeError as e:
            logger.warning("stripe_refund_failed", payment=request.provider_payment_id, error=str(e))
            raise PaymentProviderError(self.provider_id, f"Stripe API error: {e.user_message or e}", e.code) from e

        return RefundResult(provider_refund_id=refund.id)
