"""
Refund issuer. Delegates to the payment's provider and appends a PENDING
Refund; payment and booking status are left alone until the provider reports
the refund as done.
"""

from typing import Optional

from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession
from fastapi import HTTPException, status

from settlement.core.logging import get_logger
from settlement.core.metrics import record_refund
from settlement.models.enums import RefundStatus
from settlement.models.payment import Payment, Refund
from settlement.services.interfaces.payment_provider import PaymentProviderError, RefundRequest
from settlement.services.provider_factory import get_provider, parse_provider_id

logger = get_logger(__name__)


async def refunded_total(db: AsyncSession, payment_id: int) -> int:
    """Minor units already requested back, failed refunds excluded."""
    result = await db.execute(
        select(func.coalesce(func.sum(Refund.amount), 0)).where(
            Refund.payment_id == payment_id,
            Refund.status != RefundStatus.FAILED.value,
        )
    )
    return int(result.scalar_one())


async def create_refund_for_payment(
    db: AsyncSession,
    payment_id: int,
    amount: int,
    reason: Optional[str] = None,
    test_mode: bool = True,
) -> Refund:
    payment = await db.get(Payment, payment_id)
    if payment is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Payment not found")
    if not payment.provider_payment_id:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Missing provider payment id")
    if amount <= 0:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Refund amount must be positive")

    already = await refunded_total(db, payment.id)
    if already + amount > payment.amount:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Refund exceeds the refundable amount ({payment.amount - already})",
        )

    provider_id = parse_provider_id(payment.provider)
    if provider_id is None:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unsupported provider: {payment.provider}",
        )

    try:
        result = await get_provider(provider_id, test_mode).create_refund(
            RefundRequest(provider_payment_id=payment.provider_payment_id, amount=amount, reason=reason)
        )
    except PaymentProviderError as e:
        record_refund(provider_id.value, success=False)
        logger.warning("refund_provider_failed", payment_id=payment.id, provider=provider_id.value, error=e.message)
        raise HTTPException(status_code=status.HTTP_502_BAD_GATEWAY, detail=e.message)

    refund = Refund(
        payment_id=payment.id,
        amount=amount,
        reason=reason,
        status=RefundStatus.PENDING.value,
        provider_refund_id=result.provider_refund_id,
    )
    db.add(refund)
    await db.flush()
    await db.refresh(refund)
    await db.commit()

    record_refund(provider_id.value, success=True)
    logger.info(
        "refund_requested",
        payment_id=payment.id,
        refund_id=refund.id,
        provider=provider_id.value,
        amount=amount,
        provider_refund_id=refund.provider_refund_id,
    )
    return refund
