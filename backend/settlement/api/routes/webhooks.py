"""
Provider notification endpoints.

Both always answer 200: a rejected notification is reported in the body
(`received: false`) instead of as an error, so providers do not keep
redelivering something that will never verify.
"""

import json

from fastapi import APIRouter, Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from settlement.db.session import get_db
from settlement.schemas.payment import WebhookAck
from settlement.services.settlement_service import handle_stripe_webhook, handle_payzone_notification

router = APIRouter(prefix="/webhooks", tags=["Webhooks"])


@router.post("/stripe", response_model=WebhookAck)
async def stripe_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    payload = await request.body()
    return await handle_stripe_webhook(db, payload, request.headers.get("stripe-signature"))


async def _notification_fields(request: Request) -> dict[str, str]:
    """Payzone posts form fields or JSON; anything unreadable is an empty notification."""
    content_type = request.headers.get("content-type", "")
    if "application/x-www-form-urlencoded" in content_type or "multipart/form-data" in content_type:
        form = await request.form()
        return {key: str(value) for key, value in form.items()}
    try:
        data = json.loads(await request.body() or b"{}")
    except ValueError:
        return {}
    if not isinstance(data, dict):
        return {}
    return {key: str(value) for key, value in data.items()}


@router.post("/payzone", response_model=WebhookAck)
async def payzone_webhook(request: Request, db: AsyncSession = Depends(get_db)):
    fields = await _notification_fields(request)
    return await handle_payzone_notification(db, fields)
