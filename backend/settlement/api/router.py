"""
Central API router that aggregates all route modules.
"""

from fastapi import APIRouter
from settlement.api.routes import bookings, sessions, coupons, payments, webhooks

api_router = APIRouter(prefix="/api/v1")
api_router.include_router(bookings.router)
api_router.include_router(sessions.router)
api_router.include_router(coupons.router)
api_router.include_router(payments.router)
api_router.include_router(webhooks.router)
