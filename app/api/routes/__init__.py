"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.webhook_admin import router as webhook_admin_router
from app.api.webhooks.stripe import router as stripe_router

router = APIRouter()

router.include_router(stripe_router, prefix="/webhooks", tags=["webhooks"])
router.include_router(webhook_admin_router, prefix="/webhooks", tags=["webhook-admin"])
