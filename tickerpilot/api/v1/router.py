from fastapi import APIRouter
from tickerpilot.api.v1 import admin_webhooks, health, paddle_webhook

router = APIRouter()
router.include_router(health.router)
router.include_router(paddle_webhook.router, tags=["payments"])

# Admin
router.include_router(admin_webhooks.router, tags=["admin"])
