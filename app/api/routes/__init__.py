"""
API Routes
"""
from fastapi import APIRouter

from app.api.routes.conversations import router as conversations_router
from app.api.routes.fleet import router as fleet_router
from app.api.webhooks.whatsapp_cloud import router as whatsapp_router

router = APIRouter()

router.include_router(whatsapp_router, prefix="/whatsapp", tags=["webhooks"])
router.include_router(conversations_router, prefix="/conversations", tags=["conversations"])
router.include_router(fleet_router, prefix="/fleet", tags=["fleet"])
