"""
API v1 Router
"""

from fastapi import APIRouter

from nursery_auth.api.v1 import auth, kiosk

router = APIRouter()

# Include all endpoint routers
router.include_router(auth.router)
router.include_router(kiosk.router)

__all__ = ["router"]
