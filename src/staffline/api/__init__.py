"""API route aggregation.

All routers registered here get mounted in main.py under /api/v1.

Learn: Notification and call routes resolve the current user themselves
(they need the identity, not just a gate). Health is open.
"""

from fastapi import APIRouter

from staffline.api.calls import router as calls_router
from staffline.api.health import router as health_router
from staffline.api.notifications import router as notifications_router

api_router = APIRouter(prefix="/api/v1")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(notifications_router, tags=["notifications"])
api_router.include_router(calls_router, tags=["calls"])
