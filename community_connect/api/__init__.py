from __future__ import annotations

from fastapi import APIRouter

from .health import router as health_router
from .unified import router as unified_router
from .feed import router as feed_router
from .regions import router as regions_router
from .incidents import router as incidents_router
from .users import router as users_router
from .messaging import router as messaging_router
from .notifications import router as notifications_router
from .ads import router as ads_router
from .stories import router as stories_router

api_router = APIRouter()
api_router.include_router(health_router)
api_router.include_router(unified_router)
api_router.include_router(feed_router)
api_router.include_router(regions_router)
api_router.include_router(incidents_router)
api_router.include_router(users_router)
api_router.include_router(messaging_router)
api_router.include_router(notifications_router)
api_router.include_router(ads_router)
api_router.include_router(stories_router)
