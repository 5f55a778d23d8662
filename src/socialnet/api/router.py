"""Main API router aggregation."""

from fastapi import APIRouter

from socialnet.api.auth import router as auth_router
from socialnet.api.messages import router as messages_router
from socialnet.api.posts import router as posts_router
from socialnet.api.realtime import router as realtime_router
from socialnet.api.users import router as users_router

# Main API router
api_router = APIRouter(prefix="/api")

# Include all sub-routers
api_router.include_router(auth_router)
api_router.include_router(posts_router)
api_router.include_router(users_router)
api_router.include_router(messages_router)
api_router.include_router(realtime_router)
