"""API routers."""

from socialnet.api.pages import router as pages_router
from socialnet.api.router import api_router

__all__ = ["api_router", "pages_router"]
