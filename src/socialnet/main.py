"""FastAPI application entry point."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from datetime import timedelta

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from fastapi.staticfiles import StaticFiles
from sqlalchemy.exc import OperationalError

from socialnet import __version__
from socialnet.api import api_router, pages_router
from socialnet.config import get_settings
from socialnet.database import async_session
from socialnet.gateway import GatewayMiddleware
from socialnet.services.base import APIError, NotFoundError, RateLimitError, TransientBackendError
from socialnet.services.errors import ValidationError
from socialnet.services.identity import DatabaseIdentityBackend
from socialnet.services.realtime import ChangeFeed
from socialnet.services.storage import LocalObjectStorage

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

settings = get_settings()


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Application lifespan - runs on startup and shutdown."""
    # Startup
    logger.info("Starting %s v%s", settings.app_name, __version__)
    logger.info("Debug mode: %s", settings.debug)
    logger.info("Database: %s", settings.database_url.split("///")[-1])  # Hide path details
    logger.info(
        "Google sign-in: %s", "configured" if settings.google_oauth_configured else "NOT CONFIGURED"
    )
    logger.info("Media storage: %s", settings.media_root)

    # Validate and log warnings
    warnings = settings.validate_runtime_config()
    if warnings:
        logger.warning("Configuration warnings:")
        for warning in warnings:
            logger.warning("  - %s", warning)
    else:
        logger.info("Configuration validation passed - no warnings")

    logger.info("Application startup complete")

    yield

    # Shutdown
    subscribers = app.state.change_feed.subscriber_count
    if subscribers:
        logger.info("Closing with %d active change subscriber(s)", subscribers)
    logger.info("Application shutting down")


app = FastAPI(
    title=settings.app_name,
    version=__version__,
    debug=settings.debug,
    lifespan=lifespan,
)

# Process-wide backends, reached through dependencies
app.state.identity = DatabaseIdentityBackend(
    async_session,
    session_ttl=timedelta(minutes=settings.jwt_access_token_expire_minutes),
)
app.state.change_feed = ChangeFeed()
app.state.storage = LocalObjectStorage(settings.media_root, settings.media_url)

app.add_middleware(GatewayMiddleware)


@app.exception_handler(NotFoundError)
async def not_found_error_handler(_request: Request, exc: NotFoundError) -> JSONResponse:
    """Handle NotFoundError exceptions globally."""
    return JSONResponse(
        status_code=404,
        content={"detail": str(exc) or "Resource not found"},
    )


@app.exception_handler(RateLimitError)
async def rate_limit_error_handler(_request: Request, exc: RateLimitError) -> JSONResponse:
    """Handle RateLimitError exceptions globally."""
    headers = {}
    if exc.retry_after:
        headers["Retry-After"] = str(exc.retry_after)
    return JSONResponse(
        status_code=429,
        content={"detail": str(exc) or "Rate limit exceeded"},
        headers=headers,
    )


@app.exception_handler(ValidationError)
async def validation_error_handler(_request: Request, exc: ValidationError) -> JSONResponse:
    """Handle domain validation errors, naming the offending field when known."""
    content: dict[str, str] = {"detail": str(exc)}
    if exc.field:
        content["field"] = exc.field
    return JSONResponse(status_code=exc.status_code or 400, content=content)


@app.exception_handler(APIError)
async def api_error_handler(_request: Request, exc: APIError) -> JSONResponse:
    """Handle APIError exceptions globally."""
    return JSONResponse(
        status_code=exc.status_code or 500,
        content={"detail": str(exc) or "External API error"},
    )


@app.exception_handler(OperationalError)
async def database_error_handler(_request: Request, exc: OperationalError) -> JSONResponse:
    """Report database outages as a transient failure."""
    logger.error("Database unavailable: %s", exc)
    error = TransientBackendError()
    return JSONResponse(status_code=error.status_code, content={"detail": str(error)})


# Include API and page routers
app.include_router(api_router)
app.include_router(pages_router)
app.mount(
    settings.media_url,
    StaticFiles(directory=settings.media_root, check_dir=False),
    name="media",
)


@app.get("/health")
async def health_check() -> dict[str, str]:
    """Health check endpoint to verify the API is running."""
    return {"status": "healthy", "version": __version__}
