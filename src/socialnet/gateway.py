"""Redirect rules applied to page requests before they reach a route."""

import logging
from typing import Any

from starlette.middleware.base import BaseHTTPMiddleware, RequestResponseEndpoint
from starlette.requests import Request
from starlette.responses import RedirectResponse, Response

from socialnet.config import get_settings
from socialnet.services.reconciliation import Route
from socialnet.utils.security import decode_access_token

logger = logging.getLogger(__name__)

SKIPPED_PREFIXES = ("/api", "/media", "/docs", "/redoc", "/health")
PUBLIC_PAGES = frozenset({Route.SIGN_IN, "/register"})
ENTRY_PAGES = frozenset({"/", Route.SIGN_IN, "/register"})


def is_page_path(path: str) -> bool:
    """Whether the gateway rules apply to ``path``."""
    if "." in path:
        return False
    return not any(path == prefix or path.startswith(prefix + "/") for prefix in SKIPPED_PREFIXES)


def redirect_for(path: str, claims: dict[str, Any] | None) -> str | None:
    """Return the path to redirect to, or None to let the request through.

    ``claims`` is the decoded access token, or None when the request carries
    no valid token. Only the token is consulted; a revoked session is caught
    by the route's own session check.
    """
    if claims is None:
        return None if path in PUBLIC_PAGES else Route.SIGN_IN

    landing = Route.HOME if claims.get("onboarded") else Route.COMPLETE_PROFILE
    if path in ENTRY_PAGES:
        return landing
    if landing == Route.COMPLETE_PROFILE and path != Route.COMPLETE_PROFILE:
        return Route.COMPLETE_PROFILE
    if landing == Route.HOME and path == Route.COMPLETE_PROFILE:
        return Route.HOME
    return None


def request_token(request: Request) -> str | None:
    authorization = request.headers.get("authorization", "")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() == "bearer" and token:
        return token
    return request.cookies.get(get_settings().session_cookie_name)


class GatewayMiddleware(BaseHTTPMiddleware):
    """Send page requests to sign-in, profile completion or home as needed."""

    async def dispatch(self, request: Request, call_next: RequestResponseEndpoint) -> Response:
        path = request.url.path
        if not is_page_path(path):
            return await call_next(request)

        token = request_token(request)
        claims = decode_access_token(token) if token else None
        if claims is not None and "sid" not in claims:
            claims = None
        target = redirect_for(path, claims)
        if target is not None and target != path:
            logger.debug("Gateway redirect %s -> %s", path, target)
            return RedirectResponse(target, status_code=307)
        return await call_next(request)
