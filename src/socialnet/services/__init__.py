"""Business logic, backends and external API clients."""

from socialnet.services.base import (
    APIError,
    BaseAPIClient,
    NotFoundError,
    RateLimitError,
    TransientBackendError,
)
from socialnet.services.errors import (
    InvalidCredentialsError,
    UserProvisioningError,
    ValidationError,
)
from socialnet.services.google import GoogleOAuthClient, get_google_client
from socialnet.services.identity import (
    AuthEvent,
    AuthEventType,
    AuthSession,
    DatabaseIdentityBackend,
    IdentityBackend,
    get_identity_backend,
)
from socialnet.services.realtime import Change, ChangeFeed, EntityCache, get_change_feed
from socialnet.services.reconciliation import Route, SessionReconciler, SignInOutcome
from socialnet.services.session import SessionContext, SessionStatus
from socialnet.services.storage import LocalObjectStorage, ObjectStorage, get_storage

__all__ = [
    "APIError",
    "BaseAPIClient",
    "NotFoundError",
    "RateLimitError",
    "TransientBackendError",
    "InvalidCredentialsError",
    "UserProvisioningError",
    "ValidationError",
    "GoogleOAuthClient",
    "get_google_client",
    "AuthEvent",
    "AuthEventType",
    "AuthSession",
    "DatabaseIdentityBackend",
    "IdentityBackend",
    "get_identity_backend",
    "Change",
    "ChangeFeed",
    "EntityCache",
    "get_change_feed",
    "Route",
    "SessionReconciler",
    "SignInOutcome",
    "SessionContext",
    "SessionStatus",
    "LocalObjectStorage",
    "ObjectStorage",
    "get_storage",
]
