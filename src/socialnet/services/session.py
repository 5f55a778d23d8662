"""Per-connection cache of the signed-in user."""

import logging
from collections.abc import Awaitable, Callable
from enum import StrEnum

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from socialnet.models.user import User
from socialnet.schemas.user import SessionData
from socialnet.services.identity import AuthEvent, AuthEventType, AuthSession, IdentityBackend

logger = logging.getLogger(__name__)

UserLoader = Callable[[AuthSession], Awaitable[User | None]]


class SessionStatus(StrEnum):
    """States of a session context."""

    LOADING = "loading"
    AUTHENTICATED = "authenticated"
    UNAUTHENTICATED = "unauthenticated"


def session_data(user: User) -> SessionData:
    """Project a user row onto the session shape."""
    return SessionData(
        id=user.id,
        email=user.email,
        username=user.username,
        full_name=user.full_name,
        avatar_url=user.avatar_url,
        onboarded=user.is_onboarded,
    )


def db_user_loader(db: AsyncSession) -> UserLoader:
    """Build a loader resolving a backend session to its user row by email."""

    async def load(auth_session: AuthSession) -> User | None:
        result = await db.execute(select(User).where(User.email == auth_session.email))
        return result.scalar_one_or_none()

    return load


class SessionContext:
    """Projection of the credential backend's auth state for one connection.

    Starts in ``loading``. :meth:`resolve` settles it on ``authenticated`` or
    ``unauthenticated``; afterwards it follows auth-state-changed events that
    concern its own session.
    """

    def __init__(self, loader: UserLoader) -> None:
        self._loader = loader
        self.user: User | None = None
        self.auth_session: AuthSession | None = None
        self.is_loading = True
        self._unsubscribe: Callable[[], None] | None = None

    @property
    def status(self) -> SessionStatus:
        if self.is_loading:
            return SessionStatus.LOADING
        if self.user is not None:
            return SessionStatus.AUTHENTICATED
        return SessionStatus.UNAUTHENTICATED

    @property
    def session(self) -> SessionData | None:
        return session_data(self.user) if self.user is not None else None

    def bind(self, backend: IdentityBackend) -> None:
        """Follow auth events from ``backend`` until :meth:`unbind`."""
        self.unbind()
        self._unsubscribe = backend.on_auth_state_change(self.handle_auth_event)

    def unbind(self) -> None:
        if self._unsubscribe is not None:
            self._unsubscribe()
            self._unsubscribe = None

    async def resolve(self, auth_session: AuthSession | None) -> None:
        """Recompute the state for ``auth_session`` (None means signed out)."""
        self.is_loading = True
        self.auth_session = auth_session
        self.user = None
        try:
            if auth_session is not None:
                self.user = await self._loader(auth_session)
        finally:
            self.is_loading = False

    def clear(self) -> None:
        self.auth_session = None
        self.user = None
        self.is_loading = False

    async def handle_auth_event(self, event: AuthEvent) -> None:
        if self.auth_session is None:
            return

        if event.type is AuthEventType.SIGNED_OUT:
            if event.session is not None and event.session.id == self.auth_session.id:
                logger.debug("Session %s signed out", self.auth_session.id)
                self.clear()
        elif event.type is AuthEventType.USER_UPDATED:
            if event.identity_id == self.auth_session.identity_id:
                await self.resolve(self.auth_session)
