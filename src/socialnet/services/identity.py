"""Credential backend: identities, passwords and sign-in sessions.

The backend owns its own tables and commits in its own transactions, so its
writes are never atomic with writes to application tables such as ``users``.
Callers must treat "identity created, user row missing" as a state that can
exist and be repaired later.
"""

import logging
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import StrEnum
from typing import Any

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import selectinload
from starlette.requests import HTTPConnection

from socialnet.database import utcnow
from socialnet.models.identity import AuthSessionRecord, Identity
from socialnet.schemas.user import IdentityAssertion
from socialnet.services.base import TransientBackendError
from socialnet.services.errors import (
    InvalidCredentialsError,
    UserProvisioningError,
    ValidationError,
)
from socialnet.utils.security import hash_password, verify_password

logger = logging.getLogger(__name__)


class AuthEventType(StrEnum):
    """Auth-state-changed notification types."""

    SIGNED_IN = "SIGNED_IN"
    SIGNED_OUT = "SIGNED_OUT"
    USER_UPDATED = "USER_UPDATED"


@dataclass(frozen=True)
class IdentityRecord:
    """An identity as exposed by the backend (never includes the hash)."""

    id: str
    email: str
    provider: str
    full_name: str | None
    avatar_url: str | None
    has_password: bool

    @classmethod
    def from_model(cls, identity: Identity) -> "IdentityRecord":
        return cls(
            id=identity.id,
            email=identity.email,
            provider=identity.provider,
            full_name=identity.full_name,
            avatar_url=identity.avatar_url,
            has_password=identity.hashed_password is not None,
        )


@dataclass(frozen=True)
class AuthSession:
    """A live sign-in session."""

    id: str
    identity_id: str
    email: str
    provider: str
    expires_at: datetime


@dataclass(frozen=True)
class AuthEvent:
    """Notification emitted when auth state changes."""

    type: AuthEventType
    identity_id: str
    session: AuthSession | None = None


AuthStateCallback = Callable[[AuthEvent], Awaitable[None]]


class IdentityBackend(ABC):
    """Interface of the credential backend."""

    def __init__(self) -> None:
        self._listeners: list[AuthStateCallback] = []

    def on_auth_state_change(self, callback: AuthStateCallback) -> Callable[[], None]:
        """Register ``callback`` for auth events. Returns a function that unregisters it."""
        self._listeners.append(callback)

        def unsubscribe() -> None:
            if callback in self._listeners:
                self._listeners.remove(callback)

        return unsubscribe

    async def _emit(self, event: AuthEvent) -> None:
        for callback in list(self._listeners):
            try:
                await callback(event)
            except Exception:
                logger.exception("Auth state listener failed for %s", event.type)

    @abstractmethod
    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> IdentityRecord:
        """Register a new email/password identity."""
        ...

    @abstractmethod
    async def create_user(
        self,
        email: str,
        password: str | None = None,
        metadata: dict[str, Any] | None = None,
        provider: str = "email",
    ) -> IdentityRecord:
        """Create an identity with admin privileges (password optional)."""
        ...

    @abstractmethod
    async def get_identity(self, email: str) -> IdentityRecord | None:
        """Look up an identity by email."""
        ...

    @abstractmethod
    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        """Verify a password and open a session."""
        ...

    @abstractmethod
    async def sign_in_with_oauth(
        self, assertion: IdentityAssertion, provider: str = "google"
    ) -> AuthSession:
        """Open a session for an OAuth identity, creating the identity if needed."""
        ...

    @abstractmethod
    async def get_session(self, session_id: str) -> AuthSession | None:
        """Return the session if it exists, is not revoked and has not expired."""
        ...

    @abstractmethod
    async def sign_out(self, session_id: str) -> None:
        """Revoke a session."""
        ...

    @abstractmethod
    async def update_password(self, identity_id: str, password: str) -> None:
        """Set or replace the password of an identity."""
        ...


class DatabaseIdentityBackend(IdentityBackend):
    """Identity backend storing identities and sessions with SQLAlchemy."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        session_ttl: timedelta = timedelta(hours=24),
    ) -> None:
        super().__init__()
        self._session_factory = session_factory
        self.session_ttl = session_ttl

    @asynccontextmanager
    async def _transaction(self) -> AsyncIterator[AsyncSession]:
        async with self._session_factory() as session:
            try:
                yield session
                await session.commit()
            except OperationalError as e:
                await session.rollback()
                raise TransientBackendError("Credential backend unavailable") from e
            except Exception:
                await session.rollback()
                raise

    async def _find(self, session: AsyncSession, email: str) -> Identity | None:
        result = await session.execute(select(Identity).where(Identity.email == email.lower()))
        return result.scalar_one_or_none()

    async def _open_session(self, session: AsyncSession, identity: Identity) -> AuthSession:
        now = utcnow()
        record = AuthSessionRecord(
            identity_id=identity.id,
            provider=identity.provider,
            created_at=now,
            expires_at=now + self.session_ttl,
        )
        session.add(record)
        await session.flush()
        return AuthSession(
            id=record.id,
            identity_id=identity.id,
            email=identity.email,
            provider=record.provider,
            expires_at=record.expires_at,
        )

    async def sign_up(
        self, email: str, password: str, metadata: dict[str, Any] | None = None
    ) -> IdentityRecord:
        return await self.create_user(email, password=password, metadata=metadata)

    async def create_user(
        self,
        email: str,
        password: str | None = None,
        metadata: dict[str, Any] | None = None,
        provider: str = "email",
    ) -> IdentityRecord:
        metadata = metadata or {}
        async with self._transaction() as session:
            if await self._find(session, email):
                raise ValidationError("Email already registered", status_code=409, field="email")

            identity = Identity(
                email=email.lower(),
                hashed_password=hash_password(password) if password else None,
                provider=provider,
                full_name=metadata.get("full_name"),
                avatar_url=metadata.get("avatar_url"),
                created_at=utcnow(),
            )
            session.add(identity)
            try:
                await session.flush()
            except IntegrityError as e:
                raise ValidationError(
                    "Email already registered", status_code=409, field="email"
                ) from e

            logger.info("Created %s identity for %s", provider, identity.email)
            return IdentityRecord.from_model(identity)

    async def get_identity(self, email: str) -> IdentityRecord | None:
        async with self._transaction() as session:
            identity = await self._find(session, email)
            return IdentityRecord.from_model(identity) if identity else None

    async def sign_in_with_password(self, email: str, password: str) -> AuthSession:
        async with self._transaction() as session:
            identity = await self._find(session, email)
            if (
                identity is None
                or identity.hashed_password is None
                or not verify_password(password, identity.hashed_password)
            ):
                raise InvalidCredentialsError()

            auth_session = await self._open_session(session, identity)

        await self._emit(
            AuthEvent(
                AuthEventType.SIGNED_IN, identity_id=auth_session.identity_id, session=auth_session
            )
        )
        return auth_session

    async def sign_in_with_oauth(
        self, assertion: IdentityAssertion, provider: str = "google"
    ) -> AuthSession:
        try:
            async with self._transaction() as session:
                identity = await self._find(session, assertion.email)
                if identity is None:
                    identity = Identity(
                        email=assertion.email.lower(),
                        provider=provider,
                        full_name=assertion.name,
                        avatar_url=assertion.avatar_url,
                        created_at=utcnow(),
                    )
                    session.add(identity)
                    await session.flush()
                    logger.info("Created %s identity for %s", provider, identity.email)
                else:
                    identity.full_name = identity.full_name or assertion.name
                    identity.avatar_url = identity.avatar_url or assertion.avatar_url

                auth_session = await self._open_session(session, identity)
        except IntegrityError as e:
            raise UserProvisioningError() from e

        await self._emit(
            AuthEvent(
                AuthEventType.SIGNED_IN, identity_id=auth_session.identity_id, session=auth_session
            )
        )
        return auth_session

    async def get_session(self, session_id: str) -> AuthSession | None:
        async with self._transaction() as session:
            result = await session.execute(
                select(AuthSessionRecord)
                .where(AuthSessionRecord.id == session_id)
                .options(selectinload(AuthSessionRecord.identity))
            )
            record = result.scalar_one_or_none()

            if record is None or record.revoked_at is not None or record.expires_at <= utcnow():
                return None

            return AuthSession(
                id=record.id,
                identity_id=record.identity_id,
                email=record.identity.email,
                provider=record.provider,
                expires_at=record.expires_at,
            )

    async def sign_out(self, session_id: str) -> None:
        async with self._transaction() as session:
            result = await session.execute(
                select(AuthSessionRecord)
                .where(AuthSessionRecord.id == session_id)
                .options(selectinload(AuthSessionRecord.identity))
            )
            record = result.scalar_one_or_none()
            if record is None or record.revoked_at is not None:
                return

            record.revoked_at = utcnow()
            auth_session = AuthSession(
                id=record.id,
                identity_id=record.identity_id,
                email=record.identity.email,
                provider=record.provider,
                expires_at=record.expires_at,
            )

        await self._emit(
            AuthEvent(
                AuthEventType.SIGNED_OUT, identity_id=auth_session.identity_id, session=auth_session
            )
        )

    async def update_password(self, identity_id: str, password: str) -> None:
        async with self._transaction() as session:
            identity = await session.get(Identity, identity_id)
            if identity is None:
                raise InvalidCredentialsError("Identity not found")
            identity.hashed_password = hash_password(password)

        await self._emit(AuthEvent(AuthEventType.USER_UPDATED, identity_id=identity_id))


def get_identity_backend(connection: HTTPConnection) -> IdentityBackend:
    """Dependency returning the process-wide credential backend."""
    return connection.app.state.identity
