"""Session reconciliation: map identity assertions onto user rows.

Every sign-in resolves to exactly one ``users`` row, looked up by email.
Rows are provisioned with a placeholder username when missing, and users
whose username is still a placeholder are routed to profile completion.
"""

import logging
import secrets
from dataclasses import dataclass
from enum import StrEnum

from sqlalchemy import or_, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from socialnet.database import utcnow
from socialnet.models.user import PLACEHOLDER_USERNAME_PREFIX, User
from socialnet.schemas.user import (
    IdentityAssertion,
    SessionData,
    UserCreate,
    check_password,
    check_username,
)
from socialnet.services.base import APIError
from socialnet.services.errors import (
    InvalidCredentialsError,
    UserProvisioningError,
    ValidationError,
)
from socialnet.services.identity import AuthSession, IdentityBackend
from socialnet.services.session import session_data

logger = logging.getLogger(__name__)

MAX_PLACEHOLDER_ATTEMPTS = 5


class Route(StrEnum):
    """Where the client goes after an auth action."""

    HOME = "/home"
    COMPLETE_PROFILE = "/complete-profile"
    SIGN_IN = "/signin"


@dataclass
class SignInOutcome:
    """Result of a successful sign-in or profile completion."""

    user: User
    auth_session: AuthSession
    route: Route
    created: bool = False

    @property
    def session(self) -> SessionData:
        return session_data(self.user)


def is_placeholder_username(username: str | None) -> bool:
    """Whether ``username`` is unset or a generated placeholder."""
    return not username or username.startswith(PLACEHOLDER_USERNAME_PREFIX)


def generate_placeholder_username() -> str:
    """Return a fresh placeholder such as ``user_3f9a0c12be45``."""
    return f"{PLACEHOLDER_USERNAME_PREFIX}{secrets.token_hex(6)}"


def route_for(user: User) -> Route:
    """Route a signed-in user to the feed or to profile completion."""
    if is_placeholder_username(user.username):
        return Route.COMPLETE_PROFILE
    return Route.HOME


class SessionReconciler:
    """Bridges the credential backend and the ``users`` table.

    Args:
        db: Request-scoped database session for application tables.
        identity: Credential backend. Its writes commit independently of ``db``.
    """

    def __init__(self, db: AsyncSession, identity: IdentityBackend) -> None:
        self.db = db
        self.identity = identity

    async def _find_by_email(self, email: str) -> User | None:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def _find_by_login(self, login: str) -> User | None:
        result = await self.db.execute(
            select(User).where(or_(User.username == login, User.email == login))
        )
        return result.scalar_one_or_none()

    async def _username_taken(self, username: str, exclude_user_id: int | None = None) -> bool:
        query = select(User.id).where(User.username == username)
        if exclude_user_id is not None:
            query = query.where(User.id != exclude_user_id)
        result = await self.db.execute(query)
        return result.scalar_one_or_none() is not None

    async def _placeholder_username(self) -> str:
        for _ in range(MAX_PLACEHOLDER_ATTEMPTS):
            candidate = generate_placeholder_username()
            if not await self._username_taken(candidate):
                return candidate
        raise UserProvisioningError("Could not allocate a temporary username")

    async def _provision_user(
        self, email: str, full_name: str | None, avatar_url: str | None
    ) -> User:
        user = User(
            email=email.lower(),
            username=await self._placeholder_username(),
            full_name=full_name,
            avatar_url=avatar_url,
            created_at=utcnow(),
            is_active=True,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error("User row insert failed for %s: %s", email, e.orig)
            raise UserProvisioningError() from e

        logger.info("Provisioned user %s (%s) with placeholder username", user.id, user.email)
        return user

    async def sign_in_with_credentials(self, login: str, password: str) -> SignInOutcome:
        """Sign in with an email or username and a password.

        Raises:
            InvalidCredentialsError: Unknown login key or wrong password.
            UserProvisioningError: An orphaned identity could not be repaired.
        """
        login = login.strip().lower()
        user = await self._find_by_login(login)

        if user is None:
            if "@" not in login:
                raise InvalidCredentialsError()
            # Identity may exist without a user row if registration failed midway.
            auth_session = await self.identity.sign_in_with_password(login, password)
            identity = await self.identity.get_identity(login)
            logger.warning("Repairing orphaned identity %s: creating missing user row", login)
            try:
                user = await self._provision_user(
                    login,
                    identity.full_name if identity else None,
                    identity.avatar_url if identity else None,
                )
            except UserProvisioningError:
                await self.identity.sign_out(auth_session.id)
                raise
            return SignInOutcome(user, auth_session, Route.COMPLETE_PROFILE, created=True)

        if not user.is_active:
            raise APIError("User account is inactive", status_code=403)

        auth_session = await self.identity.sign_in_with_password(user.email, password)
        route = route_for(user)
        logger.info("User %s signed in with credentials, routing to %s", user.id, route)
        return SignInOutcome(user, auth_session, route)

    async def sign_in_with_oauth(
        self, assertion: IdentityAssertion, provider: str = "google"
    ) -> SignInOutcome:
        """Sign in with a verified identity assertion from an OAuth provider.

        Raises:
            UserProvisioningError: The identity or its user row could not be created.
        """
        auth_session = await self.identity.sign_in_with_oauth(assertion, provider)

        user = await self._find_by_email(assertion.email)
        if user is not None:
            if not user.is_active:
                await self.identity.sign_out(auth_session.id)
                raise APIError("User account is inactive", status_code=403)
            route = route_for(user)
            logger.info("User %s signed in with %s, routing to %s", user.id, provider, route)
            return SignInOutcome(user, auth_session, route)

        try:
            user = await self._provision_user(assertion.email, assertion.name, assertion.avatar_url)
        except UserProvisioningError:
            await self.identity.sign_out(auth_session.id)
            raise
        return SignInOutcome(user, auth_session, Route.COMPLETE_PROFILE, created=True)

    async def register(self, data: UserCreate) -> User:
        """Create an identity and its user row.

        Raises:
            ValidationError: Username or email already registered.
            UserProvisioningError: The identity was created but the row was not.
        """
        if await self._username_taken(data.username):
            raise ValidationError("Username already registered", status_code=409, field="username")
        if await self._find_by_email(data.email):
            raise ValidationError("Email already registered", status_code=409, field="email")

        await self.identity.sign_up(data.email, data.password, {"full_name": data.full_name})

        user = User(
            email=data.email,
            username=data.username,
            full_name=data.full_name,
            created_at=utcnow(),
            is_active=True,
        )
        self.db.add(user)
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            logger.error(
                "Identity for %s created but user row insert failed; "
                "it will be repaired at next sign-in",
                data.email,
            )
            raise UserProvisioningError() from e

        logger.info("Registered user %s (%s)", user.id, user.username)
        return user

    async def complete_profile(
        self, user: User, auth_session: AuthSession, username: str, password: str
    ) -> SignInOutcome:
        """Replace a placeholder username and set the password.

        Raises:
            ValidationError: Bad username or password, username taken, or
                profile already complete.
        """
        if not is_placeholder_username(user.username):
            raise ValidationError("Profile is already complete", status_code=409)

        try:
            username = check_username(username)
        except ValueError as e:
            raise ValidationError(str(e), field="username") from e
        try:
            check_password(password)
        except ValueError as e:
            raise ValidationError(str(e), field="password") from e

        if await self._username_taken(username, exclude_user_id=user.id):
            raise ValidationError("Username is already taken", status_code=409, field="username")

        # The backend commits on its own connection; write it before this
        # session takes a write lock on the users table.
        identity = await self.identity.get_identity(user.email)
        if identity is None:
            await self.identity.create_user(
                user.email,
                password=password,
                metadata={"full_name": user.full_name, "avatar_url": user.avatar_url},
            )
        else:
            await self.identity.update_password(identity.id, password)

        user.username = username
        try:
            await self.db.flush()
        except IntegrityError as e:
            await self.db.rollback()
            raise ValidationError(
                "Username is already taken", status_code=409, field="username"
            ) from e

        logger.info("User %s completed profile as %s", user.id, username)
        return SignInOutcome(user, auth_session, Route.HOME)
