"""FastAPI dependencies for authentication and session state."""

from collections.abc import AsyncGenerator
from typing import Annotated

from fastapi import Depends, HTTPException, Request, Response, status
from fastapi.security import OAuth2PasswordBearer
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from socialnet.config import get_settings
from socialnet.database import get_db
from socialnet.models.user import User
from socialnet.schemas.user import SessionData
from socialnet.services.identity import AuthSession, IdentityBackend, get_identity_backend
from socialnet.services.reconciliation import SessionReconciler
from socialnet.services.session import SessionContext, SessionStatus, db_user_loader
from socialnet.utils.security import create_access_token, decode_access_token

# OAuth2 scheme for Bearer token authentication; the session cookie is the fallback
oauth2_scheme = OAuth2PasswordBearer(tokenUrl="/api/auth/login", auto_error=False)


def token_from_request(connection: HTTPConnection, bearer: str | None) -> str | None:
    """Return the bearer token, or the session cookie when no header was sent."""
    if bearer:
        return bearer
    return connection.cookies.get(get_settings().session_cookie_name)


async def resolve_auth_session(token: str | None, identity: IdentityBackend) -> AuthSession | None:
    """Validate an access token and return its live backend session."""
    if not token:
        return None
    payload = decode_access_token(token)
    if payload is None:
        return None
    session_id = payload.get("sid")
    if not isinstance(session_id, str):
        return None
    return await identity.get_session(session_id)


def issue_access_token(session: SessionData, auth_session: AuthSession) -> str:
    """Encode the session into a signed access token."""
    return create_access_token(
        data={
            "sub": str(session.id),
            "sid": auth_session.id,
            "username": session.username,
            "onboarded": session.onboarded,
        }
    )


def set_session_cookie(response: Response, token: str) -> None:
    settings = get_settings()
    response.set_cookie(
        settings.session_cookie_name,
        token,
        max_age=settings.jwt_access_token_expire_minutes * 60,
        httponly=True,
        samesite="lax",
        secure=not settings.debug,
    )


def clear_session_cookie(response: Response) -> None:
    response.delete_cookie(get_settings().session_cookie_name)


async def get_session_context(
    request: Request,
    bearer: Annotated[str | None, Depends(oauth2_scheme)],
    db: AsyncSession = Depends(get_db),
    identity: IdentityBackend = Depends(get_identity_backend),
) -> AsyncGenerator[SessionContext]:
    """Build the session context for this request.

    The context follows auth-state-changed events for its session until the
    request finishes.
    """
    context = SessionContext(db_user_loader(db))
    auth_session = await resolve_auth_session(token_from_request(request, bearer), identity)
    await context.resolve(auth_session)
    context.bind(identity)
    try:
        yield context
    finally:
        context.unbind()


async def get_current_user(
    context: Annotated[SessionContext, Depends(get_session_context)],
) -> User:
    """Get the current authenticated user.

    Raises:
        HTTPException 401: If the token is missing, invalid, expired, revoked,
            or has no user row.
    """
    if context.status is not SessionStatus.AUTHENTICATED or context.user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    return context.user


async def get_current_active_user(
    current_user: Annotated[User, Depends(get_current_user)],
) -> User:
    """Get the current active user.

    Raises:
        HTTPException 403: If user account is inactive
    """
    if not current_user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is inactive",
        )
    return current_user


async def get_onboarded_user(
    current_user: Annotated[User, Depends(get_current_active_user)],
) -> User:
    """Get the current user, requiring a completed profile.

    Raises:
        HTTPException 403: If the username is still a placeholder
    """
    if not current_user.is_onboarded:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Complete your profile first",
        )
    return current_user


async def get_reconciler(
    db: AsyncSession = Depends(get_db),
    identity: IdentityBackend = Depends(get_identity_backend),
) -> SessionReconciler:
    """Dependency providing a reconciler bound to the request's database session."""
    return SessionReconciler(db, identity)


# Type aliases for use in route dependencies
CurrentSession = Annotated[SessionContext, Depends(get_session_context)]
CurrentUser = Annotated[User, Depends(get_current_active_user)]
OnboardedUser = Annotated[User, Depends(get_onboarded_user)]
