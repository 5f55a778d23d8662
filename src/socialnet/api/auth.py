"""Authentication API endpoints."""

import logging
from typing import Annotated

from fastapi import APIRouter, Depends, Query, Response
from fastapi.responses import RedirectResponse

from socialnet.dependencies import (
    CurrentSession,
    CurrentUser,
    clear_session_cookie,
    get_reconciler,
    issue_access_token,
    set_session_cookie,
)
from socialnet.schemas.user import (
    ProfileCompletion,
    SessionStateResponse,
    SignInResponse,
    UserCreate,
    UserLogin,
    UserResponse,
)
from socialnet.services.base import APIError
from socialnet.services.google import GoogleOAuthClient, get_google_client
from socialnet.services.identity import IdentityBackend, get_identity_backend
from socialnet.services.reconciliation import Route, SessionReconciler, SignInOutcome
from socialnet.utils.security import create_oauth_state, verify_oauth_state

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])

Reconciler = Annotated[SessionReconciler, Depends(get_reconciler)]


def signin_error_url(code: str) -> str:
    return f"{Route.SIGN_IN}?error={code}"


def outcome_to_response(outcome: SignInOutcome) -> SignInResponse:
    """Issue a token for a sign-in outcome."""
    session = outcome.session
    return SignInResponse(
        access_token=issue_access_token(session, outcome.auth_session),
        token_type="bearer",
        redirect_to=outcome.route,
        session=session,
    )


@router.post("/register", response_model=UserResponse, status_code=201)
async def register(user_data: UserCreate, reconciler: Reconciler) -> UserResponse:
    """Register a new user.

    Creates the identity in the credential backend, then the user row. The
    client signs in afterwards.

    Raises:
        ValidationError 409: If username or email already exists
        UserProvisioningError 503: If the user row could not be created
    """
    user = await reconciler.register(user_data)
    return UserResponse.model_validate(user)


@router.post("/login", response_model=SignInResponse)
async def login(
    credentials: UserLogin,
    response: Response,
    reconciler: Reconciler,
) -> SignInResponse:
    """Authenticate with username or email and password.

    Returns a JWT token and the route to continue to: ``/home``, or
    ``/complete-profile`` while the username is a placeholder.

    Raises:
        InvalidCredentialsError 401: If credentials are invalid
        APIError 403: If user account is inactive
    """
    outcome = await reconciler.sign_in_with_credentials(credentials.username, credentials.password)
    result = outcome_to_response(outcome)
    set_session_cookie(response, result.access_token)
    return result


@router.get("/oauth/google/authorize")
async def google_authorize(
    google: GoogleOAuthClient | None = Depends(get_google_client),
) -> RedirectResponse:
    """Redirect to Google's consent screen."""
    if google is None:
        return RedirectResponse(signin_error_url("Configuration"), status_code=303)
    return RedirectResponse(google.authorization_url(create_oauth_state()), status_code=303)


@router.get("/oauth/google/callback")
async def google_callback(
    reconciler: Reconciler,
    code: str | None = Query(None),
    state: str | None = Query(None),
    error: str | None = Query(None),
    google: GoogleOAuthClient | None = Depends(get_google_client),
) -> RedirectResponse:
    """Complete Google sign-in and redirect to the next page.

    Failures never surface as errors here: the browser is sent back to the
    sign-in page with an error code instead.
    """
    if google is None:
        return RedirectResponse(signin_error_url("Configuration"), status_code=303)
    if error:
        logger.info("Google sign-in was not granted: %s", error)
        code_name = "AccessDenied" if error == "access_denied" else "OAuthCallback"
        return RedirectResponse(signin_error_url(code_name), status_code=303)
    if not code or not verify_oauth_state(state):
        return RedirectResponse(signin_error_url("OAuthSignin"), status_code=303)

    try:
        assertion = await google.fetch_identity(code)
        outcome = await reconciler.sign_in_with_oauth(assertion, provider="google")
    except APIError as e:
        logger.warning("Google sign-in failed: %s", e)
        return RedirectResponse(signin_error_url("OAuthCallback"), status_code=303)

    result = outcome_to_response(outcome)
    redirect = RedirectResponse(result.redirect_to, status_code=303)
    set_session_cookie(redirect, result.access_token)
    return redirect


@router.post("/complete-profile", response_model=SignInResponse)
async def complete_profile(
    data: ProfileCompletion,
    response: Response,
    current_user: CurrentUser,
    context: CurrentSession,
    reconciler: Reconciler,
) -> SignInResponse:
    """Choose a permanent username and set a password.

    Returns a fresh token reflecting the new username.

    Raises:
        ValidationError 400: If username or password break the rules
        ValidationError 409: If the username is taken or profile is complete
    """
    outcome = await reconciler.complete_profile(
        current_user, context.auth_session, data.username, data.password
    )
    result = outcome_to_response(outcome)
    set_session_cookie(response, result.access_token)
    return result


@router.post("/logout", response_model=SessionStateResponse)
async def logout(
    response: Response,
    context: CurrentSession,
    identity: IdentityBackend = Depends(get_identity_backend),
) -> SessionStateResponse:
    """Sign out the current session.

    Idempotent: signing out without a valid session succeeds.
    """
    if context.auth_session is not None:
        await identity.sign_out(context.auth_session.id)
    clear_session_cookie(response)
    return SessionStateResponse(status=context.status, session=context.session)


@router.get("/me", response_model=UserResponse)
async def get_current_user_info(current_user: CurrentUser) -> UserResponse:
    """Get the current authenticated user's information.

    Requires a valid JWT token in the Authorization header or session cookie.
    """
    return UserResponse.model_validate(current_user)
