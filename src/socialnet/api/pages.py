"""Page routes returning view models for the front-end.

Protected pages rely on :class:`~socialnet.gateway.GatewayMiddleware` for
redirects; the dependencies here still enforce authentication for clients
that bypass it. Load failures are logged and degrade to empty content with a
notice instead of failing the page.
"""

import logging

from fastapi import APIRouter, Depends, Query
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from socialnet.api.messages import get_contact_or_404, list_contacts, load_conversation
from socialnet.api.posts import fetch_posts
from socialnet.api.users import build_profile, get_user_by_username, search_users
from socialnet.config import get_settings
from socialnet.database import get_db
from socialnet.dependencies import CurrentSession, CurrentUser, OnboardedUser
from socialnet.schemas.message import MessageResponse
from socialnet.schemas.user import UserSummary
from socialnet.schemas.views import (
    ChatView,
    FeedView,
    FormView,
    ProfileView,
    SearchView,
    SignInView,
)
from socialnet.services.base import APIError, NotFoundError
from socialnet.services.realtime import ChangeFeed, get_change_feed
from socialnet.services.session import session_data

logger = logging.getLogger(__name__)

router = APIRouter(tags=["pages"])

SIGNIN_ERRORS = {
    "OAuthCallback": "There was a problem with Google sign-in. Please try again.",
    "OAuthSignin": "Could not start Google sign-in. Please try again.",
    "Configuration": "Sign-in is not configured correctly on the server.",
    "AccessDenied": (
        "Access denied. Allow the application to access your Google account "
        "or try a different account."
    ),
}

CHAT_SEARCH_LIMIT = 5


def signin_error_message(code: str | None) -> str | None:
    """Human-readable message for a sign-in error code."""
    if not code:
        return None
    return SIGNIN_ERRORS.get(code, f"Authentication error: {code}")


@router.get("/signin", response_model=SignInView)
async def signin_page(
    context: CurrentSession,
    error: str | None = Query(None, description="Error code from a failed sign-in"),
) -> SignInView:
    providers = ["google"] if get_settings().google_oauth_configured else []
    return SignInView(
        page="signin",
        session=context.session,
        error=signin_error_message(error),
        oauth_providers=providers,
    )


@router.get("/register", response_model=FormView)
async def register_page(context: CurrentSession) -> FormView:
    return FormView(
        page="register",
        session=context.session,
        fields=["email", "username", "password", "full_name"],
        submit_to="/api/auth/register",
    )


@router.get("/complete-profile", response_model=FormView)
async def complete_profile_page(current_user: CurrentUser) -> FormView:
    return FormView(
        page="complete-profile",
        session=session_data(current_user),
        fields=["username", "password"],
        submit_to="/api/auth/complete-profile",
    )


@router.get("/home", response_model=FeedView)
async def home_page(
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
) -> FeedView:
    """Session plus the latest posts."""
    view = FeedView(page="home", session=session_data(current_user))
    try:
        view.posts = await fetch_posts(db, current_user.id)
    except (SQLAlchemyError, APIError):
        logger.exception("Failed to load posts for user %s", current_user.id)
        await db.rollback()
        view.notice = "Failed to load posts"
    return view


@router.get("/search", response_model=SearchView)
async def search_page(
    current_user: OnboardedUser,
    q: str = Query("", max_length=50, description="Part of a username"),
    db: AsyncSession = Depends(get_db),
) -> SearchView:
    view = SearchView(page="search", session=session_data(current_user), query=q)
    if not q.strip():
        return view
    try:
        view.results = await search_users(db, q, current_user.id)
    except (SQLAlchemyError, APIError):
        logger.exception("User search failed for %r", q)
        await db.rollback()
        view.notice = "Failed to search users"
    return view


@router.get("/chat", response_model=ChatView)
async def chat_page(
    current_user: OnboardedUser,
    contact_id: int | None = Query(None, description="Open this conversation"),
    q: str = Query("", max_length=50, description="Find a new contact"),
    db: AsyncSession = Depends(get_db),
    feed: ChangeFeed = Depends(get_change_feed),
) -> ChatView:
    """Contacts sidebar and, when ``contact_id`` is given, one conversation.

    A non-empty ``q`` replaces the sidebar with the top matching users.
    """
    view = ChatView(page="chat", session=session_data(current_user))
    try:
        if q.strip():
            view.contacts = await search_users(db, q, current_user.id, limit=CHAT_SEARCH_LIMIT)
        else:
            view.contacts = await list_contacts(db, current_user.id)
    except (SQLAlchemyError, APIError):
        logger.exception("Failed to load contacts for user %s", current_user.id)
        await db.rollback()
        view.notice = "Failed to load contacts"
        return view

    if contact_id is None:
        return view

    try:
        contact = await get_contact_or_404(db, contact_id)
        messages = await load_conversation(db, current_user.id, contact.id, feed=feed)
    except NotFoundError:
        view.notice = "Conversation not found"
    except (SQLAlchemyError, APIError):
        logger.exception("Failed to load conversation %s/%s", current_user.id, contact_id)
        await db.rollback()
        view.notice = "Failed to load messages"
    else:
        view.selected = UserSummary.model_validate(contact)
        view.messages = [MessageResponse.model_validate(m) for m in messages]
    return view


@router.get("/profile/{username}", response_model=ProfileView)
async def profile_page(
    username: str,
    current_user: OnboardedUser,
    db: AsyncSession = Depends(get_db),
) -> ProfileView:
    """Profile details and posts.

    Raises:
        NotFoundError 404: If no user has this username
    """
    user = await get_user_by_username(db, username)
    view = ProfileView(page="profile", session=session_data(current_user))
    try:
        view.profile = await build_profile(db, user, current_user.id)
    except (SQLAlchemyError, APIError):
        logger.exception("Failed to load profile of %s", username)
        await db.rollback()
        view.notice = "Failed to load profile"
        return view

    try:
        view.posts = await fetch_posts(db, current_user.id, author_id=user.id)
    except (SQLAlchemyError, APIError):
        logger.exception("Failed to load posts of %s", username)
        await db.rollback()
        view.notice = "Failed to load posts"
    return view
