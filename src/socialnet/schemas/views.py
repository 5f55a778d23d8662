"""Pydantic schemas for page view models."""

from pydantic import BaseModel, Field

from socialnet.schemas.message import MessageResponse
from socialnet.schemas.post import PostResponse
from socialnet.schemas.user import ProfileResponse, SessionData, UserSummary


class PageView(BaseModel):
    """Fields shared by every page."""

    page: str = Field(description="Page identifier")
    session: SessionData | None = Field(default=None, description="Signed-in user, if any")
    notice: str | None = Field(default=None, description="Visible notice, e.g. a load failure")


class SignInView(PageView):
    """Sign-in page."""

    error: str | None = Field(default=None, description="Error message from a failed sign-in")
    oauth_providers: list[str] = Field(default_factory=list, description="Enabled OAuth providers")


class FormView(PageView):
    """Pages that render a single form."""

    fields: list[str] = Field(default_factory=list, description="Form field names")
    submit_to: str = Field(description="API endpoint the form posts to")


class FeedView(PageView):
    """Home feed page."""

    posts: list[PostResponse] = Field(default_factory=list, description="Latest posts")


class SearchView(PageView):
    """User search page."""

    query: str = Field(default="", description="Search query")
    results: list[UserSummary] = Field(default_factory=list, description="Matching users")


class ChatView(PageView):
    """Chat page."""

    contacts: list[UserSummary] = Field(default_factory=list, description="Contacts")
    selected: UserSummary | None = Field(default=None, description="Open conversation partner")
    messages: list[MessageResponse] = Field(default_factory=list, description="Open conversation")


class ProfileView(PageView):
    """Profile page."""

    profile: ProfileResponse | None = Field(default=None, description="Profile details")
    posts: list[PostResponse] = Field(default_factory=list, description="The user's posts")
