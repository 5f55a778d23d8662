"""Pydantic schemas for user and authentication API endpoints."""

import re
from datetime import datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator

from socialnet.models.user import PLACEHOLDER_USERNAME_PREFIX

USERNAME_PATTERN = re.compile(r"^[A-Za-z0-9_]+$")
USERNAME_MAX_LENGTH = 50
PASSWORD_MIN_LENGTH = 6


def check_username(value: str) -> str:
    """Validate a username a user wants to claim and return its normalized form.

    Raises:
        ValueError: If the username is empty, too long, contains characters
            other than ASCII letters, digits and underscores, or looks like a
            generated placeholder.
    """
    if not value:
        raise ValueError("Username is required")
    if len(value) > USERNAME_MAX_LENGTH:
        raise ValueError(f"Username must be at most {USERNAME_MAX_LENGTH} characters")
    if not USERNAME_PATTERN.fullmatch(value):
        raise ValueError("Username can only contain letters, numbers, and underscores")
    normalized = value.lower()
    if normalized.startswith(PLACEHOLDER_USERNAME_PREFIX):
        raise ValueError(f"Username cannot start with '{PLACEHOLDER_USERNAME_PREFIX}'")
    return normalized


def check_password(value: str) -> str:
    """Validate password length."""
    if len(value) < PASSWORD_MIN_LENGTH:
        raise ValueError(f"Password must be at least {PASSWORD_MIN_LENGTH} characters")
    return value


class UserCreate(BaseModel):
    """Schema for user registration."""

    email: EmailStr = Field(description="Valid email address")
    username: str = Field(description="Unique username (letters, numbers, underscores)")
    password: str = Field(max_length=100, description="Password (at least 6 characters)")
    full_name: str | None = Field(default=None, max_length=255, description="Optional full name")

    @field_validator("username")
    @classmethod
    def validate_username(cls, v: str) -> str:
        """Validate username contains only allowed characters."""
        return check_username(v)

    @field_validator("password")
    @classmethod
    def validate_password(cls, v: str) -> str:
        """Validate password length."""
        return check_password(v)

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Emails are compared case-insensitively."""
        return v.lower()


class ProfileCompletion(BaseModel):
    """Schema for choosing a permanent username after first sign-in.

    Values are validated by the reconciliation service so that rule
    violations surface as ``ValidationError`` with a form message.
    """

    username: str = Field(default="", description="Permanent username")
    password: str = Field(
        default="", max_length=100, description="Password (at least 6 characters)"
    )


class UserLogin(BaseModel):
    """Schema for user login request."""

    username: str = Field(description="Username or email")
    password: str = Field(description="Password")


class IdentityAssertion(BaseModel):
    """Claims about a user returned by an identity provider."""

    id: str | None = Field(default=None, description="Provider subject identifier")
    email: EmailStr = Field(description="Verified email address")
    name: str | None = Field(default=None, description="Display name")
    avatar_url: str | None = Field(default=None, description="Profile picture URL")

    @field_validator("email")
    @classmethod
    def normalize_email(cls, v: str) -> str:
        """Emails are compared case-insensitively."""
        return v.lower()


class UserResponse(BaseModel):
    """Response schema for user data (excludes credentials)."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(description="User ID")
    username: str | None = Field(description="Username")
    email: str = Field(description="Email address")
    full_name: str | None = Field(default=None, description="Full name")
    avatar_url: str | None = Field(default=None, description="Avatar image URL")
    bio: str | None = Field(default=None, description="Short biography")
    is_active: bool = Field(description="Whether the user account is active")
    created_at: datetime = Field(description="When the user was created")


class UserSummary(BaseModel):
    """Minimal public user info embedded in posts, comments and search results."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(description="User ID")
    username: str | None = Field(description="Username")
    full_name: str | None = Field(default=None, description="Full name")
    avatar_url: str | None = Field(default=None, description="Avatar image URL")


class SessionData(BaseModel):
    """The signed-in user as seen by the rest of the application."""

    model_config = ConfigDict(from_attributes=True)

    id: int = Field(description="User ID")
    email: str = Field(description="Email address")
    username: str | None = Field(default=None, description="Username, or placeholder")
    full_name: str | None = Field(default=None, description="Display name")
    avatar_url: str | None = Field(default=None, description="Avatar image URL")
    onboarded: bool = Field(description="Whether profile completion is done")


class SignInResponse(BaseModel):
    """Schema for a successful sign-in or profile completion."""

    access_token: str = Field(description="JWT access token")
    token_type: str = Field(default="bearer", description="Token type")
    redirect_to: str = Field(description="Route the client should navigate to")
    session: SessionData = Field(description="Signed-in user")


class SessionStateResponse(BaseModel):
    """Session context state after an auth action."""

    status: str = Field(description="loading, authenticated or unauthenticated")
    session: SessionData | None = Field(default=None, description="Signed-in user, if any")


class UserSearchResponse(BaseModel):
    """Response for user search."""

    query: str = Field(description="Search query")
    results: list[UserSummary] = Field(default_factory=list, description="Matching users")


class ProfileResponse(BaseModel):
    """Public profile with follow counts."""

    user: UserSummary = Field(description="Profile owner")
    bio: str | None = Field(default=None, description="Short biography")
    followers_count: int = Field(description="Number of followers")
    following_count: int = Field(description="Number of users followed")
    is_following: bool = Field(description="Whether the viewer follows this user")
    is_self: bool = Field(description="Whether the viewer owns this profile")


class FollowResponse(BaseModel):
    """Follow state after a follow or unfollow."""

    username: str = Field(description="Followed user's username")
    following: bool = Field(description="Whether the viewer now follows the user")
    followers_count: int = Field(description="Follower count after the change")
