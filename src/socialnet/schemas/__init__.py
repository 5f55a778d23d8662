"""Pydantic schemas for request/response validation."""

from socialnet.schemas.message import (
    ContactListResponse,
    ConversationResponse,
    MessageCreate,
    MessageResponse,
)
from socialnet.schemas.oauth import GoogleTokenResponse, GoogleUserInfo
from socialnet.schemas.post import (
    CommentCreate,
    CommentListResponse,
    CommentResponse,
    LikeResponse,
    PostListResponse,
    PostResponse,
)
from socialnet.schemas.user import (
    FollowResponse,
    IdentityAssertion,
    ProfileCompletion,
    ProfileResponse,
    SessionData,
    SessionStateResponse,
    SignInResponse,
    UserCreate,
    UserLogin,
    UserResponse,
    UserSearchResponse,
    UserSummary,
)

__all__ = [
    # OAuth provider schemas
    "GoogleTokenResponse",
    "GoogleUserInfo",
    # User and auth schemas
    "FollowResponse",
    "IdentityAssertion",
    "ProfileCompletion",
    "ProfileResponse",
    "SessionData",
    "SessionStateResponse",
    "SignInResponse",
    "UserCreate",
    "UserLogin",
    "UserResponse",
    "UserSearchResponse",
    "UserSummary",
    # Post schemas
    "CommentCreate",
    "CommentListResponse",
    "CommentResponse",
    "LikeResponse",
    "PostListResponse",
    "PostResponse",
    # Message schemas
    "ContactListResponse",
    "ConversationResponse",
    "MessageCreate",
    "MessageResponse",
]
