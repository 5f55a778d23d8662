"""SQLAlchemy ORM models."""

from socialnet.models.follow import Follow
from socialnet.models.identity import AuthSessionRecord, Identity
from socialnet.models.message import Message
from socialnet.models.post import Comment, Like, Post
from socialnet.models.user import User

__all__ = [
    "AuthSessionRecord",
    "Comment",
    "Follow",
    "Identity",
    "Like",
    "Message",
    "Post",
    "User",
]
