"""User ORM model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from socialnet.database import Base, utcnow

if TYPE_CHECKING:
    from socialnet.models.post import Post

PLACEHOLDER_USERNAME_PREFIX = "user_"


class User(Base):
    """Application-level user record.

    Linked to its identity in the credential backend by ``email``. The
    ``username`` holds a generated placeholder until profile completion.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(primary_key=True)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    username: Mapped[str | None] = mapped_column(String(50), unique=True, index=True, nullable=True)
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    bio: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    is_active: Mapped[bool] = mapped_column(default=True)

    # Relationships
    posts: Mapped[list[Post]] = relationship(back_populates="user", cascade="all, delete-orphan")

    @property
    def is_onboarded(self) -> bool:
        """Whether the user has chosen a permanent username."""
        return bool(self.username) and not self.username.startswith(PLACEHOLDER_USERNAME_PREFIX)
