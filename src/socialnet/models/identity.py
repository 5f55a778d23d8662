"""ORM models owned by the credential backend."""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import ForeignKey, String
from sqlalchemy.orm import Mapped, mapped_column, relationship

from socialnet.database import Base, utcnow


def _new_id() -> str:
    return str(uuid.uuid4())


class Identity(Base):
    """An authenticated identity (email/password or OAuth)."""

    __tablename__ = "auth_identities"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    email: Mapped[str] = mapped_column(String(255), unique=True, index=True)
    hashed_password: Mapped[str | None] = mapped_column(String(255), nullable=True)
    provider: Mapped[str] = mapped_column(String(50), default="email")
    full_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    avatar_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    created_at: Mapped[datetime] = mapped_column(default=utcnow)

    sessions: Mapped[list[AuthSessionRecord]] = relationship(
        back_populates="identity", cascade="all, delete-orphan"
    )


class AuthSessionRecord(Base):
    """A sign-in session issued for an identity."""

    __tablename__ = "auth_sessions"

    id: Mapped[str] = mapped_column(String(36), primary_key=True, default=_new_id)
    identity_id: Mapped[str] = mapped_column(
        ForeignKey("auth_identities.id", ondelete="CASCADE"), index=True
    )
    provider: Mapped[str] = mapped_column(String(50))
    created_at: Mapped[datetime] = mapped_column(default=utcnow)
    expires_at: Mapped[datetime] = mapped_column()
    revoked_at: Mapped[datetime | None] = mapped_column(nullable=True)

    identity: Mapped[Identity] = relationship(back_populates="sessions")
