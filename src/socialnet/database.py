"""Database configuration with async SQLAlchemy support."""

from collections.abc import AsyncGenerator, Sequence
from datetime import UTC, datetime
from typing import Any

from sqlalchemy.dialects import postgresql, sqlite
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.orm import DeclarativeBase

from socialnet.config import get_settings


class Base(DeclarativeBase):
    """Base class for all ORM models."""

    pass


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, matching what the database returns."""
    return datetime.now(UTC).replace(tzinfo=None)


settings = get_settings()

# Create async engine
engine = create_async_engine(
    settings.database_url,
    echo=settings.debug,
)

# Create async session factory
async_session = async_sessionmaker(
    engine,
    class_=AsyncSession,
    expire_on_commit=False,
)


async def get_db() -> AsyncGenerator[AsyncSession]:
    """Dependency that provides an async database session.

    Yields a session and ensures it's closed after the request.
    """
    async with async_session() as session:
        try:
            yield session
            await session.commit()
        except Exception:
            await session.rollback()
            raise


def get_session_factory() -> async_sessionmaker[AsyncSession]:
    """Dependency that provides the session factory.

    Long-lived handlers (WebSocket streams) open one short session per unit of
    work instead of holding a request-scoped session open.
    """
    return async_session


# Dialects with INSERT ... ON CONFLICT DO NOTHING
CONFLICT_INSERTS = {"sqlite": sqlite.insert, "postgresql": postgresql.insert}


async def insert_if_absent(
    db: AsyncSession,
    model: type[Base],
    conflict_columns: Sequence[str],
    **values: Any,
) -> Base | None:
    """Insert a row unless one with the same ``conflict_columns`` already exists.

    Concurrent callers racing on the same unique key all succeed; only the
    first one inserts.

    Returns:
        The inserted instance, or None if a matching row was already there.
    """
    insert = CONFLICT_INSERTS.get(db.get_bind().dialect.name)
    if insert is None:
        instance = model(**values)
        try:
            async with db.begin_nested():
                db.add(instance)
        except IntegrityError:
            return None
        return instance

    stmt = (
        insert(model)
        .values(**values)
        .on_conflict_do_nothing(index_elements=list(conflict_columns))
        .returning(model)
    )
    result = await db.execute(stmt)
    return result.scalar_one_or_none()
