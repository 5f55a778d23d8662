"""Pytest fixtures and configuration."""

import os
from collections.abc import AsyncGenerator, Awaitable, Callable
from pathlib import Path

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)

# Set test environment variables before importing the app
os.environ.setdefault("SECRET_KEY", "test-secret-key-for-testing-at-least-32-characters-long")
os.environ.setdefault("DEBUG", "true")

from socialnet import models  # noqa: E402, F401
from socialnet.database import Base, get_db  # noqa: E402
from socialnet.main import app  # noqa: E402
from socialnet.services.identity import DatabaseIdentityBackend  # noqa: E402
from socialnet.services.realtime import ChangeFeed  # noqa: E402
from socialnet.services.storage import LocalObjectStorage  # noqa: E402

DEFAULT_PASSWORD = "secret123"

AccountFactory = Callable[..., Awaitable[dict[str, str]]]


@pytest.fixture
def anyio_backend() -> str:
    """Use asyncio as the async backend for tests."""
    return "asyncio"


@pytest.fixture
async def engine(tmp_path: Path) -> AsyncGenerator[AsyncEngine]:
    """A fresh SQLite database with all tables created."""
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'test.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db_session(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest.fixture
def identity_backend(session_factory: async_sessionmaker[AsyncSession]) -> DatabaseIdentityBackend:
    return DatabaseIdentityBackend(session_factory)


@pytest.fixture
def change_feed() -> ChangeFeed:
    return ChangeFeed()


@pytest.fixture
def storage(tmp_path: Path) -> LocalObjectStorage:
    return LocalObjectStorage(str(tmp_path / "media"), "/media")


@pytest.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
    identity_backend: DatabaseIdentityBackend,
    change_feed: ChangeFeed,
    storage: LocalObjectStorage,
) -> AsyncGenerator[AsyncClient]:
    """Async HTTP client for testing FastAPI endpoints against the test database."""

    async def override_get_db():
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    previous = (app.state.identity, app.state.change_feed, app.state.storage)
    app.state.identity = identity_backend
    app.state.change_feed = change_feed
    app.state.storage = storage
    app.dependency_overrides[get_db] = override_get_db

    transport = ASGITransport(app=app)
    try:
        async with AsyncClient(transport=transport, base_url="http://test") as ac:
            yield ac
    finally:
        app.dependency_overrides.clear()
        app.state.identity, app.state.change_feed, app.state.storage = previous


@pytest.fixture
def create_account(client: AsyncClient) -> AccountFactory:
    """Register and sign in a user; returns Authorization headers.

    Cookies set by the login are cleared so each request states its own
    credentials.
    """

    async def factory(
        username: str = "alice01",
        email: str | None = None,
        password: str = DEFAULT_PASSWORD,
        full_name: str | None = None,
    ) -> dict[str, str]:
        response = await client.post(
            "/api/auth/register",
            json={
                "username": username,
                "email": email or f"{username}@example.com",
                "password": password,
                "full_name": full_name,
            },
        )
        assert response.status_code == 201, response.text

        response = await client.post(
            "/api/auth/login", json={"username": username, "password": password}
        )
        assert response.status_code == 200, response.text
        client.cookies.clear()
        return {"Authorization": f"Bearer {response.json()['access_token']}"}

    return factory
