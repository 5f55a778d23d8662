"""Tests for authentication API endpoints."""

from collections.abc import AsyncGenerator, Awaitable, Callable
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from httpx import AsyncClient
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from socialnet.main import app
from socialnet.models.user import User
from socialnet.schemas.user import IdentityAssertion
from socialnet.services.base import APIError
from socialnet.services.errors import UserProvisioningError
from socialnet.services.google import GoogleOAuthClient, get_google_client
from socialnet.services.identity import DatabaseIdentityBackend
from socialnet.utils.security import (
    create_access_token,
    create_oauth_state,
    decode_access_token,
    verify_oauth_state,
)

DEFAULT_PASSWORD = "secret123"

AccountFactory = Callable[..., Awaitable[dict[str, str]]]


async def get_user(db_session: AsyncSession, email: str) -> User | None:
    db_session.expire_all()
    result = await db_session.execute(select(User).where(User.email == email))
    return result.scalar_one_or_none()


async def sign_in_orphan(
    client: AsyncClient,
    identity_backend: DatabaseIdentityBackend,
    email: str = "orphan@example.com",
) -> dict:
    """Create an identity with no user row and sign in with it."""
    await identity_backend.sign_up(email, DEFAULT_PASSWORD, {"full_name": "Orphan"})
    response = await client.post(
        "/api/auth/login", json={"username": email, "password": DEFAULT_PASSWORD}
    )
    assert response.status_code == 200, response.text
    client.cookies.clear()
    return response.json()


@pytest.fixture
def fake_google() -> MagicMock:
    """A Google client whose code exchange returns a fixed identity."""
    google = MagicMock(spec=GoogleOAuthClient)
    google.fetch_identity = AsyncMock(
        return_value=IdentityAssertion(id="g-1", email="a@x.com", name="Alice")
    )
    return google


@pytest.fixture
def google_override(fake_google: MagicMock):
    async def override_get_google_client() -> AsyncGenerator[MagicMock]:
        yield fake_google

    app.dependency_overrides[get_google_client] = override_get_google_client
    try:
        yield fake_google
    finally:
        app.dependency_overrides.pop(get_google_client, None)


class TestRegister:
    """Tests for user registration endpoint."""

    async def test_register_success(self, client: AsyncClient) -> None:
        """Test successful user registration."""
        response = await client.post(
            "/api/auth/register",
            json={
                "username": "newuser",
                "email": "newuser@example.com",
                "password": "securepassword123",
                "full_name": "New User",
            },
        )

        assert response.status_code == 201
        data = response.json()
        assert data["username"] == "newuser"
        assert data["email"] == "newuser@example.com"
        assert data["full_name"] == "New User"
        assert data["is_active"] is True
        assert "id" in data
        assert "created_at" in data
        # Password should NOT be in response
        assert "password" not in data
        assert "hashed_password" not in data

    async def test_register_creates_identity(
        self, client: AsyncClient, identity_backend: DatabaseIdentityBackend
    ) -> None:
        """Test that registration creates the credential identity too."""
        await client.post(
            "/api/auth/register",
            json={"username": "newuser", "email": "newuser@example.com", "password": "secret1"},
        )

        identity = await identity_backend.get_identity("newuser@example.com")
        assert identity is not None
        assert identity.has_password is True

    async def test_register_username_already_exists(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        """Test registration with existing username."""
        await create_account("testuser")

        response = await client.post(
            "/api/auth/register",
            json={"username": "testuser", "email": "new@example.com", "password": "secret123"},
        )

        assert response.status_code == 409
        assert "Username already registered" in response.json()["detail"]
        assert response.json()["field"] == "username"

    async def test_register_email_already_exists(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        """Test registration with existing email."""
        await create_account("testuser", email="test@example.com")

        response = await client.post(
            "/api/auth/register",
            json={"username": "newuser", "email": "TEST@example.com", "password": "secret123"},
        )

        assert response.status_code == 409
        assert "Email already registered" in response.json()["detail"]

    async def test_register_email_of_orphaned_identity(
        self, client: AsyncClient, identity_backend: DatabaseIdentityBackend
    ) -> None:
        """Test that an identity without a user row still blocks its email."""
        await identity_backend.sign_up("orphan@example.com", "secret123")

        response = await client.post(
            "/api/auth/register",
            json={"username": "newuser", "email": "orphan@example.com", "password": "secret123"},
        )

        assert response.status_code == 409

    async def test_register_invalid_email(self, client: AsyncClient) -> None:
        """Test registration with invalid email format."""
        response = await client.post(
            "/api/auth/register",
            json={"username": "newuser", "email": "not-an-email", "password": "secret123"},
        )

        assert response.status_code == 422

    async def test_register_password_too_short(self, client: AsyncClient) -> None:
        """Test registration with password that is too short."""
        response = await client.post(
            "/api/auth/register",
            json={"username": "newuser", "email": "new@example.com", "password": "12345"},
        )

        assert response.status_code == 422

    @pytest.mark.parametrize("username", ["abc 123", "abc-123", "", "user_claimed"])
    async def test_register_username_rejected(self, client: AsyncClient, username: str) -> None:
        """Test registration with usernames that break the rules."""
        response = await client.post(
            "/api/auth/register",
            json={"username": username, "email": "new@example.com", "password": "secret123"},
        )

        assert response.status_code == 422

    async def test_register_username_normalized_to_lowercase(self, client: AsyncClient) -> None:
        """Test that usernames are stored lowercase."""
        response = await client.post(
            "/api/auth/register",
            json={"username": "MixedCase_1", "email": "Mixed@Example.com", "password": "secret1"},
        )

        assert response.status_code == 201
        assert response.json()["username"] == "mixedcase_1"
        assert response.json()["email"] == "mixed@example.com"

    async def test_register_row_failure_leaves_repairable_identity(
        self,
        client: AsyncClient,
        create_account: AccountFactory,
        identity_backend: DatabaseIdentityBackend,
        db_session: AsyncSession,
    ) -> None:
        """Test that a failed row insert is reported and repaired at next sign-in."""
        await create_account("newuser", email="first@example.com")

        # Let the username slip past the pre-check so the row insert collides
        with patch(
            "socialnet.services.reconciliation.SessionReconciler._username_taken",
            AsyncMock(return_value=False),
        ):
            response = await client.post(
                "/api/auth/register",
                json={"username": "newuser", "email": "new@example.com", "password": "secret123"},
            )

        assert response.status_code == 503
        assert await identity_backend.get_identity("new@example.com") is not None
        assert await get_user(db_session, "new@example.com") is None

        response = await client.post(
            "/api/auth/login", json={"username": "new@example.com", "password": "secret123"}
        )

        assert response.status_code == 200
        assert response.json()["redirect_to"] == "/complete-profile"
        assert await get_user(db_session, "new@example.com") is not None


class TestLogin:
    """Tests for user login endpoint."""

    async def test_login_success_with_username(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        """Test successful login with username."""
        await create_account("testuser")

        response = await client.post(
            "/api/auth/login", json={"username": "testuser", "password": DEFAULT_PASSWORD}
        )

        assert response.status_code == 200
        data = response.json()
        assert data["token_type"] == "bearer"
        assert data["redirect_to"] == "/home"
        assert data["session"]["username"] == "testuser"
        assert data["session"]["onboarded"] is True

        payload = decode_access_token(data["access_token"])
        assert payload is not None
        assert payload["sub"] == str(data["session"]["id"])
        assert payload["onboarded"] is True
        assert "sid" in payload

    async def test_login_sets_session_cookie(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        """Test that login sets the session cookie used by pages."""
        await create_account("testuser")

        response = await client.post(
            "/api/auth/login", json={"username": "testuser", "password": DEFAULT_PASSWORD}
        )

        assert response.cookies.get("session") == response.json()["access_token"]

    async def test_login_success_with_email(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        """Test successful login with email instead of username."""
        await create_account("testuser", email="test@example.com")

        response = await client.post(
            "/api/auth/login",
            json={"username": "Test@Example.com", "password": DEFAULT_PASSWORD},
        )

        assert response.status_code == 200
        assert response.json()["session"]["email"] == "test@example.com"

    async def test_login_invalid_password(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        """Test login with wrong password."""
        await create_account("testuser")

        response = await client.post(
            "/api/auth/login", json={"username": "testuser", "password": "wrongpassword"}
        )

        assert response.status_code == 401
        assert "Invalid username or password" in response.json()["detail"]
        assert "session" not in response.cookies

    async def test_login_user_not_found(self, client: AsyncClient) -> None:
        """Test login with non-existent username."""
        response = await client.post(
            "/api/auth/login", json={"username": "nonexistent", "password": "password123"}
        )

        assert response.status_code == 401

    async def test_login_inactive_user(
        self, client: AsyncClient, create_account: AccountFactory, db_session: AsyncSession
    ) -> None:
        """Test login with inactive user account."""
        await create_account("testuser", email="test@example.com")
        user = await get_user(db_session, "test@example.com")
        user.is_active = False
        await db_session.commit()

        response = await client.post(
            "/api/auth/login", json={"username": "testuser", "password": DEFAULT_PASSWORD}
        )

        assert response.status_code == 403
        assert "inactive" in response.json()["detail"]

    async def test_login_repairs_orphaned_identity(
        self,
        client: AsyncClient,
        identity_backend: DatabaseIdentityBackend,
        db_session: AsyncSession,
    ) -> None:
        """Test that an identity without a user row gets a placeholder row."""
        data = await sign_in_orphan(client, identity_backend)

        assert data["redirect_to"] == "/complete-profile"
        assert data["session"]["onboarded"] is False
        assert data["session"]["username"].startswith("user_")

        user = await get_user(db_session, "orphan@example.com")
        assert user is not None
        assert user.full_name == "Orphan"

    async def test_login_orphaned_identity_wrong_password(
        self, client: AsyncClient, identity_backend: DatabaseIdentityBackend
    ) -> None:
        """Test that repair only happens after the password is verified."""
        await identity_backend.sign_up("orphan@example.com", DEFAULT_PASSWORD)

        response = await client.post(
            "/api/auth/login", json={"username": "orphan@example.com", "password": "nope123"}
        )

        assert response.status_code == 401


class TestCompleteProfile:
    """Tests for the profile completion endpoint."""

    async def test_complete_profile_success(
        self,
        client: AsyncClient,
        identity_backend: DatabaseIdentityBackend,
        db_session: AsyncSession,
    ) -> None:
        """Test claiming a username replaces the placeholder."""
        data = await sign_in_orphan(client, identity_backend)
        headers = {"Authorization": f"Bearer {data['access_token']}"}

        response = await client.post(
            "/api/auth/complete-profile",
            json={"username": "Orphan_1", "password": "newsecret"},
            headers=headers,
        )

        assert response.status_code == 200
        result = response.json()
        assert result["redirect_to"] == "/home"
        assert result["session"]["username"] == "orphan_1"
        assert result["session"]["onboarded"] is True
        assert decode_access_token(result["access_token"])["onboarded"] is True

        user = await get_user(db_session, "orphan@example.com")
        assert user.username == "orphan_1"

        login = await client.post(
            "/api/auth/login", json={"username": "orphan_1", "password": "newsecret"}
        )
        assert login.status_code == 200
        assert login.json()["redirect_to"] == "/home"

    @pytest.mark.parametrize(
        ("username", "password"),
        [
            ("abc 123", "secret123"),
            ("abc-123", "secret123"),
            ("", "secret123"),
            ("user_abc", "secret123"),
            ("validname", "12345"),
        ],
    )
    async def test_complete_profile_rejects_bad_input(
        self,
        client: AsyncClient,
        identity_backend: DatabaseIdentityBackend,
        username: str,
        password: str,
    ) -> None:
        """Test that rule violations are reported as validation errors."""
        data = await sign_in_orphan(client, identity_backend)

        response = await client.post(
            "/api/auth/complete-profile",
            json={"username": username, "password": password},
            headers={"Authorization": f"Bearer {data['access_token']}"},
        )

        assert response.status_code == 400
        assert response.json()["field"] in ("username", "password")

    async def test_complete_profile_username_taken(
        self,
        client: AsyncClient,
        create_account: AccountFactory,
        identity_backend: DatabaseIdentityBackend,
        db_session: AsyncSession,
    ) -> None:
        """Test that a taken username is rejected and its owner is unchanged."""
        await create_account("alice01", email="alice@example.com")
        data = await sign_in_orphan(client, identity_backend)

        response = await client.post(
            "/api/auth/complete-profile",
            json={"username": "alice01", "password": "secret123"},
            headers={"Authorization": f"Bearer {data['access_token']}"},
        )

        assert response.status_code == 409
        assert (await get_user(db_session, "alice@example.com")).username == "alice01"
        assert (await get_user(db_session, "orphan@example.com")).username.startswith("user_")

    async def test_complete_profile_already_complete(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        """Test that onboarded users cannot claim another username."""
        headers = await create_account("alice01")

        response = await client.post(
            "/api/auth/complete-profile",
            json={"username": "alice02", "password": "secret123"},
            headers=headers,
        )

        assert response.status_code == 409

    async def test_complete_profile_requires_auth(self, client: AsyncClient) -> None:
        """Test profile completion without a token."""
        response = await client.post(
            "/api/auth/complete-profile", json={"username": "alice01", "password": "secret1"}
        )

        assert response.status_code == 401


class TestLogout:
    """Tests for the logout endpoint."""

    async def test_logout_revokes_session(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        """Test that a token stops working after logout."""
        headers = await create_account("alice01")

        response = await client.post("/api/auth/logout", headers=headers)

        assert response.status_code == 200
        assert response.json() == {"status": "unauthenticated", "session": None}

        response = await client.get("/api/auth/me", headers=headers)
        assert response.status_code == 401

    async def test_logout_without_session(self, client: AsyncClient) -> None:
        """Test that logout is idempotent."""
        response = await client.post("/api/auth/logout")

        assert response.status_code == 200
        assert response.json()["status"] == "unauthenticated"

    async def test_logout_keeps_other_sessions(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        """Test that signing out one session leaves others signed in."""
        headers = await create_account("alice01")
        response = await client.post(
            "/api/auth/login", json={"username": "alice01", "password": DEFAULT_PASSWORD}
        )
        client.cookies.clear()
        other = {"Authorization": f"Bearer {response.json()['access_token']}"}

        await client.post("/api/auth/logout", headers=headers)

        response = await client.get("/api/auth/me", headers=other)
        assert response.status_code == 200


class TestMe:
    """Tests for the current user endpoint."""

    async def test_me_with_bearer_token(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        headers = await create_account("alice01")

        response = await client.get("/api/auth/me", headers=headers)

        assert response.status_code == 200
        assert response.json()["username"] == "alice01"

    async def test_me_with_session_cookie(
        self, client: AsyncClient, create_account: AccountFactory
    ) -> None:
        headers = await create_account("alice01")
        token = headers["Authorization"].removeprefix("Bearer ")

        client.cookies.set("session", token)
        response = await client.get("/api/auth/me")

        assert response.status_code == 200

    async def test_me_without_token(self, client: AsyncClient) -> None:
        response = await client.get("/api/auth/me")

        assert response.status_code == 401

    async def test_me_with_token_without_session(self, client: AsyncClient) -> None:
        """Test that a signed token for an unknown session is rejected."""
        token = create_access_token({"sub": "1", "sid": "missing", "onboarded": True})

        response = await client.get("/api/auth/me", headers={"Authorization": f"Bearer {token}"})

        assert response.status_code == 401


class TestGoogleOAuth:
    """Tests for the Google sign-in redirect flow."""

    async def test_authorize_not_configured(self, client: AsyncClient) -> None:
        """Test that missing client credentials redirect with a configuration error."""
        response = await client.get("/api/auth/oauth/google/authorize")

        assert response.status_code == 303
        assert response.headers["location"] == "/signin?error=Configuration"

    async def test_callback_new_user(
        self, client: AsyncClient, google_override: MagicMock, db_session: AsyncSession
    ) -> None:
        """Test the first Google sign-in: placeholder row, then profile completion."""
        response = await client.get(
            "/api/auth/oauth/google/callback",
            params={"code": "auth-code", "state": create_oauth_state()},
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/complete-profile"
        assert "session" in response.cookies
        google_override.fetch_identity.assert_awaited_once_with("auth-code")

        user = await get_user(db_session, "a@x.com")
        assert user.full_name == "Alice"
        assert user.username.startswith("user_")

    async def test_google_sign_in_then_complete_profile(
        self, client: AsyncClient, google_override: MagicMock, db_session: AsyncSession
    ) -> None:
        """Test a new Google user claiming a username and landing on home."""
        response = await client.get(
            "/api/auth/oauth/google/callback",
            params={"code": "auth-code", "state": create_oauth_state()},
        )
        assert response.headers["location"] == "/complete-profile"

        # The session cookie from the callback authenticates this request
        response = await client.post(
            "/api/auth/complete-profile",
            json={"username": "alice01", "password": "secret1"},
        )

        assert response.status_code == 200
        assert response.json()["redirect_to"] == "/home"
        user = await get_user(db_session, "a@x.com")
        assert user.username == "alice01"

    async def test_callback_existing_user(
        self, client: AsyncClient, create_account: AccountFactory, google_override: MagicMock
    ) -> None:
        """Test that an onboarded user is routed to home without changes."""
        await create_account("alice01", email="a@x.com")

        response = await client.get(
            "/api/auth/oauth/google/callback",
            params={"code": "auth-code", "state": create_oauth_state()},
        )

        assert response.status_code == 303
        assert response.headers["location"] == "/home"

    async def test_callback_bad_state(
        self, client: AsyncClient, google_override: MagicMock
    ) -> None:
        response = await client.get(
            "/api/auth/oauth/google/callback", params={"code": "auth-code", "state": "forged"}
        )

        assert response.headers["location"] == "/signin?error=OAuthSignin"
        google_override.fetch_identity.assert_not_awaited()

    async def test_callback_access_denied(
        self, client: AsyncClient, google_override: MagicMock  # noqa: ARG002
    ) -> None:
        response = await client.get(
            "/api/auth/oauth/google/callback", params={"error": "access_denied"}
        )

        assert response.headers["location"] == "/signin?error=AccessDenied"

    async def test_callback_provider_error(
        self, client: AsyncClient, google_override: MagicMock
    ) -> None:
        google_override.fetch_identity.side_effect = APIError("bad code", status_code=400)

        response = await client.get(
            "/api/auth/oauth/google/callback",
            params={"code": "auth-code", "state": create_oauth_state()},
        )

        assert response.headers["location"] == "/signin?error=OAuthCallback"

    async def test_callback_provisioning_failure(
        self, client: AsyncClient, google_override: MagicMock  # noqa: ARG002
    ) -> None:
        """Test that a failed row insert denies sign-in."""
        with patch(
            "socialnet.services.reconciliation.SessionReconciler._provision_user",
            AsyncMock(side_effect=UserProvisioningError()),
        ):
            response = await client.get(
                "/api/auth/oauth/google/callback",
                params={"code": "auth-code", "state": create_oauth_state()},
            )

        assert response.headers["location"] == "/signin?error=OAuthCallback"
        assert "session" not in response.cookies


class TestJWT:
    """Tests for JWT token generation and validation."""

    def test_create_access_token(self) -> None:
        """Test JWT token creation."""
        token = create_access_token(data={"sub": "123"})

        assert token is not None
        assert isinstance(token, str)
        assert len(token) > 0

    def test_decode_access_token_valid(self) -> None:
        """Test decoding a valid JWT token."""
        token = create_access_token(data={"sub": "42", "sid": "abc"})
        payload = decode_access_token(token)

        assert payload is not None
        assert payload["sub"] == "42"
        assert payload["sid"] == "abc"
        assert "exp" in payload

    def test_decode_access_token_invalid(self) -> None:
        """Test decoding an invalid JWT token."""
        payload = decode_access_token("invalid.token.here")

        assert payload is None

    def test_decode_access_token_tampered(self) -> None:
        """Test decoding a tampered JWT token."""
        token = create_access_token(data={"sub": "1"})
        # Tamper with the token by modifying it
        tampered_token = token[:-5] + "xxxxx"
        payload = decode_access_token(tampered_token)

        assert payload is None

    def test_oauth_state_round_trip(self) -> None:
        assert verify_oauth_state(create_oauth_state()) is True

    def test_access_token_is_not_oauth_state(self) -> None:
        assert verify_oauth_state(create_access_token({"sub": "1"})) is False
        assert verify_oauth_state(None) is False
