"""Tests for the Google OAuth client."""

from unittest.mock import AsyncMock, patch
from urllib.parse import parse_qs, urlsplit

import httpx
import pytest

from socialnet.schemas.user import IdentityAssertion
from socialnet.services.base import APIError, TransientBackendError
from socialnet.services.google import GoogleOAuthClient

SAMPLE_TOKEN_RESPONSE = {
    "access_token": "ya29.test-access-token",
    "token_type": "Bearer",
    "expires_in": 3599,
    "scope": "openid email profile",
    "id_token": "eyJ.test.id-token",
}

SAMPLE_USER_INFO = {
    "sub": "110248495921238986420",
    "email": "Alice@Example.com",
    "email_verified": True,
    "name": "Alice Example",
    "picture": "https://lh3.googleusercontent.com/a/alice",
}


@pytest.fixture
def mock_settings():
    """Mock settings with test OAuth credentials."""
    with patch("socialnet.services.google.get_settings") as mock:
        mock.return_value.google_client_id = "test-client-id"
        mock.return_value.google_client_secret = "test-client-secret"
        mock.return_value.google_redirect_uri = "http://testserver/api/auth/oauth/google/callback"
        mock.return_value.google_auth_url = "https://accounts.google.com/o/oauth2/v2/auth"
        mock.return_value.google_token_url = "https://oauth2.googleapis.com/token"
        mock.return_value.google_userinfo_url = (
            "https://openidconnect.googleapis.com/v1/userinfo"
        )
        yield mock


@pytest.fixture
def google_client(mock_settings) -> GoogleOAuthClient:  # noqa: ARG001
    """Create a Google OAuth client for testing."""
    return GoogleOAuthClient()


class TestGoogleClientInit:
    """Tests for Google OAuth client initialization."""

    def test_init_with_explicit_credentials(self, mock_settings) -> None:  # noqa: ARG002
        client = GoogleOAuthClient(client_id="other-id", client_secret="other-secret")
        assert client._client_id == "other-id"
        assert client._client_secret == "other-secret"

    def test_init_without_credentials_raises(self) -> None:
        """Test that initialization without credentials raises error."""
        with patch("socialnet.services.google.get_settings") as mock:
            mock.return_value.google_client_id = ""
            mock.return_value.google_client_secret = ""
            with pytest.raises(ValueError, match="client ID and secret are required"):
                GoogleOAuthClient()

    def test_default_headers(self, google_client: GoogleOAuthClient) -> None:
        assert google_client.default_headers == {"Accept": "application/json"}


class TestAuthorizationURL:
    """Tests for the consent screen URL."""

    def test_authorization_url(self, google_client: GoogleOAuthClient) -> None:
        url = google_client.authorization_url("state-token")

        parts = urlsplit(url)
        params = parse_qs(parts.query)
        assert f"{parts.scheme}://{parts.netloc}{parts.path}" == (
            "https://accounts.google.com/o/oauth2/v2/auth"
        )
        assert params["client_id"] == ["test-client-id"]
        assert params["redirect_uri"] == ["http://testserver/api/auth/oauth/google/callback"]
        assert params["response_type"] == ["code"]
        assert params["scope"] == ["openid email profile"]
        assert params["state"] == ["state-token"]


class TestFetchIdentity:
    """Tests for the code exchange."""

    async def test_fetch_identity_success(self, google_client: GoogleOAuthClient) -> None:
        """Test exchanging a code and reading the account's claims."""
        with patch.object(google_client, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.side_effect = [
                httpx.Response(200, json=SAMPLE_TOKEN_RESPONSE),
                httpx.Response(200, json=SAMPLE_USER_INFO),
            ]
            mock_get_client.return_value = mock_client

            assertion = await google_client.fetch_identity("auth-code")

        assert assertion == IdentityAssertion(
            id="110248495921238986420",
            email="alice@example.com",
            name="Alice Example",
            avatar_url="https://lh3.googleusercontent.com/a/alice",
        )

        token_call, info_call = mock_client.request.call_args_list
        assert token_call.kwargs["method"] == "POST"
        assert token_call.kwargs["data"]["code"] == "auth-code"
        assert token_call.kwargs["data"]["grant_type"] == "authorization_code"
        assert info_call.kwargs["method"] == "GET"
        assert info_call.kwargs["headers"]["Authorization"] == "Bearer ya29.test-access-token"

    async def test_unverified_email_rejected(self, google_client: GoogleOAuthClient) -> None:
        info = {**SAMPLE_USER_INFO, "email_verified": False}

        with patch.object(google_client, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.side_effect = [
                httpx.Response(200, json=SAMPLE_TOKEN_RESPONSE),
                httpx.Response(200, json=info),
            ]
            mock_get_client.return_value = mock_client

            with pytest.raises(APIError) as exc_info:
                await google_client.fetch_identity("auth-code")

        assert exc_info.value.status_code == 403

    async def test_rejected_code(self, google_client: GoogleOAuthClient) -> None:
        """Test that an invalid grant surfaces as an API error."""
        with patch.object(google_client, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.return_value = httpx.Response(
                400, json={"error": "invalid_grant"}
            )
            mock_get_client.return_value = mock_client

            with pytest.raises(APIError) as exc_info:
                await google_client.fetch_identity("bad-code")

        assert exc_info.value.status_code == 400
        assert "invalid_grant" in str(exc_info.value)

    async def test_timeout_is_transient(self, google_client: GoogleOAuthClient) -> None:
        with patch.object(google_client, "_get_client") as mock_get_client:
            mock_client = AsyncMock()
            mock_client.request.side_effect = httpx.TimeoutException("timed out")
            mock_get_client.return_value = mock_client

            with pytest.raises(TransientBackendError):
                await google_client.fetch_identity("auth-code")
