"""Google OAuth 2.0 / OpenID Connect client."""

from collections.abc import AsyncGenerator
from urllib.parse import urlencode

from socialnet.config import get_settings
from socialnet.schemas.oauth import GoogleTokenResponse, GoogleUserInfo
from socialnet.schemas.user import IdentityAssertion
from socialnet.services.base import APIError, BaseAPIClient

GOOGLE_SCOPES = ("openid", "email", "profile")


class GoogleOAuthClient(BaseAPIClient):
    """Client for Google's OAuth authorization-code flow.

    Builds the consent URL, exchanges the authorization code for tokens and
    turns the user-info claims into an :class:`IdentityAssertion`.
    """

    def __init__(
        self,
        client_id: str | None = None,
        client_secret: str | None = None,
        redirect_uri: str | None = None,
        timeout: float = 15.0,
    ) -> None:
        """Initialize the Google OAuth client.

        Args:
            client_id: OAuth client ID. If not provided, uses settings.
            client_secret: OAuth client secret. If not provided, uses settings.
            redirect_uri: Callback URL registered with Google. If not provided, uses settings.
            timeout: Request timeout in seconds.
        """
        settings = get_settings()
        self._client_id = client_id or settings.google_client_id
        self._client_secret = client_secret or settings.google_client_secret
        self.redirect_uri = redirect_uri or settings.google_redirect_uri
        self.auth_url = settings.google_auth_url
        self.token_url = settings.google_token_url
        self.userinfo_url = settings.google_userinfo_url

        if not self._client_id or not self._client_secret:
            raise ValueError("Google OAuth client ID and secret are required")

        super().__init__(base_url=self.token_url, timeout=timeout)

    @property
    def default_headers(self) -> dict[str, str]:
        """Return default headers for Google API requests."""
        return {"Accept": "application/json"}

    def authorization_url(self, state: str) -> str:
        """Build the URL of Google's consent screen."""
        params = {
            "client_id": self._client_id,
            "redirect_uri": self.redirect_uri,
            "response_type": "code",
            "scope": " ".join(GOOGLE_SCOPES),
            "state": state,
            "access_type": "online",
            "prompt": "select_account",
        }
        return f"{self.auth_url}?{urlencode(params)}"

    async def exchange_code(self, code: str) -> GoogleTokenResponse:
        """Exchange an authorization code for tokens."""
        data = await self.post_form(
            self.token_url,
            data={
                "code": code,
                "client_id": self._client_id,
                "client_secret": self._client_secret,
                "redirect_uri": self.redirect_uri,
                "grant_type": "authorization_code",
            },
        )
        return GoogleTokenResponse.model_validate(data)

    async def get_user_info(self, access_token: str) -> GoogleUserInfo:
        """Fetch the OpenID Connect claims for the signed-in account."""
        data = await self.get(
            self.userinfo_url,
            headers={"Authorization": f"Bearer {access_token}"},
        )
        return GoogleUserInfo.model_validate(data)

    async def fetch_identity(self, code: str) -> IdentityAssertion:
        """Run the code exchange and return the resulting identity assertion.

        Raises:
            APIError: If Google returns no verified email for the account.
        """
        tokens = await self.exchange_code(code)
        info = await self.get_user_info(tokens.access_token)
        if not info.email or not info.email_verified:
            raise APIError("Google account has no verified email", status_code=403)
        return IdentityAssertion(
            id=info.sub,
            email=info.email,
            name=info.name,
            avatar_url=info.picture,
        )


async def get_google_client() -> AsyncGenerator[GoogleOAuthClient | None]:
    """Dependency providing a Google OAuth client.

    Yields None when Google sign-in is not configured.
    """
    if not get_settings().google_oauth_configured:
        yield None
        return

    client = GoogleOAuthClient()
    try:
        yield client
    finally:
        await client.close()
