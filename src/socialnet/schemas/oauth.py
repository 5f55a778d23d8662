"""Pydantic schemas for external OAuth provider responses (Google)."""

from pydantic import BaseModel, ConfigDict, Field


class GoogleTokenResponse(BaseModel):
    """Response from the Google token endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(description="OAuth access token")
    token_type: str = Field(default="Bearer", description="Token type")
    expires_in: int | None = Field(default=None, description="Lifetime in seconds")
    id_token: str | None = Field(default=None, description="OpenID Connect ID token")
    scope: str | None = Field(default=None, description="Granted scopes")


class GoogleUserInfo(BaseModel):
    """OpenID Connect user-info claims from Google."""

    model_config = ConfigDict(extra="ignore")

    sub: str = Field(description="Google account identifier")
    email: str | None = Field(default=None, description="Email address")
    email_verified: bool = Field(default=False, description="Whether Google verified the email")
    name: str | None = Field(default=None, description="Display name")
    picture: str | None = Field(default=None, description="Profile picture URL")
