"""Application configuration using Pydantic Settings."""

from functools import lru_cache

from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
    )

    # App settings
    app_name: str = "Socialnet API"
    debug: bool = False
    secret_key: str  # Required, no default

    # Database
    database_url: str = "sqlite+aiosqlite:///./socialnet.db"

    # JWT Authentication
    jwt_algorithm: str = "HS256"
    jwt_access_token_expire_minutes: int = 60 * 24
    oauth_state_expire_minutes: int = 10
    session_cookie_name: str = "session"

    # Google OAuth
    google_client_id: str = ""
    google_client_secret: str = ""
    google_redirect_uri: str = "http://localhost:8000/api/auth/oauth/google/callback"
    google_auth_url: str = "https://accounts.google.com/o/oauth2/v2/auth"
    google_token_url: str = "https://oauth2.googleapis.com/token"
    google_userinfo_url: str = "https://openidconnect.googleapis.com/v1/userinfo"

    # Object storage for post images
    media_root: str = "./media"
    media_url: str = "/media"
    max_image_bytes: int = 5 * 1024 * 1024

    # Feed
    feed_page_size: int = 20

    @field_validator("secret_key")
    @classmethod
    def validate_secret_key(cls, v: str, info) -> str:
        """Validate that secret_key is secure."""
        if not v:
            raise ValueError("SECRET_KEY is required")

        # In production mode, ensure secret key is strong
        debug = info.data.get("debug", False)
        if not debug:
            if len(v) < 32:
                raise ValueError("SECRET_KEY must be at least 32 characters in production mode")
            if v in ("change-me-in-production", "secret", "password", "changeme"):
                raise ValueError("SECRET_KEY must not be a common weak value")

        return v

    @property
    def google_oauth_configured(self) -> bool:
        """Whether both Google OAuth client credentials are set."""
        return bool(self.google_client_id and self.google_client_secret)

    def validate_runtime_config(self) -> list[str]:
        """Validate runtime configuration and return warnings."""
        warnings = []

        if not self.google_oauth_configured:
            warnings.append(
                "GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are not set - Google sign-in will not work"
            )

        if self.database_url.startswith("sqlite") and not self.debug:
            warnings.append("DATABASE_URL points to SQLite - use a server database in production")

        # Warn about debug mode in production
        if self.debug:
            warnings.append("DEBUG mode is enabled - should be disabled in production")

        return warnings


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
