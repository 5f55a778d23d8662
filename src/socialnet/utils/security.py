"""Security utilities for password hashing and JWT handling."""

import secrets
from datetime import UTC, datetime, timedelta

import bcrypt
from jose import JWTError, jwt

from socialnet.config import get_settings

OAUTH_STATE_PURPOSE = "oauth_state"


def hash_password(password: str) -> str:
    """Hash a plain text password using bcrypt."""
    password_bytes = password.encode("utf-8")
    salt = bcrypt.gensalt()
    hashed = bcrypt.hashpw(password_bytes, salt)
    return hashed.decode("utf-8")


def verify_password(plain_password: str, hashed_password: str) -> bool:
    """Verify a plain text password against a hashed password."""
    password_bytes = plain_password.encode("utf-8")
    hashed_bytes = hashed_password.encode("utf-8")
    return bcrypt.checkpw(password_bytes, hashed_bytes)


def create_access_token(data: dict, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token.

    Args:
        data: Payload data to encode in the token. The "sub" (subject) claim
              must be a string (e.g., {"sub": str(user_id)}) and "sid" carries
              the credential backend session id.
        expires_delta: Optional custom expiration time. Defaults to settings value.

    Returns:
        Encoded JWT token string
    """
    settings = get_settings()
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(minutes=settings.jwt_access_token_expire_minutes)

    to_encode.update({"exp": expire})
    encoded_jwt = jwt.encode(
        to_encode,
        settings.secret_key,
        algorithm=settings.jwt_algorithm,
    )
    return encoded_jwt


def decode_access_token(token: str) -> dict | None:
    """Decode and validate a JWT access token.

    Args:
        token: The JWT token string to decode

    Returns:
        Decoded token payload if valid, None if invalid or expired
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.secret_key,
            algorithms=[settings.jwt_algorithm],
        )
        return payload
    except JWTError:
        return None


def create_oauth_state() -> str:
    """Create a signed, short-lived OAuth ``state`` value."""
    settings = get_settings()
    return create_access_token(
        {"purpose": OAUTH_STATE_PURPOSE, "nonce": secrets.token_urlsafe(16)},
        expires_delta=timedelta(minutes=settings.oauth_state_expire_minutes),
    )


def verify_oauth_state(state: str | None) -> bool:
    """Check that ``state`` was issued by :func:`create_oauth_state` and has not expired."""
    if not state:
        return False
    payload = decode_access_token(state)
    return payload is not None and payload.get("purpose") == OAUTH_STATE_PURPOSE
