"""Domain errors raised by authentication and feature services."""

from socialnet.services.base import APIError


class InvalidCredentialsError(APIError):
    """Raised when a login key or password does not match."""

    def __init__(self, message: str = "Invalid username or password"):
        super().__init__(message, status_code=401)


class ValidationError(APIError):
    """Raised when user input breaks a domain rule.

    Duplicate usernames and emails use status 409, other shape problems 400.
    """

    def __init__(self, message: str, status_code: int = 400, field: str | None = None):
        super().__init__(message, status_code=status_code)
        self.field = field


class UserProvisioningError(APIError):
    """Raised when an identity exists but its user record could not be created."""

    def __init__(self, message: str = "Could not set up your account, please try again"):
        super().__init__(message, status_code=503)
