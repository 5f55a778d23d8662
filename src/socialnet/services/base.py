"""Errors shared by services and the base HTTP client for identity providers."""

from abc import ABC, abstractmethod
from typing import Any

import httpx


class APIError(Exception):
    """Base exception for API errors."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class RateLimitError(APIError):
    """Raised when a provider throttles us."""

    def __init__(self, message: str = "Rate limit exceeded", retry_after: int | None = None):
        super().__init__(message, status_code=429)
        self.retry_after = retry_after


class NotFoundError(APIError):
    """Raised when a resource is not found."""

    def __init__(self, message: str = "Resource not found"):
        super().__init__(message, status_code=404)


class TransientBackendError(APIError):
    """Raised when a backend is unreachable or fails in a way worth retrying."""

    def __init__(self, message: str = "Service temporarily unavailable, please try again"):
        super().__init__(message, status_code=503)


def provider_error_message(response: httpx.Response) -> str:
    """Pull a readable message out of an OAuth error response.

    Token and user-info endpoints answer with ``{"error": ..., "error_description": ...}``
    (RFC 6749 section 5.2) or a nested ``{"error": {"message": ...}}``.
    """
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"

    error = body.get("error") if isinstance(body, dict) else None
    if isinstance(error, dict):
        return str(error.get("message") or error)
    if error:
        description = body.get("error_description")
        return f"{error}: {description}" if description else str(error)
    return response.text


class BaseAPIClient(ABC):
    """Shared plumbing for identity provider clients.

    Owns one lazily created ``httpx.AsyncClient`` and maps provider
    responses onto the service error hierarchy. Can be used as an async
    context manager to close the connection pool.
    """

    def __init__(self, base_url: str, timeout: float = 30.0) -> None:
        """Initialize the base client.

        Args:
            base_url: Base URL for relative endpoints.
            timeout: Request timeout in seconds.
        """
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client: httpx.AsyncClient | None = None

    @property
    @abstractmethod
    def default_headers(self) -> dict[str, str]:
        """Headers sent with every request."""
        ...

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None or self._client.is_closed:
            self._client = httpx.AsyncClient(
                base_url=self.base_url,
                timeout=self.timeout,
                headers=self.default_headers,
            )
        return self._client

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None and not self._client.is_closed:
            await self._client.aclose()
        self._client = None

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
        data: dict[str, Any] | None = None,
    ) -> dict[str, Any]:
        """Send a request and return the decoded JSON body.

        ``endpoint`` may be an absolute URL; providers spread the OAuth flow
        over several hosts.

        Raises:
            TransientBackendError: Timeouts, connection failures and 5xx answers.
            RateLimitError: 429 answers.
            NotFoundError: 404 answers.
            APIError: Any other error answer or a body that is not JSON.
        """
        client = await self._get_client()
        url = endpoint if endpoint.startswith("http") else endpoint.lstrip("/")

        try:
            response = await client.request(
                method=method,
                url=url,
                params=params,
                headers={**self.default_headers, **(headers or {})},
                data=data,
            )
        except httpx.TimeoutException as e:
            raise TransientBackendError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise TransientBackendError(f"Request failed: {e}") from e

        return self._handle_response(response)

    def _handle_response(self, response: httpx.Response) -> dict[str, Any]:
        status = response.status_code
        if status == 404:
            raise NotFoundError()
        if status == 429:
            retry_after = response.headers.get("Retry-After")
            raise RateLimitError(retry_after=int(retry_after) if retry_after else None)
        if status >= 500:
            raise TransientBackendError(f"Upstream error {status}")
        if status >= 400:
            raise APIError(f"Provider error: {provider_error_message(response)}", status_code=status)

        try:
            return response.json()
        except ValueError as e:
            raise APIError(f"Invalid JSON response: {e}") from e

    async def get(
        self,
        endpoint: str,
        params: dict[str, Any] | None = None,
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        return await self._request("GET", endpoint, params=params, headers=headers)

    async def post_form(
        self,
        endpoint: str,
        data: dict[str, Any],
        headers: dict[str, str] | None = None,
    ) -> dict[str, Any]:
        """POST an ``application/x-www-form-urlencoded`` body, as token endpoints expect."""
        return await self._request("POST", endpoint, headers=headers, data=data)

    async def __aenter__(self) -> "BaseAPIClient":
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.close()
