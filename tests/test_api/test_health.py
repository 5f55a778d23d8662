"""Tests for health check endpoint."""

from httpx import AsyncClient

from socialnet import __version__


async def test_health_check(client: AsyncClient) -> None:
    """Test that health check endpoint returns expected response."""
    response = await client.get("/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["version"] == __version__


async def test_health_check_skips_gateway(client: AsyncClient) -> None:
    """Test that the health check is reachable without signing in."""
    response = await client.get("/health")
    assert "location" not in response.headers
