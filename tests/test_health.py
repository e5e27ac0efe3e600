"""Tests for health endpoints."""

from unittest.mock import AsyncMock

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_check(client: AsyncClient) -> None:
    """Test health check endpoint."""
    response = await client.get("/api/v1/health")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert "version" in data


@pytest.mark.asyncio
async def test_ping(client: AsyncClient) -> None:
    """Test ping endpoint."""
    response = await client.get("/api/v1/ping")
    assert response.status_code == 200
    assert response.json() == {"message": "pong"}


@pytest.mark.asyncio
async def test_detailed_health_without_redis(client: AsyncClient, monkeypatch) -> None:
    """Test that a missing Redis leaves the service healthy."""
    monkeypatch.setattr(
        "clinic_api.api.v1.endpoints.health.check_redis_connection",
        AsyncMock(return_value=False),
    )

    response = await client.get("/api/v1/health/detailed")
    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["database"] == "healthy"
    assert data["redis"] == "unhealthy"
    assert data["push"] == "disabled"
    assert data["notification_queue"] == 0


@pytest.mark.asyncio
async def test_detailed_health_database_down(client: AsyncClient, monkeypatch) -> None:
    """Test that only the database degrades the service."""
    monkeypatch.setattr(
        "clinic_api.api.v1.endpoints.health.check_redis_connection",
        AsyncMock(return_value=True),
    )
    monkeypatch.setattr(
        "clinic_api.api.v1.endpoints.health.check_database_connection",
        AsyncMock(return_value=False),
    )

    response = await client.get("/api/v1/health/detailed")
    data = response.json()
    assert data["status"] == "degraded"
    assert data["database"] == "unhealthy"


@pytest.mark.asyncio
async def test_missing_credentials(client: AsyncClient) -> None:
    """Test that protected endpoints require a bearer token."""
    response = await client.get("/api/v1/appointments")
    assert response.status_code in (401, 403)
    assert response.json()["success"] is False


@pytest.mark.asyncio
async def test_invalid_token(client: AsyncClient) -> None:
    """Test that a forged token is rejected."""
    response = await client.get(
        "/api/v1/appointments",
        headers={"Authorization": "Bearer not-a-token"},
    )
    assert response.status_code == 401
    assert response.headers["www-authenticate"] == "Bearer"
