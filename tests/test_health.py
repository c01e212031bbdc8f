"""Tests for the health check endpoint and request tracing."""

import pytest
from httpx import ASGITransport, AsyncClient

from weather_app.main import create_app
from weather_app.services.storage import KeyValueStore


@pytest.mark.asyncio
async def test_health_endpoint(http):
    """Test health check with a connected store."""
    response = await http.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "healthy"
    assert data["storage_connected"] is True
    assert "version" in data


@pytest.mark.asyncio
async def test_health_degraded_without_storage(sessions):
    """Test a missing store degrades health without failing it."""
    app = create_app(sessions=sessions, store=KeyValueStore(redis=None))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")

    assert response.status_code == 200
    data = response.json()
    assert data["status"] == "degraded"
    assert data["storage_connected"] is False


@pytest.mark.asyncio
async def test_weather_not_ready_without_client():
    """Test the weather endpoints refuse requests before startup wiring."""
    app = create_app(store=KeyValueStore(redis=None))

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/location/last")

    assert response.status_code == 503
    assert "not ready" in response.json()["detail"].lower()


@pytest.mark.asyncio
async def test_correlation_id_header(http):
    """Test that correlation ID is added to responses."""
    response = await http.get("/health")

    assert "X-Correlation-ID" in response.headers


@pytest.mark.asyncio
async def test_correlation_id_is_propagated(http):
    response = await http.get("/health", headers={"X-Correlation-ID": "abc-123"})

    assert response.headers["X-Correlation-ID"] == "abc-123"


@pytest.mark.asyncio
async def test_client_id_issued_as_cookie_when_missing(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health")

    client_id = response.headers["X-Client-ID"]
    assert len(client_id) == 32
    assert f"weather_client_id={client_id}" in response.headers["set-cookie"]


@pytest.mark.asyncio
async def test_client_id_header_is_echoed(http):
    response = await http.get("/health")

    assert response.headers["X-Client-ID"] == "test-client"
    assert "set-cookie" not in response.headers


@pytest.mark.asyncio
async def test_client_id_read_from_cookie(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health", headers={"Cookie": "weather_client_id=abc123"})

    assert response.headers["X-Client-ID"] == "abc123"
    assert "set-cookie" not in response.headers


@pytest.mark.asyncio
async def test_malformed_client_id_is_replaced(app):
    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as client:
        response = await client.get("/health", headers={"X-Client-ID": "../../etc"})

    assert response.headers["X-Client-ID"] != "../../etc"
    assert "set-cookie" in response.headers


@pytest.mark.asyncio
async def test_lifespan_keeps_injected_connected_store(sessions, store, mock_redis, provider):
    """Test startup reuses an already connected store and leaves it open on shutdown."""
    app = create_app(sessions=sessions, store=store)

    async with app.router.lifespan_context(app):
        assert store.redis is mock_redis
        assert await store.is_connected() is True

    assert store.redis is mock_redis
    assert provider.closed is True
