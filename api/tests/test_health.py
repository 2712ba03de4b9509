"""Tests for health and readiness endpoints.

GET /api/health is a liveness probe and always answers 200.
GET /api/ready answers 200 only once a distribution store is attached to the app.
"""

import re
from datetime import datetime

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.adapters.distribution_store import InMemoryDistributionStore
from app.main import app


@pytest_asyncio.fixture
async def client():
    """ASGI client with a fresh in-memory store."""
    app.state.distribution_store = InMemoryDistributionStore()
    transport = ASGITransport(app=app, raise_app_exceptions=False)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest.mark.asyncio
async def test_root_redirects_to_docs(client: AsyncClient):
    response = await client.get("/")
    assert response.status_code in (302, 307)
    assert response.headers["location"] == "/docs"


@pytest.mark.asyncio
async def test_docs_returns_200(client: AsyncClient):
    """GET /docs returns 200 (OpenAPI UI reachable)."""
    response = await client.get("/docs", follow_redirects=True)
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_health_returns_200(client: AsyncClient):
    response = await client.get("/api/health")
    assert response.status_code == 200
    assert "application/json" in response.headers.get("content-type", "")


@pytest.mark.asyncio
async def test_health_response_schema(client: AsyncClient):
    """Response has exactly the documented keys."""
    response = await client.get("/api/health")
    data = response.json()
    assert set(data.keys()) == {"status", "version", "timestamp", "started_at", "uptime_seconds", "uptime_human"}
    assert data["status"] == "ok"
    assert re.fullmatch(r"\d+\.\d+\.\d+", data["version"])
    assert isinstance(data["uptime_seconds"], int) and data["uptime_seconds"] >= 0
    assert isinstance(data["uptime_human"], str)


@pytest.mark.asyncio
async def test_health_timestamp_iso8601_utc(client: AsyncClient):
    data = (await client.get("/api/health")).json()
    for key in ("timestamp", "started_at"):
        ts = data[key]
        assert ts.endswith("Z"), f"{key} must be UTC"
        assert datetime.fromisoformat(ts.replace("Z", "+00:00")).tzinfo is not None


@pytest.mark.asyncio
async def test_ready_returns_200_with_store(client: AsyncClient):
    response = await client.get("/api/ready")
    assert response.status_code == 200
    assert response.json()["status"] == "ready"


@pytest.mark.asyncio
async def test_ready_returns_503_without_store(client: AsyncClient):
    app.state.distribution_store = None
    try:
        response = await client.get("/api/ready")
    finally:
        app.state.distribution_store = InMemoryDistributionStore()
    assert response.status_code == 503
    assert response.json() == {"detail": "not ready"}


@pytest.mark.asyncio
async def test_cors_allows_configured_origin(client: AsyncClient):
    response = await client.get("/api/health", headers={"Origin": "http://localhost:3000"})
    assert response.status_code == 200
    assert response.headers.get("access-control-allow-origin") == "http://localhost:3000"
