# tests/test_health.py — Dependency health report
import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_all_up(client: AsyncClient):
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "healthy"
    assert set(data["services"]) == {"postgresql", "redis", "identity_provider"}
    for service in data["services"].values():
        assert service["status"] == "healthy"
        assert service["response_time_ms"] >= 0
    assert "timestamp" in data


@pytest.mark.asyncio
async def test_health_cache_down(client: AsyncClient, fake_redis):
    fake_redis.down = True
    resp = await client.get("/api/health")
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "unhealthy"
    assert data["services"]["redis"]["status"] == "unhealthy"
    assert data["services"]["postgresql"]["status"] == "healthy"
    assert data["services"]["identity_provider"]["status"] == "healthy"


@pytest.mark.asyncio
async def test_health_identity_provider_down(client: AsyncClient, idp):
    idp.head_status = 503
    resp = await client.get("/api/health")
    data = resp.json()
    assert data["status"] == "unhealthy"
    assert data["services"]["identity_provider"]["status"] == "unhealthy"
    assert data["services"]["redis"]["status"] == "healthy"


@pytest.mark.asyncio
async def test_health_needs_no_session(client: AsyncClient):
    resp = await client.get("/api/health")
    assert resp.status_code != 401
