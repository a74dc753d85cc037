"""Tests for GET /health: 200, correlation ID, actor, pipeline status."""

import pytest
from httpx import AsyncClient


@pytest.mark.asyncio
async def test_health_returns_200(async_client: AsyncClient):
    r = await async_client.get("/health")
    assert r.status_code == 200
    data = r.json()
    assert data["status"] == "ok"
    assert "correlation_id" in data
    assert data["pipeline"]["configured"] is False
    assert data["pipeline"]["listening"] is False


@pytest.mark.asyncio
async def test_health_reports_listening_after_connect(async_client: AsyncClient, connect_body):
    await async_client.post("/agent/connect", json=connect_body)
    data = (await async_client.get("/health")).json()
    assert data["pipeline"]["configured"] is True
    assert data["pipeline"]["listening"] is True
    assert data["pipeline"]["store"]["host"] == "localhost"
    assert "password" not in data["pipeline"]["store"]


@pytest.mark.asyncio
async def test_health_echoes_request_correlation_id(async_client: AsyncClient):
    r = await async_client.get("/health", headers={"X-Correlation-ID": "corr-health-1"})
    assert r.json()["correlation_id"] == "corr-health-1"
