"""Tests for POST /agent/connect and GET /diagnostics/schema: success, failure mapping, validation."""

from unittest.mock import AsyncMock, MagicMock

import pytest
from httpx import AsyncClient

from audit_stream.api.dependencies import get_pipeline
from audit_stream.application.exceptions import ConnectFailure, SetupFailure


def _failing_pipeline(exc):
    pipeline = MagicMock()
    pipeline.configure = AsyncMock(side_effect=exc)
    return pipeline


@pytest.mark.asyncio
async def test_connect_installs_and_listens(async_client: AsyncClient, connect_body, stack):
    r = await async_client.post("/agent/connect", json=connect_body)
    assert r.status_code == 200
    assert r.json() == {"message": "Connected and triggers installed"}
    assert stack.pipeline.listener.is_subscribed
    assert stack.store.hooked_entities() == ["Course", "User"]


@pytest.mark.asyncio
async def test_connect_failure_is_503(app, async_client: AsyncClient, connect_body):
    app.dependency_overrides[get_pipeline] = lambda: _failing_pipeline(ConnectFailure("refused"))
    r = await async_client.post("/agent/connect", json=connect_body)
    assert r.status_code == 503
    assert r.json()["detail"] == "refused"


@pytest.mark.asyncio
async def test_setup_failure_is_500_with_step(app, async_client: AsyncClient, connect_body):
    app.dependency_overrides[get_pipeline] = lambda: _failing_pipeline(
        SetupFailure("permission denied", step="install_capture_hooks")
    )
    r = await async_client.post("/agent/connect", json=connect_body)
    assert r.status_code == 500
    assert r.json()["step"] == "install_capture_hooks"
    assert "permission denied" in r.json()["detail"]


@pytest.mark.asyncio
async def test_connect_body_validated(async_client: AsyncClient):
    r = await async_client.post("/agent/connect", json={"port": 5432})
    assert r.status_code == 422


@pytest.mark.asyncio
async def test_schema_diagnostics_requires_store(async_client: AsyncClient):
    r = await async_client.get("/diagnostics/schema")
    assert r.status_code == 409


@pytest.mark.asyncio
async def test_schema_diagnostics_after_connect(async_client: AsyncClient, connect_body):
    await async_client.post("/agent/connect", json=connect_body)
    r = await async_client.get("/diagnostics/schema")
    assert r.status_code == 200
    assert set(r.json()["hooked_tables"]) == {"User", "Course"}
