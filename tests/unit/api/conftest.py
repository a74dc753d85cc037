"""Fixtures for API unit tests: in-memory pipeline, app per test, AsyncClient."""

import pytest
from httpx import ASGITransport, AsyncClient

from audit_stream.config.settings import AppSettings
from audit_stream.core.container import build_in_memory_pipeline
from audit_stream.main import create_app


@pytest.fixture
def stack():
    return build_in_memory_pipeline(AppSettings(_env_file=None))


@pytest.fixture
async def app(stack):
    application = create_app(pipeline=stack.pipeline)
    yield application
    application.dependency_overrides.clear()
    await stack.pipeline.shutdown()


@pytest.fixture
async def async_client(app):
    """Async HTTP client for testing; lifespan is not run, the pipeline is preset on app.state."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client


@pytest.fixture
def connect_body():
    return {"host": "localhost", "port": 5432, "database": "school", "user": "app", "password": "pw"}
