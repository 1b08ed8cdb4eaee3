"""API test fixtures: ASGI client with the database and orchestrator overridden.

Domain operations are patched per test at the router module, so requests
run the real routing, validation and serialization without a database.
"""

from __future__ import annotations

from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

from app.core.database import get_db
from app.main import app
from app.services.pipeline.orchestrator import get_orchestrator

from tests.helpers.mock_factories import make_mock_db


@pytest.fixture
def api_db():
    return make_mock_db()


@pytest.fixture
def orchestrator():
    mock = MagicMock()
    mock.run_ingest_pipeline = AsyncMock()
    mock.run_ingest_pipeline_async = AsyncMock()
    return mock


@pytest_asyncio.fixture
async def api_client(api_db, orchestrator):
    """HTTP client against the app with get_db/get_orchestrator overridden."""

    async def override_get_db():
        yield api_db

    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator

    async with AsyncClient(
        transport=ASGITransport(app=app),
        base_url="http://test",
    ) as client:
        yield client

    app.dependency_overrides.clear()
