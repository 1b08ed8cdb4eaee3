"""Root conftest — shared fixtures for all backend tests.

Provides:
- A fully mocked AsyncSession (no database needed)
- Settings factory for config-dependent code
- Autouse reset of module-level LLM caches between tests
"""

from __future__ import annotations

import pytest

from app.config.settings import Settings
from tests.helpers.mock_factories import make_mock_db


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line("markers", "api: API tests through the ASGI app with mocked services")


@pytest.fixture
def mock_db():
    """AsyncSession stand-in: execute/commit/flush/refresh are AsyncMocks."""
    return make_mock_db()


@pytest.fixture
def make_settings():
    """Build Settings without reading the developer's .env file."""

    def _make(**overrides: object) -> Settings:
        return Settings(_env_file=None, **overrides)  # type: ignore[call-arg]

    return _make


@pytest.fixture(autouse=True)
def _clear_llm_health_cache():
    from app.services.llm.health import clear_health_cache

    clear_health_cache()
    yield
    clear_health_cache()
