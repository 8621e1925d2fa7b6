"""
Pytest configuration for integration tests.

Runs the FastAPI app in-process with its store dependencies overridden by
the shared fixtures from tests/conftest.py.
"""

import pytest
from fastapi.testclient import TestClient

from secure_credentials.api.dependencies import get_coordinator
from secure_credentials.core.redis_client import get_redis
from secure_credentials.main import app
from secure_credentials.services.auth_coordinator import AuthCoordinator


def pytest_configure(config):
    """Configure pytest with custom markers."""
    config.addinivalue_line(
        "markers", "integration: mark test as integration test exercising the HTTP API"
    )


@pytest.fixture
def client(db_session, redis, clock):
    """TestClient wired to the in-memory stores and the test clock"""
    app.dependency_overrides[get_coordinator] = lambda: AuthCoordinator(db_session, redis, clock)
    app.dependency_overrides[get_redis] = lambda: redis
    yield TestClient(app)
    app.dependency_overrides.clear()


@pytest.fixture
def api_v1() -> str:
    return "/v1"
