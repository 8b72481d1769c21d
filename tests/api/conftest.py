"""Fixtures for API tests."""

from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi.testclient import TestClient

from tests.helpers import make_user


def _clear_http_collectors() -> None:
    """Drop the request metrics so each app can register them again."""
    from prometheus_client import REGISTRY

    collectors = {
        collector
        for name, collector in list(REGISTRY._names_to_collectors.items())
        if name.startswith("http_")
    }
    for collector in collectors:
        try:
            REGISTRY.unregister(collector)
        except KeyError:
            pass


@pytest.fixture(autouse=True)
def clear_prometheus_registry():
    """Clear Prometheus registry before each test to avoid duplication errors."""
    _clear_http_collectors()
    yield


@pytest.fixture(autouse=True)
def audit_service():
    """Audit service whose writer is a mock; entries stay inspectable in the buffer."""
    from podflow_admin.audit.service import AuditService

    service = AuditService(writer=AsyncMock())
    with patch("podflow_admin.audit.service._audit_service", service):
        yield service


@pytest.fixture
def mock_db_session():
    """Mock database session."""
    session = AsyncMock()
    session.add = MagicMock()
    session.execute = AsyncMock()
    session.flush = AsyncMock()
    session.commit = AsyncMock()
    session.rollback = AsyncMock()
    return session


@pytest.fixture
def mock_redis():
    """Mock Redis client."""
    redis = AsyncMock()
    redis.ping = AsyncMock(return_value=True)
    redis.get = AsyncMock(return_value=None)
    redis.set = AsyncMock(return_value=True)
    redis.delete = AsyncMock(return_value=1)
    redis.pipeline = MagicMock()
    redis.pipeline.return_value.execute = AsyncMock(return_value=[0, 0, 1, True])
    return redis


@pytest.fixture
def mock_user():
    """Admin user inside an organization."""
    return make_user()


@pytest.fixture
def auth_headers(mock_user):
    """Bearer token for the mock user."""
    from podflow_admin.api.config import get_settings
    from podflow_admin.api.routes.auth import create_access_token

    token = create_access_token(
        mock_user.id, get_settings(), organization_id=mock_user.organization_id
    )
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def base_app(mock_db_session, mock_redis):
    """App with the database session and Redis replaced by mocks, but real auth."""
    with (
        patch("podflow_admin.api.deps._db_session_factory") as mock_factory,
        patch("podflow_admin.api.deps._redis_client", mock_redis),
    ):
        mock_factory.return_value.__aenter__.return_value = mock_db_session

        from podflow_admin.api.deps import get_db_session
        from podflow_admin.api.main import create_app

        app = create_app()

        async def override_db_session():
            yield mock_db_session

        app.dependency_overrides[get_db_session] = override_db_session
        yield app
        app.dependency_overrides.clear()


@pytest.fixture
def app_with_mocks(base_app, mock_user):
    """App where every request is made as ``mock_user``."""
    from podflow_admin.api.routes.auth import get_current_user

    base_app.dependency_overrides[get_current_user] = lambda: mock_user
    return base_app


@pytest.fixture
def client(app_with_mocks):
    """Test client authenticated as the mock admin."""
    return TestClient(app_with_mocks)


@pytest.fixture
def anonymous_client(base_app):
    """Test client without any authentication override."""
    return TestClient(base_app)


@pytest.fixture
def client_as(base_app):
    """Build a client authenticated as a given user."""
    from podflow_admin.api.routes.auth import get_current_user

    def _client(user):
        base_app.dependency_overrides[get_current_user] = lambda: user
        return TestClient(base_app)

    return _client
