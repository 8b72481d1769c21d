"""Tests for health check endpoints."""

from unittest.mock import AsyncMock, patch


class TestHealthEndpoints:
    """Test suite for health check endpoints."""

    def test_liveness_probe(self, anonymous_client):
        """Test liveness probe returns alive status."""
        response = anonymous_client.get("/health/live")

        assert response.status_code == 200
        assert response.json() == {"status": "alive"}

    def test_health_reports_components(self, anonymous_client):
        """Database and Redis answer; the audit timer is not started in tests."""
        response = anonymous_client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["checks"]["database"]["status"] == "healthy"
        assert data["checks"]["redis"]["status"] == "healthy"
        assert data["checks"]["audit"]["status"] == "degraded"
        assert data["checks"]["audit"]["message"] == "0 entries buffered"
        assert data["status"] == "degraded"
        assert data["version"] == "0.1.0"

    def test_health_unhealthy_without_database(self, anonymous_client, mock_db_session):
        mock_db_session.execute = AsyncMock(side_effect=ConnectionError("connection refused"))

        data = anonymous_client.get("/health").json()

        assert data["status"] == "unhealthy"
        assert data["checks"]["database"]["message"] == "connection refused"

    def test_redis_failure_only_degrades(self, anonymous_client, mock_redis):
        mock_redis.ping = AsyncMock(side_effect=ConnectionError("redis down"))

        data = anonymous_client.get("/health").json()

        assert data["checks"]["redis"]["status"] == "unhealthy"
        assert data["status"] == "degraded"

    def test_readiness_probe(self, anonymous_client):
        response = anonymous_client.get("/health/ready")

        assert response.status_code == 200
        assert response.json() == {"status": "ready"}

    def test_readiness_without_database(self, anonymous_client, mock_db_session):
        mock_db_session.execute = AsyncMock(side_effect=ConnectionError("connection refused"))

        response = anonymous_client.get("/health/ready")

        assert response.status_code == 503
        assert response.json()["reason"] == "database_unavailable"

    def test_readiness_ignores_redis(self, anonymous_client, mock_redis):
        mock_redis.ping = AsyncMock(side_effect=ConnectionError("redis down"))

        assert anonymous_client.get("/health/ready").status_code == 200

    def test_health_when_audit_timer_running(self, anonymous_client, audit_service):
        with patch.object(type(audit_service), "is_running", True):
            data = anonymous_client.get("/health").json()

        assert data["checks"]["audit"]["status"] == "healthy"
        assert data["status"] == "healthy"
