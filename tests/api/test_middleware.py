"""Tests for API middleware."""

from unittest.mock import AsyncMock, patch

import pytest

from tests.helpers import make_pre_bill_flag

FLAG_REPO_PATCH = "podflow_admin.db.repositories.PreBillFlagRepository"


class TestRateLimiting:
    """Test rate limiting middleware."""

    def test_requests_are_allowed(self, client, mock_redis):
        """Requests under the limit carry the rate limit headers."""
        response = client.get("/api/user/preferences")

        assert response.status_code == 200
        assert response.headers["X-RateLimit-Limit"] == "100"
        assert response.headers["X-RateLimit-Remaining"] == "99"
        mock_redis.pipeline.assert_called()

    def test_limit_exceeded(self, client, mock_redis):
        """At the limit the request is rejected with 429 and Retry-After."""
        mock_redis.pipeline.return_value.execute = AsyncMock(return_value=[0, 100, 1, True])

        response = client.get("/api/user/preferences")

        assert response.status_code == 429
        body = response.json()
        assert body["detail"] == "Too many requests. Please try again later."
        assert "retry_after" in body
        assert response.headers["X-RateLimit-Remaining"] == "0"
        assert int(response.headers["Retry-After"]) > 0

    def test_authenticated_requests_keyed_by_user(self, client, mock_redis, mock_user, auth_headers):
        client.get("/api/user/preferences", headers=auth_headers)

        pipe = mock_redis.pipeline.return_value
        key = pipe.zremrangebyscore.call_args.args[0]
        assert key == f"ratelimit:user:{mock_user.id}"

    def test_anonymous_requests_keyed_by_ip(self, client, mock_redis):
        client.get("/api/user/preferences", headers={"X-Forwarded-For": "203.0.113.9, 10.0.0.1"})

        pipe = mock_redis.pipeline.return_value
        assert pipe.zremrangebyscore.call_args.args[0] == "ratelimit:ip:203.0.113.9"

    def test_redis_failure_allows_request(self, client, mock_redis):
        mock_redis.pipeline.return_value.execute = AsyncMock(side_effect=ConnectionError("down"))

        assert client.get("/api/user/preferences").status_code == 200

    def test_health_is_exempt(self, client, mock_redis):
        response = client.get("/health/live")

        assert response.status_code == 200
        assert "X-RateLimit-Limit" not in response.headers
        mock_redis.pipeline.assert_not_called()


class TestAuditMiddleware:
    """Mutating API requests leave an audit entry."""

    def test_mutation_is_audited(self, client, mock_user, auth_headers, audit_service):
        repo = AsyncMock()
        repo.flag = AsyncMock(return_value=make_pre_bill_flag())

        with patch(FLAG_REPO_PATCH, return_value=repo):
            client.post(
                "/api/billing/pre-bill",
                json={"advertiser_id": "adv-42", "reason": "No terms"},
                headers=auth_headers,
            )

        requests = [e for e in audit_service.buffer if e.event_type.value == "API_REQUEST"]
        assert len(requests) == 1
        entry = requests[0]
        assert entry.action == "POST /api/billing/pre-bill"
        assert entry.details["status_code"] == 201
        assert entry.user_id == mock_user.id
        assert entry.organization_id == mock_user.organization_id
        assert entry.success is True

    def test_failed_flush_does_not_fail_the_request(self, client, auth_headers, audit_service):
        audit_service.buffer_size = 1
        audit_service._writer.side_effect = ConnectionError("database down")
        repo = AsyncMock()
        repo.flag = AsyncMock(return_value=make_pre_bill_flag())

        with patch(FLAG_REPO_PATCH, return_value=repo):
            response = client.post(
                "/api/billing/pre-bill",
                json={"advertiser_id": "adv-42", "reason": "No terms"},
                headers=auth_headers,
            )

        assert response.status_code == 201
        audit_service._writer.assert_awaited()
        assert audit_service.buffer[-1].action == "POST /api/billing/pre-bill"

    def test_reads_are_not_audited(self, client, audit_service):
        client.get("/api/user/preferences")
        assert audit_service.buffer == []

    def test_rejected_request_is_a_permission_violation(self, anonymous_client, audit_service):
        response = anonymous_client.post("/api/billing/pre-bill", json={})

        assert response.status_code == 401
        entry = audit_service.buffer[-1]
        assert entry.event_type.value == "PERMISSION_VIOLATION"
        assert entry.severity.value == "MEDIUM"
        assert entry.success is False
        assert entry.user_id is None

    def test_rate_limited_request_is_audited(self, client, mock_redis, audit_service):
        mock_redis.pipeline.return_value.execute = AsyncMock(return_value=[0, 500, 1, True])

        client.put("/api/billing/settings", json={})

        assert audit_service.buffer[-1].event_type.value == "API_RATE_LIMIT_EXCEEDED"

    @pytest.mark.parametrize(
        "status_code,event",
        [
            (200, "API_REQUEST"),
            (404, "API_REQUEST"),
            (401, "PERMISSION_VIOLATION"),
            (403, "PERMISSION_VIOLATION"),
            (429, "API_RATE_LIMIT_EXCEEDED"),
        ],
    )
    def test_classify_response(self, status_code, event):
        from podflow_admin.audit.middleware import classify_response

        event_type, _ = classify_response(status_code)
        assert event_type.value == event


class TestRequestLogging:
    """Test request logging middleware."""

    def test_response_time_header(self, client):
        response = client.get("/health/live")
        assert response.headers["X-Response-Time"].endswith("s")

    def test_error_requests_complete(self, client):
        response = client.get("/nonexistent-endpoint")
        assert response.status_code == 404


class TestMetrics:
    """Test Prometheus metrics."""

    def test_metrics_endpoint(self, client):
        client.get("/health/live")
        response = client.get("/metrics")

        assert response.status_code == 200
        assert "http_requests_total" in response.text
        assert "audit_buffer_size" in response.text

    @pytest.mark.parametrize(
        "path,expected",
        [
            ("/api/webhooks/3f2b8c1e-9a4d-4e5f-8b6a-1c2d3e4f5a6b/test", "/api/webhooks/{id}/test"),
            ("/api/backups/42", "/api/backups/{id}"),
            ("/api/billing/pre-bill/adv-42", "/api/billing/pre-bill/adv-42"),
            ("/health", "/health"),
        ],
    )
    def test_normalize_path(self, path, expected):
        from podflow_admin.api.middleware import normalize_path

        assert normalize_path(path) == expected


class TestCORSMiddleware:
    """Test CORS middleware configuration."""

    def test_preflight_exposes_etag(self, client):
        response = client.options(
            "/api/settings/security",
            headers={
                "Origin": "http://localhost:3000",
                "Access-Control-Request-Method": "PUT",
            },
        )

        assert response.status_code == 200
        assert response.headers["access-control-allow-origin"] == "http://localhost:3000"

    def test_simple_request_exposes_etag(self, client):
        response = client.get("/health/live", headers={"Origin": "http://localhost:3000"})
        assert "ETag" in response.headers["access-control-expose-headers"]


class TestErrorHandling:
    """Test error handling."""

    def test_405_for_wrong_method(self, client):
        assert client.delete("/health/live").status_code == 405

    def test_422_for_validation_errors(self, client):
        response = client.post("/api/webhooks", json={"name": "x"})
        assert response.status_code == 422
