"""Tests for the security settings endpoints."""

from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock, patch

import pytest
from fastapi import HTTPException
from fastapi.testclient import TestClient

from tests.helpers import make_organization

ORG_REPO_PATCH = "podflow_admin.db.repositories.OrganizationRepository"
AUDIT_LOG_PATCH = "podflow_admin.api.routes.security.create_audit_log"

URL = "/api/settings/security"

UPDATED_AT = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)
UPDATED_MS = int(UPDATED_AT.timestamp() * 1000)


def _org_repo(stored=None):
    repo = MagicMock()
    repo.get_settings_section = AsyncMock(return_value=stored if stored is not None else {})
    repo.update_settings_section = AsyncMock(return_value=make_organization())
    return repo


def _stored(version=3):
    return {
        "mfa_required": True,
        "version": version,
        "last_updated_at": UPDATED_AT.isoformat(),
        "password_policy": {"min_length": 12},
    }


class TestGetSecuritySettings:
    """Test suite for reading security settings."""

    def test_defaults_and_initial_etag(self, client):
        with patch(ORG_REPO_PATCH, return_value=_org_repo()):
            response = client.get(URL)

        assert response.status_code == 200
        assert response.headers["ETag"] == '"1-0"'
        assert response.headers["Cache-Control"] == "private, no-cache"
        data = response.json()
        assert data["version"] == 1
        assert data["mfa_required"] is False
        assert data["password_policy"]["min_length"] == 8
        assert data["session"]["idle_timeout_minutes"] == 480

    def test_stored_settings_and_etag(self, client):
        with patch(ORG_REPO_PATCH, return_value=_org_repo(_stored())):
            response = client.get(URL)

        assert response.headers["ETag"] == f'"3-{UPDATED_MS}"'
        data = response.json()
        assert data["mfa_required"] is True
        assert data["password_policy"]["min_length"] == 12
        assert data["password_policy"]["require_uppercase"] is True

    def test_missing_organization(self, client):
        repo = _org_repo()
        repo.get_settings_section = AsyncMock(return_value=None)

        with patch(ORG_REPO_PATCH, return_value=repo):
            response = client.get(URL)

        assert response.status_code == 404


class TestUpdateSecuritySettings:
    """Test suite for optimistic-concurrency updates."""

    def test_update_bumps_version(self, client, mock_user):
        repo = _org_repo(_stored())
        audit_log = AsyncMock()

        with patch(ORG_REPO_PATCH, return_value=repo), patch(AUDIT_LOG_PATCH, audit_log):
            response = client.put(
                URL,
                json={"mfa_required": False},
                headers={"If-Match": f'"3-{UPDATED_MS}"'},
            )

        assert response.status_code == 200
        data = response.json()
        assert data["version"] == 4
        assert data["mfa_required"] is False
        assert data["password_policy"]["min_length"] == 12
        assert data["last_updated_by"] == str(mock_user.id)
        assert response.headers["ETag"].startswith('"4-')

        org_id, section, saved = repo.update_settings_section.await_args.args
        assert org_id == mock_user.organization_id
        assert section == "security"
        assert saved["version"] == 4

    def test_update_locks_the_organization_row(self, client, mock_user):
        repo = _org_repo(_stored())

        with patch(ORG_REPO_PATCH, return_value=repo), patch(AUDIT_LOG_PATCH, AsyncMock()):
            client.put(URL, json={"mfa_required": False}, headers={"If-Match": '"3-0"'})

        repo.get_settings_section.assert_awaited_once_with(
            mock_user.organization_id, "security", for_update=True
        )

    def test_read_does_not_lock(self, client, mock_user):
        repo = _org_repo(_stored())

        with patch(ORG_REPO_PATCH, return_value=repo):
            client.get(URL)

        repo.get_settings_section.assert_awaited_once_with(
            mock_user.organization_id, "security", for_update=False
        )

    def test_update_is_audited_with_before_and_after(self, client):
        audit_log = AsyncMock()

        with (
            patch(ORG_REPO_PATCH, return_value=_org_repo(_stored())),
            patch(AUDIT_LOG_PATCH, audit_log),
        ):
            client.put(URL, json={"mfa_required": False})

        kwargs = audit_log.await_args.kwargs
        assert audit_log.await_args.args[1].value == "SECURITY_SETTINGS_UPDATED"
        assert kwargs["severity"].value == "HIGH"
        assert kwargs["changes"]["before"]["mfa_required"] is True
        assert kwargs["changes"]["after"]["mfa_required"] is False
        assert kwargs["details"]["sections"] == ["mfa_required"]

    def test_stale_if_match_conflicts(self, client):
        repo = _org_repo(_stored(version=3))

        with patch(ORG_REPO_PATCH, return_value=repo), patch(AUDIT_LOG_PATCH, AsyncMock()):
            response = client.put(URL, json={"mfa_required": False}, headers={"If-Match": '"2-0"'})

        assert response.status_code == 409
        body = response.json()
        assert body["current_version"] == 3
        assert body["expected_version"] == 2
        assert response.headers["ETag"] == f'"3-{UPDATED_MS}"'
        repo.update_settings_section.assert_not_awaited()

    def test_weak_etag_accepted(self, client):
        with (
            patch(ORG_REPO_PATCH, return_value=_org_repo(_stored(version=3))),
            patch(AUDIT_LOG_PATCH, AsyncMock()),
        ):
            response = client.put(URL, json={"mfa_required": False}, headers={"If-Match": 'W/"3-0"'})

        assert response.status_code == 200

    def test_stale_body_version_conflicts(self, client):
        """Without If-Match, a body version above 1 is checked too."""
        with (
            patch(ORG_REPO_PATCH, return_value=_org_repo(_stored(version=5))),
            patch(AUDIT_LOG_PATCH, AsyncMock()),
        ):
            response = client.put(URL, json={"mfa_required": False, "version": 4})

        assert response.status_code == 409
        assert response.json()["expected_version"] == 4

    def test_unversioned_update_always_applies(self, client):
        with (
            patch(ORG_REPO_PATCH, return_value=_org_repo(_stored(version=5))),
            patch(AUDIT_LOG_PATCH, AsyncMock()),
        ):
            response = client.put(URL, json={"mfa_required": False, "version": 1})

        assert response.status_code == 200
        assert response.json()["version"] == 6

    def test_invalid_cidr(self, client):
        repo = _org_repo()
        payload = {
            "ip_restrictions": {"enabled": True, "allowlist": ["10.0.0.0/8", "10.0.0.0/33"]}
        }

        with patch(ORG_REPO_PATCH, return_value=repo):
            response = client.put(URL, json=payload)

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid CIDR notation: 10.0.0.0/33"
        repo.update_settings_section.assert_not_awaited()

    def test_invalid_if_match(self, client):
        with patch(ORG_REPO_PATCH, return_value=_org_repo()):
            response = client.put(URL, json={}, headers={"If-Match": "garbage"})

        assert response.status_code == 400

    def test_out_of_range_policy_rejected(self, client):
        response = client.put(URL, json={"password_policy": {"min_length": 4}})
        assert response.status_code == 422

    def test_failed_save_is_audited(self, app_with_mocks, audit_service):
        """A failure inside the update is logged through the audit pipeline and answered 500."""
        repo = _org_repo(_stored())
        repo.update_settings_section = AsyncMock(side_effect=RuntimeError("database went away"))
        client = TestClient(app_with_mocks, raise_server_exceptions=False)

        with patch(ORG_REPO_PATCH, return_value=repo), patch(AUDIT_LOG_PATCH, AsyncMock()):
            response = client.put(URL, json={"mfa_required": False})

        assert response.status_code == 500
        failures = [e for e in audit_service.buffer if not e.success]
        assert failures[0].event_type.value == "SECURITY_SETTINGS_UPDATED"
        assert failures[0].error_message == "database went away"


class TestETagHelpers:
    """ETag formatting and If-Match parsing."""

    def test_make_etag(self):
        from podflow_admin.api.routes.security import make_etag
        from podflow_admin.core.types import SecuritySettings

        settings = SecuritySettings(version=7, last_updated_at=UPDATED_AT)
        assert make_etag(settings) == f'"7-{UPDATED_MS}"'

    @pytest.mark.parametrize(
        "header,expected",
        [('"3-1700000000000"', 3), ('W/"12-0"', 12), ("5", 5), (' "9-1" ', 9)],
    )
    def test_parse_if_match(self, header, expected):
        from podflow_admin.api.routes.security import parse_if_match

        assert parse_if_match(header) == expected

    def test_parse_if_match_rejects_garbage(self):
        from podflow_admin.api.routes.security import parse_if_match

        with pytest.raises(HTTPException) as exc_info:
            parse_if_match('"abc-1"')
        assert exc_info.value.status_code == 400
