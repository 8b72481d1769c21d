"""Tests for the email and notification settings endpoints."""

from unittest.mock import AsyncMock, MagicMock, patch

from tests.helpers import make_organization

ORG_REPO_PATCH = "podflow_admin.db.repositories.OrganizationRepository"


def _org_repo(stored=None, exists=True):
    repo = MagicMock()
    repo.get_settings_section = AsyncMock(return_value=(stored or {}) if exists else None)
    repo.update_settings_section = AsyncMock(
        return_value=make_organization() if exists else None
    )
    return repo


class TestEmailSettings:
    """Test suite for /api/organization/email-settings."""

    def test_defaults_when_nothing_stored(self, client):
        with patch(ORG_REPO_PATCH, return_value=_org_repo()):
            response = client.get("/api/organization/email-settings")

        assert response.status_code == 200
        settings = response.json()["settings"]
        assert settings["enabled"] is True
        assert settings["daily_limit"] == 100
        assert settings["digest_time"] == "09:00"
        assert settings["recipient_matrix"]["payment_reminders"] == ["admin", "client"]

    def test_stored_values_merge_over_defaults(self, client):
        """Partially stored maps keep the default entries they omit."""
        stored = {"daily_limit": 250, "notifications": {"report_ready": False}}

        with patch(ORG_REPO_PATCH, return_value=_org_repo(stored)):
            response = client.get("/api/organization/email-settings")

        settings = response.json()["settings"]
        assert settings["daily_limit"] == 250
        assert settings["notifications"]["report_ready"] is False
        assert settings["notifications"]["user_invitations"] is True

    def test_missing_organization(self, client):
        with patch(ORG_REPO_PATCH, return_value=_org_repo(exists=False)):
            response = client.get("/api/organization/email-settings")

        assert response.status_code == 404

    def test_update_saves_section(self, client, mock_user, audit_service):
        repo = _org_repo()
        payload = {
            "settings": {
                "from_name": "Acme Sales",
                "from_email": "sales@acme.example",
                "daily_limit": 500,
            }
        }

        with patch(ORG_REPO_PATCH, return_value=repo):
            response = client.put("/api/organization/email-settings", json=payload)

        assert response.status_code == 200
        assert response.json()["settings"]["from_email"] == "sales@acme.example"

        org_id, section, value = repo.update_settings_section.await_args.args
        assert org_id == mock_user.organization_id
        assert section == "email"
        assert value["daily_limit"] == 500

        changed = [e for e in audit_service.buffer if e.event_type.value == "SETTINGS_CHANGED"]
        assert changed[0].entity_id == "email"

    def test_update_rejects_unknown_role(self, client):
        payload = {"settings": {"recipient_matrix": {"report_ready": ["admin", "janitor"]}}}

        with patch(ORG_REPO_PATCH, return_value=_org_repo()):
            response = client.put("/api/organization/email-settings", json=payload)

        assert response.status_code == 422

    def test_update_rejects_bad_address(self, client):
        payload = {"settings": {"from_email": "not-an-address"}}

        with patch(ORG_REPO_PATCH, return_value=_org_repo()):
            response = client.put("/api/organization/email-settings", json=payload)

        assert response.status_code == 422

    def test_update_missing_organization(self, client):
        with patch(ORG_REPO_PATCH, return_value=_org_repo(exists=False)):
            response = client.put("/api/organization/email-settings", json={"settings": {}})

        assert response.status_code == 404


class TestNotificationSettings:
    """Test suite for /api/settings/notifications."""

    def test_default_event_catalogue(self, client):
        with patch(ORG_REPO_PATCH, return_value=_org_repo()):
            response = client.get("/api/settings/notifications")

        assert response.status_code == 200
        data = response.json()
        assert data["channels"]["email"]["enabled"] is True
        assert data["channels"]["slack"]["enabled"] is False
        backup_failed = data["events"]["backup_failed"]
        assert backup_failed["mandatory"] is True
        assert backup_failed["severity"] == "urgent"
        assert data["quiet_hours"] is None

    def test_update_with_quiet_hours(self, client):
        repo = _org_repo()
        payload = {
            "enabled": True,
            "quiet_hours": {"start": "22:00", "end": "07:00", "timezone": "Europe/London"},
        }

        with patch(ORG_REPO_PATCH, return_value=repo):
            response = client.put("/api/settings/notifications", json=payload)

        assert response.status_code == 200
        assert response.json()["quiet_hours"]["timezone"] == "Europe/London"
        _, section, value = repo.update_settings_section.await_args.args
        assert section == "notifications"
        assert "backup_failed" in value["events"]

    def test_update_rejects_unknown_timezone(self, client):
        payload = {"quiet_hours": {"start": "22:00", "end": "07:00", "timezone": "Mars/Base"}}

        with patch(ORG_REPO_PATCH, return_value=_org_repo()):
            response = client.put("/api/settings/notifications", json=payload)

        assert response.status_code == 422

    def test_update_rejects_bad_time(self, client):
        payload = {"quiet_hours": {"start": "24:00", "end": "07:00"}}

        with patch(ORG_REPO_PATCH, return_value=_org_repo()):
            response = client.put("/api/settings/notifications", json=payload)

        assert response.status_code == 422
