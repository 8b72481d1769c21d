"""Tests for sidebar preference endpoints."""

from unittest.mock import AsyncMock, MagicMock, patch

from tests.helpers import make_user

USER_REPO_PATCH = "podflow_admin.db.repositories.UserRepository"

URL = "/api/user/preferences"

SIDEBAR = [
    {
        "id": "campaigns",
        "label": "Campaigns",
        "order": 0,
        "children": [{"id": "campaigns.pipeline", "label": "Pipeline", "order": 0}],
    },
    {"id": "settings", "label": "Settings", "order": 1, "visible": False},
]


class TestPreferences:
    """Test suite for /api/user/preferences."""

    def test_empty_when_never_customized(self, client):
        response = client.get(URL)

        assert response.status_code == 200
        assert response.json() == {"sidebar_customization": [], "sidebar_customization_version": 1}

    def test_returns_stored_layout(self, client_as):
        user = make_user(
            role="sales",
            preferences={"sidebar_customization": SIDEBAR, "sidebar_customization_version": 2},
        )

        data = client_as(user).get(URL).json()

        assert data["sidebar_customization_version"] == 2
        assert data["sidebar_customization"][0]["children"][0]["id"] == "campaigns.pipeline"
        assert data["sidebar_customization"][1]["visible"] is False

    def test_save_layout(self, client, mock_user):
        repo = MagicMock()
        repo.update_preferences = AsyncMock(return_value={})

        with patch(USER_REPO_PATCH, return_value=repo):
            response = client.put(URL, json={"sidebar_customization": SIDEBAR})

        assert response.status_code == 200
        user, updates = repo.update_preferences.await_args.args
        assert user is mock_user
        assert [item["id"] for item in updates["sidebar_customization"]] == [
            "campaigns",
            "settings",
        ]
        assert updates["sidebar_customization_version"] == 1

    def test_duplicate_ids_rejected(self, client):
        layout = [
            {"id": "reports", "label": "Reports"},
            {"id": "admin", "label": "Admin", "children": [{"id": "reports", "label": "Dup"}]},
        ]
        repo = MagicMock()
        repo.update_preferences = AsyncMock()

        with patch(USER_REPO_PATCH, return_value=repo):
            response = client.put(URL, json={"sidebar_customization": layout})

        assert response.status_code == 400
        assert response.json()["detail"] == "Duplicate menu item ids: reports"
        repo.update_preferences.assert_not_awaited()

    def test_any_role_may_customize(self, client_as):
        repo = MagicMock()
        repo.update_preferences = AsyncMock(return_value={})

        with patch(USER_REPO_PATCH, return_value=repo):
            response = client_as(make_user(role="talent")).put(
                URL, json={"sidebar_customization": []}
            )

        assert response.status_code == 200

    def test_requires_organization(self, client_as):
        response = client_as(make_user(organization_id=None)).get(URL)
        assert response.status_code == 400
