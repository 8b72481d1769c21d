"""Shared test helpers.

Stand-ins for ORM rows. Routes only read attributes, so plain namespaces
are enough and keep the tests independent of a database.
"""

from datetime import datetime, timezone
from types import SimpleNamespace
from typing import Any
from uuid import UUID, uuid4

NOW = datetime(2026, 10, 14, 12, 0, tzinfo=timezone.utc)


def make_user(**overrides: Any) -> SimpleNamespace:
    """An active admin inside an organization."""
    defaults: dict[str, Any] = {
        "id": uuid4(),
        "email": "admin@example.com",
        "name": "Org Admin",
        # bcrypt hash of "password123"
        "password_hash": "$2b$12$LQv3c1yqBWVHxkd0LHAkCOYz6TtxMQJqhN8/LewKyNiAYMyzJ/IvS",
        "role": "admin",
        "is_active": True,
        "organization_id": uuid4(),
        "preferences": {},
        "created_at": NOW,
        "updated_at": NOW,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def make_organization(settings: dict[str, Any] | None = None, **overrides: Any) -> SimpleNamespace:
    defaults: dict[str, Any] = {
        "id": uuid4(),
        "name": "Acme Podcasts",
        "slug": "acme",
        "settings": settings,
        "created_at": NOW,
        "updated_at": NOW,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def make_api_key(organization_id: UUID | None = None, **overrides: Any) -> SimpleNamespace:
    defaults: dict[str, Any] = {
        "id": uuid4(),
        "organization_id": organization_id or uuid4(),
        "name": "Reporting",
        "description": None,
        "prefix": "pk_live_abcd",
        "scopes": ["read:reports"],
        "revoked": False,
        "created_by": None,
        "created_at": NOW,
        "expires_at": None,
        "last_used_at": None,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def make_webhook(organization_id: UUID | None = None, **overrides: Any) -> SimpleNamespace:
    defaults: dict[str, Any] = {
        "id": uuid4(),
        "organization_id": organization_id or uuid4(),
        "name": "Campaign feed",
        "url": "https://hooks.example.com/podflow",
        "events": ["campaign.created"],
        "secret": "whsec_" + "ab" * 32,
        "is_active": True,
        "created_by": None,
        "created_at": NOW,
        "updated_at": NOW,
        "last_triggered_at": None,
        "last_failure_at": None,
        "failure_count": 0,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def make_backup(organization_id: UUID | None = None, **overrides: Any) -> SimpleNamespace:
    defaults: dict[str, Any] = {
        "id": uuid4(),
        "organization_id": organization_id or uuid4(),
        "name": "Manual Backup 2026-10-14 12:00",
        "description": None,
        "type": "manual",
        "status": "completed",
        "entities": ["organization", "billing_settings"],
        "created_by": None,
        "created_at": NOW,
        "completed_at": NOW,
        "size": 512,
        "compressed_size": 256,
        "entity_count": 2,
        "location": None,
        "error": None,
        "progress": 100,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def make_pre_bill_flag(**overrides: Any) -> SimpleNamespace:
    defaults: dict[str, Any] = {
        "id": uuid4(),
        "advertiser_id": "adv-42",
        "advertiser_name": "Bright Mattress Co",
        "reason": "New advertiser without payment terms",
        "notes": None,
        "flagged_by": None,
        "flagged_at": NOW,
        "is_active": True,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)


def make_audit_log(**overrides: Any) -> SimpleNamespace:
    defaults: dict[str, Any] = {
        "id": uuid4(),
        "event_type": "SETTINGS_CHANGED",
        "severity": "MEDIUM",
        "user_id": None,
        "organization_id": None,
        "entity_type": "organization_settings",
        "entity_id": "email",
        "action": "Email settings updated",
        "details": {"section": "email"},
        "request_metadata": None,
        "timestamp": NOW,
        "success": True,
        "error_message": None,
        "user": None,
    }
    defaults.update(overrides)
    return SimpleNamespace(**defaults)
