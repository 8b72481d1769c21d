"""API route handlers."""

from . import (
    api_keys,
    audit,
    auth,
    backups,
    billing,
    health,
    org_settings,
    preferences,
    security,
    webhooks,
    workflow,
)

__all__ = [
    "api_keys",
    "audit",
    "auth",
    "backups",
    "billing",
    "health",
    "org_settings",
    "preferences",
    "security",
    "webhooks",
    "workflow",
]
