"""Settings documents, backups, webhook delivery and workflow simulation."""

from .backups import BackupError, BackupManager, next_run
from .types import (
    BackupScheduleData,
    BillingSettingsData,
    EmailSettings,
    NotificationSettings,
    SecuritySettings,
    WorkflowSettings,
    merge_settings,
)

__all__ = [
    "BackupError",
    "BackupManager",
    "next_run",
    "BackupScheduleData",
    "BillingSettingsData",
    "EmailSettings",
    "NotificationSettings",
    "SecuritySettings",
    "WorkflowSettings",
    "merge_settings",
]
