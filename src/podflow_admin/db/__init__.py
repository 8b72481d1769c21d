"""Database layer for organization settings and the audit trail."""

from .models import (
    APIKey,
    AuditLog,
    Backup,
    BackupSchedule,
    Base,
    BillingSettings,
    Organization,
    PreBillFlag,
    User,
    Webhook,
)
from .repositories import (
    APIKeyRepository,
    AuditLogRepository,
    BackupRepository,
    BackupScheduleRepository,
    BillingSettingsRepository,
    OrganizationRepository,
    PreBillFlagRepository,
    UserRepository,
    WebhookRepository,
)

__all__ = [
    "Base",
    "User",
    "Organization",
    "APIKey",
    "Webhook",
    "Backup",
    "BackupSchedule",
    "BillingSettings",
    "PreBillFlag",
    "AuditLog",
    "UserRepository",
    "OrganizationRepository",
    "APIKeyRepository",
    "WebhookRepository",
    "BackupRepository",
    "BackupScheduleRepository",
    "BillingSettingsRepository",
    "PreBillFlagRepository",
    "AuditLogRepository",
]
