"""Settings documents for the administration areas.

Each model carries its own defaults, so ``Model()`` is the default document
and ``merge_settings(Model, stored)`` overlays stored values on them.
"""

import ipaddress
import re
from datetime import datetime
from enum import Enum
from typing import Any, Literal
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"

EMAIL_ROLES = ["admin", "sales", "producer", "talent", "client"]
USER_ROLES = ["master", "admin", "sales", "producer", "talent", "client"]
ADMIN_ROLES = ("admin", "master")

API_KEY_SCOPES = [
    "read:campaigns",
    "write:campaigns",
    "read:shows",
    "write:shows",
    "read:analytics",
    "read:reports",
    "write:reports",
    "admin:all",
]

WEBHOOK_EVENTS = [
    "campaign.created",
    "campaign.updated",
    "campaign.completed",
    "campaign.paused",
    "analytics.daily",
    "budget.alert",
    "integration.connected",
    "integration.error",
]

BACKUP_ENTITIES = [
    "organization",
    "users",
    "api_keys",
    "webhooks",
    "billing_settings",
    "pre_bill_flags",
    "backup_schedule",
]

PAYMENT_TERMS = ["Net 15", "Net 30", "Net 45", "Net 60", "Due on Receipt", "COD"]


class SettingsModel(BaseModel):
    """Base for stored settings documents; unknown keys are kept."""

    model_config = ConfigDict(extra="allow")


# Security settings


class SSOConfig(SettingsModel):
    issuer_url: str | None = None
    client_id: str | None = None
    client_secret: str | None = None
    metadata_url: str | None = None
    certificate: str | None = None
    callback_url: str | None = None
    allowed_domains: list[str] = Field(default_factory=list)


class SSOSettings(SettingsModel):
    enabled: bool = False
    provider: Literal["oidc", "saml", "google", "microsoft"] | None = None
    config: SSOConfig | None = None
    enforce_for_non_admins: bool = False


class PasswordPolicy(SettingsModel):
    min_length: int = Field(default=8, ge=6, le=128)
    require_uppercase: bool = True
    require_lowercase: bool = True
    require_numbers: bool = True
    require_symbols: bool = False
    expiry_days: int | None = Field(default=None, ge=0, le=365)
    history_count: int | None = Field(default=None, ge=0, le=24)
    max_attempts: int | None = Field(default=5, ge=3, le=10)
    lockout_duration_minutes: int | None = Field(default=30, ge=5, le=1440)


class SessionPolicy(SettingsModel):
    idle_timeout_minutes: int = Field(default=480, ge=5, le=10080)
    absolute_timeout_hours: int = Field(default=24, ge=1, le=720)
    refresh_rotation: Literal["rotate", "static"] = "static"
    max_concurrent_sessions: int | None = Field(default=None, ge=1, le=10)
    require_reauth_for_sensitive: bool = False


class IPRestrictions(SettingsModel):
    enabled: bool = False
    allowlist: list[str] = Field(default_factory=list)
    blocklist: list[str] = Field(default_factory=list)
    enforce_for_admins: bool = False


class ExportPolicy(SettingsModel):
    require_approval: bool = False
    allowed_roles: list[str] = Field(default_factory=lambda: ["admin", "master"])
    watermark_exports: bool = False
    max_records_per_export: int | None = Field(default=None, ge=100, le=1000000)
    audit_all_exports: bool = True


class APIKeyPolicy(SettingsModel):
    enabled: bool = True
    max_keys_per_user: int = Field(default=5, ge=1, le=20)
    require_expiry: bool = False
    default_expiry_days: int = Field(default=90, ge=1, le=365)
    allowed_scopes: list[str] = Field(default_factory=lambda: list(API_KEY_SCOPES))


class WebhookSecurity(SettingsModel):
    signing_enabled: bool = True
    signing_key_id: str | None = None
    rotate_after_days: int | None = Field(default=None, ge=1, le=365)
    verify_ssl: bool = True


class AuditSettings(SettingsModel):
    retention_days: int = Field(default=90, ge=7, le=2555)
    log_level: Literal["minimal", "standard", "detailed", "verbose"] = "standard"
    log_sensitive_actions: bool = True
    require_reason_for_deletion: bool = False


class CategoryExclusivity(SettingsModel):
    enforced: bool = False
    exclusivity_window_days: int | None = Field(default=None, ge=1, le=365)
    categories: list[str] = Field(default_factory=list)


def is_valid_cidr(value: str) -> bool:
    """True for IPv4 CIDR blocks such as ``10.0.0.0/8``."""
    if not re.fullmatch(r"(\d{1,3}\.){3}\d{1,3}/\d{1,2}", value):
        return False
    try:
        ipaddress.IPv4Network(value, strict=False)
    except ValueError:
        return False
    return True


class SecuritySettings(SettingsModel):
    """Organization security policy."""

    mfa_required: bool = False
    mfa_grace_period_days: int = Field(default=7, ge=0, le=30)
    sso: SSOSettings = Field(default_factory=SSOSettings)
    password_policy: PasswordPolicy = Field(default_factory=PasswordPolicy)
    session: SessionPolicy = Field(default_factory=SessionPolicy)
    ip_restrictions: IPRestrictions = Field(default_factory=IPRestrictions)
    export_policy: ExportPolicy = Field(default_factory=ExportPolicy)
    api_keys: APIKeyPolicy = Field(default_factory=APIKeyPolicy)
    webhook_security: WebhookSecurity = Field(default_factory=WebhookSecurity)
    audit_settings: AuditSettings = Field(default_factory=AuditSettings)
    category_exclusivity: CategoryExclusivity = Field(default_factory=CategoryExclusivity)
    version: int = 1
    last_updated_at: datetime | None = None
    last_updated_by: str | None = None


class SecuritySettingsUpdate(BaseModel):
    """Partial security settings update. Omitted sections are left as they are."""

    mfa_required: bool | None = None
    mfa_grace_period_days: int | None = Field(default=None, ge=0, le=30)
    sso: SSOSettings | None = None
    password_policy: PasswordPolicy | None = None
    session: SessionPolicy | None = None
    ip_restrictions: IPRestrictions | None = None
    export_policy: ExportPolicy | None = None
    api_keys: APIKeyPolicy | None = None
    webhook_security: WebhookSecurity | None = None
    audit_settings: AuditSettings | None = None
    category_exclusivity: CategoryExclusivity | None = None
    version: int | None = None

    def invalid_cidrs(self) -> list[str]:
        """CIDR entries in the IP allow/block lists that do not parse."""
        if self.ip_restrictions is None:
            return []
        blocks = self.ip_restrictions.allowlist + self.ip_restrictions.blocklist
        return [block for block in blocks if not is_valid_cidr(block)]


# Email settings


def _default_email_notifications() -> dict[str, bool]:
    return {
        "user_invitations": True,
        "task_assignments": True,
        "campaign_updates": True,
        "payment_reminders": True,
        "report_ready": True,
        "deadline_reminders": True,
        "approval_requests": True,
        "ad_copy_updates": True,
    }


def _default_recipient_matrix() -> dict[str, list[str]]:
    return {
        "user_invitations": ["admin"],
        "task_assignments": ["admin", "sales", "producer", "talent"],
        "campaign_updates": ["admin", "sales"],
        "payment_reminders": ["admin", "client"],
        "report_ready": ["admin", "sales", "client"],
        "deadline_reminders": ["producer", "talent"],
        "approval_requests": ["admin", "talent"],
        "ad_copy_updates": ["sales", "producer", "talent"],
    }


class EmailSettings(SettingsModel):
    """Organization email delivery settings."""

    enabled: bool = True
    from_name: str | None = None
    from_email: str | None = None
    reply_to: str | None = None
    daily_limit: int = Field(default=100, ge=1, le=100000)
    notifications: dict[str, bool] = Field(default_factory=_default_email_notifications)
    recipient_matrix: dict[str, list[str]] = Field(default_factory=_default_recipient_matrix)
    send_digest: bool = False
    digest_time: str = Field(default="09:00", pattern=TIME_PATTERN)

    @field_validator("from_email", "reply_to")
    @classmethod
    def validate_address(cls, value: str | None) -> str | None:
        if value is not None and not re.fullmatch(r"[^@\s]+@[^@\s]+\.[^@\s]+", value):
            raise ValueError(f"Invalid email address: {value}")
        return value

    @field_validator("recipient_matrix")
    @classmethod
    def validate_roles(cls, value: dict[str, list[str]]) -> dict[str, list[str]]:
        for event, roles in value.items():
            invalid = [role for role in roles if role not in EMAIL_ROLES]
            if invalid:
                raise ValueError(
                    f"Invalid roles for {event}: {', '.join(invalid)}. "
                    f"Allowed roles: {', '.join(EMAIL_ROLES)}"
                )
        return value


# Notification settings


class NotificationChannel(SettingsModel):
    enabled: bool = False
    webhook_url: str | None = None
    secret: str | None = None


class NotificationChannels(SettingsModel):
    email: NotificationChannel = Field(default_factory=lambda: NotificationChannel(enabled=True))
    in_app: NotificationChannel = Field(default_factory=lambda: NotificationChannel(enabled=True))
    slack: NotificationChannel = Field(default_factory=NotificationChannel)
    webhook: NotificationChannel = Field(default_factory=NotificationChannel)


class QuietHours(SettingsModel):
    start: str = Field(pattern=TIME_PATTERN)
    end: str = Field(pattern=TIME_PATTERN)
    timezone: str = "UTC"


class NotificationEvent(SettingsModel):
    enabled: bool = True
    channels: list[Literal["email", "in_app", "slack", "webhook"]] = Field(
        default_factory=lambda: ["email"]
    )
    mandatory: bool = False
    severity: Literal["low", "normal", "high", "urgent"] = "normal"
    quiet_hour_bypass: bool | None = None
    digestable: bool | None = None


def _event(
    channels: list[str], severity: str = "normal", mandatory: bool = False
) -> NotificationEvent:
    return NotificationEvent.model_validate(
        {"channels": channels, "severity": severity, "mandatory": mandatory}
    )


def _default_notification_events() -> dict[str, NotificationEvent]:
    both = ["email", "in_app"]
    return {
        # Pre-sale workflow
        "campaign_created": _event(both),
        "schedule_built": _event(both),
        "talent_approval_requested": _event(both, "high", mandatory=True),
        "admin_approval_requested": _event(both, "high", mandatory=True),
        "campaign_approved": _event(both),
        "campaign_rejected": _event(both, "high"),
        # Inventory
        "inventory_conflict": _event(both, "high"),
        "inventory_released": _event(["in_app"]),
        "bulk_placement_failed": _event(both, "high"),
        "rate_card_updated": _event(["email"]),
        # Post-sale and billing
        "order_created": _event(["email"]),
        "contract_generated": _event(["email"]),
        "contract_signed": _event(["email"]),
        "invoice_generated": _event(["email"]),
        "payment_received": _event(["email"]),
        "invoice_overdue": _event(["email"], "high"),
        # Show operations
        "ad_request_created": _event(both, "high"),
        "category_conflict": _event(both, "high"),
        # Integrations and data
        "youtube_quota_reached": _event(["email"], "high", mandatory=True),
        "integration_sync_failed": _event(["email"], "high"),
        "backup_completed": _event(["email"], "low"),
        "backup_failed": _event(["email"], "urgent", mandatory=True),
        # Security
        "security_policy_changed": _event(["email"], "high", mandatory=True),
        "api_key_rotated": _event(["email"]),
    }


class NotificationSettings(SettingsModel):
    """Organization notification routing."""

    enabled: bool = True
    channels: NotificationChannels = Field(default_factory=NotificationChannels)
    quiet_hours: QuietHours | None = None
    events: dict[str, NotificationEvent] = Field(default_factory=_default_notification_events)

    @field_validator("quiet_hours")
    @classmethod
    def validate_timezone(cls, value: QuietHours | None) -> QuietHours | None:
        if value is not None:
            _validate_timezone(value.timezone)
        return value


# Workflow automation


def _validate_timezone(name: str) -> str:
    try:
        ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ValueError(f"Unknown timezone: {name}")
    return name


class AutoStages(SettingsModel):
    at10: bool = True
    at35: bool = True
    at65: bool = True
    at90: bool = True
    at100: bool = True


class InventorySettings(SettingsModel):
    reserve_at_90: bool = True
    reservation_ttl_hours: int = Field(default=72, ge=1, le=720)


class RateCardSettings(SettingsModel):
    delta_approval_threshold_pct: float = Field(default=15, ge=0, le=100)


class ExclusivityPolicy(str, Enum):
    WARN = "WARN"
    BLOCK = "BLOCK"


class ExclusivitySettings(SettingsModel):
    policy: ExclusivityPolicy = ExclusivityPolicy.WARN
    categories: list[str] = Field(default_factory=list)


class TalentApprovals(SettingsModel):
    host_read: bool = True
    endorsed: bool = True


class ContractSettings(SettingsModel):
    auto_generate: bool = True
    email_template_id: str = "contract_default"


class WorkflowBilling(SettingsModel):
    invoice_day_of_month: int = Field(default=15, ge=1, le=28)
    timezone: str = "America/Los_Angeles"
    prebill_when_no_terms: bool = True

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, value: str) -> str:
        return _validate_timezone(value)


class WorkflowSettings(SettingsModel):
    """Campaign workflow automation settings."""

    enabled: bool = True
    auto_stages: AutoStages = Field(default_factory=AutoStages)
    inventory: InventorySettings = Field(default_factory=InventorySettings)
    rate_card: RateCardSettings = Field(default_factory=RateCardSettings)
    exclusivity: ExclusivitySettings = Field(default_factory=ExclusivitySettings)
    talent_approvals: TalentApprovals = Field(default_factory=TalentApprovals)
    contracts: ContractSettings = Field(default_factory=ContractSettings)
    billing: WorkflowBilling = Field(default_factory=WorkflowBilling)


# Billing automation


class BillingEmailSettings(BaseModel):
    send_invoice_emails: bool = True
    send_reminder_emails: bool = True
    send_overdue_emails: bool = True
    reminder_days: list[int] = Field(default_factory=lambda: [7, 3, 1])
    email_from: str | None = None
    reply_to: str | None = None

    @field_validator("reminder_days")
    @classmethod
    def validate_reminder_days(cls, value: list[int]) -> list[int]:
        if any(day < 0 or day > 90 for day in value):
            raise ValueError("Reminder days must be between 0 and 90")
        return sorted(set(value), reverse=True)


class BillingSettingsData(BaseModel):
    """Billing automation settings."""

    default_invoice_day: int = Field(default=1, ge=1, le=28)
    default_payment_terms: Literal[
        "Net 15", "Net 30", "Net 45", "Net 60", "Due on Receipt", "COD"
    ] = "Net 30"
    auto_generate_invoices: bool = True
    invoice_prefix: str = Field(default="INV", min_length=1, max_length=20)
    invoice_start_number: int = Field(default=1000, ge=1)
    late_fee_percentage: float = Field(default=1.5, ge=0, le=25)
    grace_period_days: int = Field(default=5, ge=0, le=90)
    pre_bill_enabled: bool = True
    pre_bill_threshold_amount: float = Field(default=10000, ge=0)
    email_settings: BillingEmailSettings = Field(default_factory=BillingEmailSettings)


# Backup schedule

BackupFrequency = Literal["daily", "weekly", "monthly"]

RETENTION_DAYS_BY_FREQUENCY: dict[str, int] = {
    "daily": 7,
    "weekly": 30,
    "monthly": 365,
}


class BackupScheduleData(BaseModel):
    """Automatic backup schedule."""

    enabled: bool = False
    frequency: BackupFrequency = "daily"
    time: str = Field(default="02:00", pattern=TIME_PATTERN)
    retention_days: int | None = Field(default=None, ge=1, le=3650)
    entities: list[str] = Field(default_factory=lambda: list(BACKUP_ENTITIES))

    @model_validator(mode="after")
    def apply_default_retention(self) -> "BackupScheduleData":
        if self.retention_days is None:
            self.retention_days = RETENTION_DAYS_BY_FREQUENCY[self.frequency]
        return self

    @field_validator("entities")
    @classmethod
    def validate_entities(cls, value: list[str]) -> list[str]:
        invalid = [entity for entity in value if entity not in BACKUP_ENTITIES]
        if invalid:
            raise ValueError(f"Unknown backup entities: {', '.join(invalid)}")
        return value


# Sidebar customization


class MenuItem(BaseModel):
    """One node of the customized sidebar tree."""

    id: str = Field(min_length=1)
    label: str
    visible: bool = True
    collapsed: bool = False
    order: int = 0
    children: list["MenuItem"] = Field(default_factory=list)


def duplicate_menu_ids(items: list[MenuItem]) -> list[str]:
    """Ids that appear more than once anywhere in the tree."""
    seen: set[str] = set()
    duplicates: list[str] = []
    stack = list(items)
    while stack:
        item = stack.pop()
        if item.id in seen and item.id not in duplicates:
            duplicates.append(item.id)
        seen.add(item.id)
        stack.extend(item.children)
    return duplicates


def merge_settings(model: type[BaseModel], stored: dict[str, Any] | None) -> Any:
    """Overlay stored values on a model's defaults, section by section."""
    defaults = model().model_dump()
    merged = dict(defaults)
    for key, value in (stored or {}).items():
        if isinstance(value, dict) and isinstance(defaults.get(key), dict):
            merged[key] = {**defaults[key], **value}
        else:
            merged[key] = value
    return model.model_validate(merged)
