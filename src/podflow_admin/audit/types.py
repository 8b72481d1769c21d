"""Type definitions for the audit pipeline."""

from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field


class AuditEventType(str, Enum):
    """Kinds of audited events."""

    # Authentication
    USER_LOGIN = "USER_LOGIN"
    USER_LOGOUT = "USER_LOGOUT"
    USER_LOGIN_FAILED = "USER_LOGIN_FAILED"
    PASSWORD_CHANGED = "PASSWORD_CHANGED"
    SESSION_EXPIRED = "SESSION_EXPIRED"

    # User management
    USER_CREATED = "USER_CREATED"
    USER_UPDATED = "USER_UPDATED"
    USER_DELETED = "USER_DELETED"
    USER_ACTIVATED = "USER_ACTIVATED"
    USER_DEACTIVATED = "USER_DEACTIVATED"
    ROLE_CHANGED = "ROLE_CHANGED"

    # Campaigns
    CAMPAIGN_CREATED = "CAMPAIGN_CREATED"
    CAMPAIGN_UPDATED = "CAMPAIGN_UPDATED"
    CAMPAIGN_DELETED = "CAMPAIGN_DELETED"
    CAMPAIGN_STATUS_CHANGED = "CAMPAIGN_STATUS_CHANGED"

    # Financial
    PAYMENT_PROCESSED = "PAYMENT_PROCESSED"
    INVOICE_CREATED = "INVOICE_CREATED"
    INVOICE_UPDATED = "INVOICE_UPDATED"
    INVOICE_SENT = "INVOICE_SENT"
    REFUND_PROCESSED = "REFUND_PROCESSED"

    # Data access
    DATA_EXPORTED = "DATA_EXPORTED"
    DATA_IMPORTED = "DATA_IMPORTED"
    REPORT_GENERATED = "REPORT_GENERATED"
    SENSITIVE_DATA_ACCESSED = "SENSITIVE_DATA_ACCESSED"

    # Security
    SETTINGS_CHANGED = "SETTINGS_CHANGED"
    SECURITY_ALERT = "SECURITY_ALERT"
    PERMISSION_VIOLATION = "PERMISSION_VIOLATION"
    API_RATE_LIMIT_EXCEEDED = "API_RATE_LIMIT_EXCEEDED"
    SECURITY_SETTINGS_UPDATED = "SECURITY_SETTINGS_UPDATED"

    # Compliance
    GDPR_DATA_REQUEST = "GDPR_DATA_REQUEST"
    GDPR_DATA_DELETION = "GDPR_DATA_DELETION"
    TERMS_ACCEPTED = "TERMS_ACCEPTED"
    PRIVACY_POLICY_ACCEPTED = "PRIVACY_POLICY_ACCEPTED"

    # Settings surface
    API_KEY_CREATED = "API_KEY_CREATED"
    API_KEY_REVOKED = "API_KEY_REVOKED"
    WEBHOOK_CREATED = "WEBHOOK_CREATED"
    WEBHOOK_UPDATED = "WEBHOOK_UPDATED"
    WEBHOOK_DELETED = "WEBHOOK_DELETED"
    BACKUP_CREATED = "BACKUP_CREATED"
    BACKUP_RESTORED = "BACKUP_RESTORED"
    BACKUP_DELETED = "BACKUP_DELETED"
    API_REQUEST = "API_REQUEST"


class AuditSeverity(str, Enum):
    """Severity of an audited event."""

    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"
    CRITICAL = "CRITICAL"


class RequestMetadata(BaseModel):
    """HTTP request context captured with an audit entry."""

    ip_address: str | None = None
    user_agent: str | None = None
    session_id: str | None = None
    request_id: str | None = None
    api_endpoint: str | None = None
    http_method: str | None = None


class AuditLogEntry(BaseModel):
    """A single audit entry as held in the in-memory buffer."""

    event_type: AuditEventType = Field(description="Kind of event")
    severity: AuditSeverity = Field(description="Event severity")
    user_id: UUID | None = Field(default=None, description="Acting user")
    organization_id: UUID | None = Field(default=None, description="Owning organization")
    entity_type: str | None = Field(default=None, description="Type of the affected entity")
    entity_id: str | None = Field(default=None, description="Identifier of the affected entity")
    action: str = Field(description="Human readable description of the action")
    details: dict[str, Any] | None = Field(default=None, description="Free-form event details")
    metadata: RequestMetadata | None = Field(default=None, description="Request context")
    timestamp: datetime | None = Field(default=None, description="Set when the entry is logged")
    success: bool = Field(default=True)
    error_message: str | None = Field(default=None)


class AuditLogFilters(BaseModel):
    """Query filters for stored audit logs."""

    organization_id: UUID | None = None
    user_id: UUID | None = None
    event_type: AuditEventType | None = None
    severity: AuditSeverity | None = None
    start_date: datetime | None = None
    end_date: datetime | None = None
    limit: int = Field(default=100, ge=1, le=10000)
    offset: int = Field(default=0, ge=0)


class ReportPeriod(BaseModel):
    """Reporting window."""

    start: datetime
    end: datetime


class ReportSummary(BaseModel):
    """Headline counts for a compliance report."""

    total_events: int
    critical_events: int
    failed_events: int
    unique_users: int


class EventCount(BaseModel):
    """Occurrences of one event type."""

    event_type: str
    count: int


class ComplianceStatus(BaseModel):
    """Compliance checklist flags."""

    data_retention: bool
    access_control: bool
    audit_trail: bool
    encryption: bool


class ComplianceReport(BaseModel):
    """Compliance report over a period."""

    organization_id: UUID
    period: ReportPeriod
    summary: ReportSummary
    categories: dict[str, int] = Field(default_factory=dict)
    top_events: list[EventCount] = Field(default_factory=list)
    compliance_status: ComplianceStatus


_EVENT_DESCRIPTIONS: dict[AuditEventType, str] = {
    AuditEventType.USER_LOGIN: "User logged in",
    AuditEventType.USER_LOGOUT: "User logged out",
    AuditEventType.USER_LOGIN_FAILED: "Failed login attempt",
    AuditEventType.PASSWORD_CHANGED: "Password changed",
    AuditEventType.SESSION_EXPIRED: "Session expired",
    AuditEventType.USER_CREATED: "User account created",
    AuditEventType.USER_UPDATED: "User account updated",
    AuditEventType.USER_DELETED: "User account deleted",
    AuditEventType.USER_ACTIVATED: "User account activated",
    AuditEventType.USER_DEACTIVATED: "User account deactivated",
    AuditEventType.ROLE_CHANGED: "User role changed",
    AuditEventType.CAMPAIGN_CREATED: "Campaign created",
    AuditEventType.CAMPAIGN_UPDATED: "Campaign updated",
    AuditEventType.CAMPAIGN_DELETED: "Campaign deleted",
    AuditEventType.CAMPAIGN_STATUS_CHANGED: "Campaign status changed",
    AuditEventType.PAYMENT_PROCESSED: "Payment processed",
    AuditEventType.INVOICE_CREATED: "Invoice created",
    AuditEventType.INVOICE_UPDATED: "Invoice updated",
    AuditEventType.INVOICE_SENT: "Invoice sent",
    AuditEventType.REFUND_PROCESSED: "Refund processed",
    AuditEventType.DATA_EXPORTED: "Data exported",
    AuditEventType.DATA_IMPORTED: "Data imported",
    AuditEventType.REPORT_GENERATED: "Report generated",
    AuditEventType.SENSITIVE_DATA_ACCESSED: "Sensitive data accessed",
    AuditEventType.SETTINGS_CHANGED: "Settings changed",
    AuditEventType.SECURITY_ALERT: "Security alert triggered",
    AuditEventType.PERMISSION_VIOLATION: "Permission violation detected",
    AuditEventType.API_RATE_LIMIT_EXCEEDED: "API rate limit exceeded",
    AuditEventType.SECURITY_SETTINGS_UPDATED: "Security settings updated",
    AuditEventType.GDPR_DATA_REQUEST: "GDPR data request",
    AuditEventType.GDPR_DATA_DELETION: "GDPR data deletion",
    AuditEventType.TERMS_ACCEPTED: "Terms of service accepted",
    AuditEventType.PRIVACY_POLICY_ACCEPTED: "Privacy policy accepted",
    AuditEventType.API_KEY_CREATED: "API key created",
    AuditEventType.API_KEY_REVOKED: "API key revoked",
    AuditEventType.WEBHOOK_CREATED: "Webhook created",
    AuditEventType.WEBHOOK_UPDATED: "Webhook updated",
    AuditEventType.WEBHOOK_DELETED: "Webhook deleted",
    AuditEventType.BACKUP_CREATED: "Backup created",
    AuditEventType.BACKUP_RESTORED: "Backup restored",
    AuditEventType.BACKUP_DELETED: "Backup deleted",
    AuditEventType.API_REQUEST: "API request",
}

# Checked in order; first match wins
_CATEGORY_RULES: list[tuple[tuple[str, ...], str]] = [
    (("USER_", "PASSWORD", "SESSION"), "Authentication"),
    (("CAMPAIGN",), "Campaign Management"),
    (("PAYMENT", "INVOICE", "REFUND"), "Financial"),
    (("DATA_", "REPORT"), "Data Access"),
    (("SECURITY", "PERMISSION"), "Security"),
    (("GDPR", "TERMS", "PRIVACY"), "Compliance"),
]


def event_description(event_type: AuditEventType | str) -> str:
    """Human readable description for an event type, falling back to its name."""
    try:
        return _EVENT_DESCRIPTIONS[AuditEventType(event_type)]
    except (KeyError, ValueError):
        return str(event_type.value if isinstance(event_type, AuditEventType) else event_type)


def event_category(event_type: AuditEventType | str) -> str:
    """Reporting category for an event type."""
    name = event_type.value if isinstance(event_type, AuditEventType) else str(event_type)
    for needles, category in _CATEGORY_RULES:
        if any(needle in name for needle in needles):
            return category
    return "System"


def auth_event_severity(event_type: AuditEventType) -> AuditSeverity:
    """Severity used for authentication events."""
    if event_type == AuditEventType.USER_LOGIN_FAILED:
        return AuditSeverity.MEDIUM
    if event_type == AuditEventType.PASSWORD_CHANGED:
        return AuditSeverity.HIGH
    return AuditSeverity.LOW
