"""API request/response schemas."""

from datetime import datetime
from typing import Annotated, Any, Literal
from uuid import UUID

from pydantic import AfterValidator, BaseModel, Field, HttpUrl

from ..core.types import (
    BackupScheduleData,
    EmailSettings,
    MenuItem,
)
from ..core.webhooks import validate_webhook_url as _is_safe_webhook_url


def validate_webhook_url(url: HttpUrl) -> HttpUrl:
    """Validate webhook URL to prevent SSRF attacks."""
    if not _is_safe_webhook_url(str(url)):
        raise ValueError("Webhook URL cannot point to localhost or internal network addresses")
    return url


# Type alias for validated webhook URL
SafeWebhookUrl = Annotated[HttpUrl, AfterValidator(validate_webhook_url)]


# Auth schemas


class UserLogin(BaseModel):
    """JSON login request."""

    email: str = Field(min_length=3, max_length=255)
    password: str = Field(min_length=1)


class TokenResponse(BaseModel):
    """JWT token response."""

    access_token: str
    token_type: str = "bearer"
    expires_in: int


# API key schemas


class APIKeyCreate(BaseModel):
    """API key creation request."""

    name: str = Field(min_length=1, max_length=100, description="Key name")
    description: str | None = Field(default=None, max_length=500)
    scopes: list[str] = Field(min_length=1, description="Granted scopes")
    expires_in_days: int | None = Field(default=None, ge=1, le=365)


class APIKeyResponse(BaseModel):
    """API key response (only returned once on creation)."""

    id: UUID
    name: str
    key: str  # Only returned on creation
    prefix: str
    scopes: list[str]
    created_at: datetime | None
    expires_at: datetime | None


class APIKeyListItem(BaseModel):
    """API key listing entry (no secret)."""

    id: UUID
    name: str
    description: str | None
    prefix: str
    scopes: list[str]
    status: Literal["active", "expired", "revoked"]
    is_expired: bool
    created_by: UUID | None
    created_at: datetime | None
    expires_at: datetime | None
    last_used_at: datetime | None


class APIKeyListResponse(BaseModel):
    """API keys plus the organization's key policy."""

    keys: list[APIKeyListItem]
    policy: dict[str, Any]


# Webhook schemas


class WebhookCreate(BaseModel):
    """Webhook creation request."""

    name: str = Field(min_length=1, max_length=255)
    url: SafeWebhookUrl
    events: list[str] = Field(min_length=1)


class WebhookUpdate(BaseModel):
    """Partial webhook update."""

    name: str | None = Field(default=None, min_length=1, max_length=255)
    url: SafeWebhookUrl | None = None
    events: list[str] | None = None
    is_active: bool | None = None


class WebhookResponse(BaseModel):
    """Webhook (the secret is only included on creation)."""

    id: UUID
    name: str
    url: str
    events: list[str]
    is_active: bool
    secret: str | None = None
    created_at: datetime | None
    updated_at: datetime | None = None
    last_triggered_at: datetime | None = None
    last_failure_at: datetime | None = None
    failure_count: int = 0


class WebhookTestResponse(BaseModel):
    """Result of a test delivery."""

    success: bool
    status_code: int | None
    duration_ms: float
    message: str


# Email settings schemas


class EmailSettingsEnvelope(BaseModel):
    """Email settings wrapped the way the settings UI sends them."""

    settings: EmailSettings


# Backup schemas


class BackupCreate(BaseModel):
    """Manual backup request."""

    name: str | None = Field(default=None, max_length=255)
    description: str | None = None
    entities: list[str] | None = None


class BackupResponse(BaseModel):
    """Backup record."""

    id: UUID
    name: str
    description: str | None
    type: str
    status: str
    entities: list[str]
    created_by: UUID | None
    created_at: datetime | None
    completed_at: datetime | None
    size: int
    compressed_size: int
    entity_count: int
    progress: int
    error: str | None


class RestoreRequest(BaseModel):
    """Restore from a stored backup or an uploaded snapshot."""

    backup_id: UUID | None = None
    uploaded_data: dict[str, Any] | str | None = None
    entities: list[str] | None = None


class RestoreResponse(BaseModel):
    """Restore outcome."""

    status: str
    backup_id: UUID | None
    restored: dict[str, int]
    message: str


class BackupScheduleResponse(BackupScheduleData):
    """Schedule plus its next run."""

    next_run: datetime | None = None
    updated_at: datetime | None = None


# Billing schemas


class PreBillFlagCreate(BaseModel):
    """Flag an advertiser for pre-billing."""

    advertiser_id: str = Field(min_length=1, max_length=100)
    advertiser_name: str | None = Field(default=None, max_length=255)
    reason: str = Field(min_length=1)
    notes: str | None = None


class PreBillFlagResponse(BaseModel):
    """Active pre-bill flag."""

    id: UUID
    advertiser_id: str
    advertiser_name: str | None
    reason: str
    notes: str | None
    flagged_by: UUID | None
    flagged_at: datetime | None
    is_active: bool


# Preferences schemas


class SidebarPreferences(BaseModel):
    """Sidebar customization for the current user."""

    sidebar_customization: list[MenuItem] = Field(default_factory=list)
    sidebar_customization_version: int = 1


# Audit schemas


class AuditLogListResponse(BaseModel):
    """Paginated audit log listing."""

    logs: list[dict[str, Any]]
    total: int
    limit: int
    offset: int


# Health check schemas


class HealthStatus(BaseModel):
    """Health check status."""

    status: str = Field(description="Overall status: healthy, degraded, unhealthy")
    version: str
    timestamp: datetime
    checks: dict[str, "ComponentHealth"]


class ComponentHealth(BaseModel):
    """Individual component health."""

    status: str
    latency_ms: float | None
    message: str | None


# Enable forward references
HealthStatus.model_rebuild()
