"""Repository classes for database operations."""

from collections.abc import Sequence
from datetime import datetime, timezone
from typing import Any
from uuid import UUID

from sqlalchemy import delete, func, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from ..audit.types import AuditLogEntry, AuditLogFilters, AuditSeverity
from .models import (
    APIKey,
    AuditLog,
    Backup,
    BackupSchedule,
    BillingSettings,
    Organization,
    PreBillFlag,
    User,
    Webhook,
)


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class UserRepository:
    """Repository for user operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, user_id: UUID) -> User | None:
        """Get user by ID."""
        result = await self.session.execute(select(User).where(User.id == user_id))
        row: User | None = result.scalar_one_or_none()
        return row

    async def get_by_email(self, email: str) -> User | None:
        """Get user by email."""
        result = await self.session.execute(select(User).where(User.email == email))
        row: User | None = result.scalar_one_or_none()
        return row

    async def list_by_organization(self, org_id: UUID) -> list[User]:
        """List members of an organization."""
        result = await self.session.execute(
            select(User).where(User.organization_id == org_id).order_by(User.email)
        )
        return list(result.scalars().all())

    async def update_preferences(self, user: User, updates: dict[str, Any]) -> dict[str, Any]:
        """Merge ``updates`` into the user's stored preferences."""
        preferences = dict(user.preferences or {})
        preferences.update(updates)
        user.preferences = preferences
        await self.session.flush()
        return preferences


class OrganizationRepository:
    """Repository for organization operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_by_id(self, org_id: UUID, for_update: bool = False) -> Organization | None:
        """Get organization by ID, optionally locking the row until commit."""
        query = select(Organization).where(Organization.id == org_id)
        if for_update:
            query = query.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(query)
        row: Organization | None = result.scalar_one_or_none()
        return row

    async def get_settings_section(
        self, org_id: UUID, section: str, for_update: bool = False
    ) -> dict[str, Any] | None:
        """Get one section of the organization settings document."""
        org = await self.get_by_id(org_id, for_update=for_update)
        if org is None:
            return None
        value = (org.settings or {}).get(section)
        return dict(value) if isinstance(value, dict) else {}

    async def update_settings_section(
        self, org_id: UUID, section: str, value: dict[str, Any]
    ) -> Organization | None:
        """Replace one section of the organization settings document."""
        org = await self.get_by_id(org_id)
        if org is None:
            return None
        # Reassign so SQLAlchemy detects the JSON change
        settings = dict(org.settings or {})
        settings[section] = value
        org.settings = settings
        await self.session.flush()
        return org

    async def replace_settings(self, org_id: UUID, settings: dict[str, Any]) -> Organization | None:
        """Replace the whole settings document."""
        org = await self.get_by_id(org_id)
        if org is None:
            return None
        org.settings = dict(settings)
        await self.session.flush()
        return org


class APIKeyRepository:
    """Repository for API key operations."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        organization_id: UUID,
        name: str,
        key_hash: str,
        prefix: str,
        scopes: list[str],
        created_by: UUID | None = None,
        description: str | None = None,
        expires_at: datetime | None = None,
    ) -> APIKey:
        """Create a new API key."""
        api_key = APIKey(
            organization_id=organization_id,
            name=name,
            description=description,
            key_hash=key_hash,
            prefix=prefix,
            scopes=scopes,
            created_by=created_by,
            expires_at=expires_at,
            revoked=False,
        )
        self.session.add(api_key)
        await self.session.flush()
        return api_key

    async def list_by_organization(self, org_id: UUID) -> list[APIKey]:
        """List all API keys for an organization, newest first."""
        result = await self.session.execute(
            select(APIKey)
            .where(APIKey.organization_id == org_id)
            .order_by(APIKey.created_at.desc())
        )
        return list(result.scalars().all())

    async def count_active_by_creator(self, org_id: UUID, user_id: UUID) -> int:
        """Count non-revoked, unexpired keys a user has created."""
        result = await self.session.execute(
            select(func.count())
            .select_from(APIKey)
            .where(
                APIKey.organization_id == org_id,
                APIKey.created_by == user_id,
                APIKey.revoked.is_(False),
                or_(APIKey.expires_at.is_(None), APIKey.expires_at > _utcnow()),
            )
        )
        return result.scalar() or 0

    async def get_by_hash(self, key_hash: str) -> APIKey | None:
        """Get API key by its hash."""
        result = await self.session.execute(select(APIKey).where(APIKey.key_hash == key_hash))
        row: APIKey | None = result.scalar_one_or_none()
        return row

    async def revoke(self, key_id: UUID, org_id: UUID) -> bool:
        """Revoke an API key. Returns False when it is not in the organization."""
        result = await self.session.execute(
            update(APIKey)
            .where(APIKey.id == key_id, APIKey.organization_id == org_id)
            .values(revoked=True)
        )
        rowcount = getattr(result, "rowcount", 0)
        return bool(rowcount and rowcount > 0)


class WebhookRepository:
    """Repository for webhook subscriptions."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        organization_id: UUID,
        name: str,
        url: str,
        events: list[str],
        secret: str,
        created_by: UUID | None = None,
    ) -> Webhook:
        """Create a webhook."""
        webhook = Webhook(
            organization_id=organization_id,
            name=name,
            url=url,
            events=events,
            secret=secret,
            created_by=created_by,
            is_active=True,
            failure_count=0,
        )
        self.session.add(webhook)
        await self.session.flush()
        return webhook

    async def list_by_organization(self, org_id: UUID) -> list[Webhook]:
        """List webhooks for an organization, newest first."""
        result = await self.session.execute(
            select(Webhook)
            .where(Webhook.organization_id == org_id)
            .order_by(Webhook.created_at.desc())
        )
        return list(result.scalars().all())

    async def get(self, webhook_id: UUID, org_id: UUID) -> Webhook | None:
        """Get a webhook scoped to an organization."""
        result = await self.session.execute(
            select(Webhook).where(Webhook.id == webhook_id, Webhook.organization_id == org_id)
        )
        row: Webhook | None = result.scalar_one_or_none()
        return row

    async def update(self, webhook: Webhook, **kwargs: Any) -> Webhook:
        """Apply attribute updates to a webhook."""
        for key, value in kwargs.items():
            setattr(webhook, key, value)
        webhook.updated_at = _utcnow()
        await self.session.flush()
        return webhook

    async def delete(self, webhook_id: UUID, org_id: UUID) -> bool:
        """Delete a webhook."""
        result = await self.session.execute(
            delete(Webhook).where(Webhook.id == webhook_id, Webhook.organization_id == org_id)
        )
        rowcount = getattr(result, "rowcount", 0)
        return bool(rowcount and rowcount > 0)

    async def record_success(self, webhook: Webhook) -> None:
        """Mark a successful delivery."""
        webhook.last_triggered_at = _utcnow()
        await self.session.flush()

    async def record_failure(self, webhook: Webhook) -> None:
        """Mark a failed delivery."""
        webhook.failure_count = (webhook.failure_count or 0) + 1
        webhook.last_failure_at = _utcnow()
        await self.session.flush()


class BackupRepository:
    """Repository for backup records."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        organization_id: UUID,
        name: str,
        entities: list[str],
        backup_type: str = "manual",
        description: str | None = None,
        created_by: UUID | None = None,
    ) -> Backup:
        """Create a backup record in the ``in_progress`` state."""
        backup = Backup(
            organization_id=organization_id,
            name=name,
            description=description,
            type=backup_type,
            status="in_progress",
            entities=entities,
            created_by=created_by,
            progress=0,
            size=0,
            compressed_size=0,
            entity_count=0,
        )
        self.session.add(backup)
        await self.session.flush()
        return backup

    async def get(self, backup_id: UUID, org_id: UUID) -> Backup | None:
        """Get a backup scoped to an organization."""
        result = await self.session.execute(
            select(Backup).where(Backup.id == backup_id, Backup.organization_id == org_id)
        )
        row: Backup | None = result.scalar_one_or_none()
        return row

    async def list_by_organization(
        self,
        org_id: UUID,
        backup_type: str | None = None,
        status: str | None = None,
        limit: int = 20,
    ) -> list[Backup]:
        """List backups, newest first."""
        query = select(Backup).where(Backup.organization_id == org_id)
        if backup_type:
            query = query.where(Backup.type == backup_type)
        if status:
            query = query.where(Backup.status == status)
        query = query.order_by(Backup.created_at.desc()).limit(limit)

        result = await self.session.execute(query)
        return list(result.scalars().all())

    async def list_scheduled_before(self, org_id: UUID, cutoff: datetime) -> list[Backup]:
        """Scheduled backups created before ``cutoff``."""
        result = await self.session.execute(
            select(Backup).where(
                Backup.organization_id == org_id,
                Backup.type == "scheduled",
                Backup.created_at < cutoff,
            )
        )
        return list(result.scalars().all())

    async def update(self, backup: Backup, **kwargs: Any) -> Backup:
        """Apply attribute updates to a backup."""
        for key, value in kwargs.items():
            setattr(backup, key, value)
        await self.session.flush()
        return backup

    async def delete(self, backup_id: UUID) -> None:
        """Delete a backup record."""
        await self.session.execute(delete(Backup).where(Backup.id == backup_id))


class BackupScheduleRepository:
    """Repository for backup schedules."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, org_id: UUID) -> BackupSchedule | None:
        """Get the organization's schedule."""
        result = await self.session.execute(
            select(BackupSchedule).where(BackupSchedule.organization_id == org_id)
        )
        row: BackupSchedule | None = result.scalar_one_or_none()
        return row

    async def upsert(self, org_id: UUID, **values: Any) -> BackupSchedule:
        """Create or update the organization's schedule."""
        schedule = await self.get(org_id)
        if schedule is None:
            schedule = BackupSchedule(organization_id=org_id, **values)
            self.session.add(schedule)
        else:
            for key, value in values.items():
                setattr(schedule, key, value)
        schedule.updated_at = _utcnow()
        await self.session.flush()
        return schedule


class BillingSettingsRepository:
    """Repository for billing automation settings."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, org_id: UUID) -> BillingSettings | None:
        """Get billing settings for an organization."""
        result = await self.session.execute(
            select(BillingSettings).where(BillingSettings.organization_id == org_id)
        )
        row: BillingSettings | None = result.scalar_one_or_none()
        return row

    async def upsert(self, org_id: UUID, **values: Any) -> BillingSettings:
        """Create or update billing settings."""
        settings = await self.get(org_id)
        if settings is None:
            settings = BillingSettings(organization_id=org_id, **values)
            self.session.add(settings)
        else:
            for key, value in values.items():
                setattr(settings, key, value)
            settings.updated_at = _utcnow()
        await self.session.flush()
        return settings


class PreBillFlagRepository:
    """Repository for advertiser pre-bill flags."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def list_active(self, org_id: UUID) -> list[PreBillFlag]:
        """Active flags, newest first."""
        result = await self.session.execute(
            select(PreBillFlag)
            .where(PreBillFlag.organization_id == org_id, PreBillFlag.is_active.is_(True))
            .order_by(PreBillFlag.flagged_at.desc())
        )
        return list(result.scalars().all())

    async def get_active(self, org_id: UUID, advertiser_id: str) -> PreBillFlag | None:
        """Active flag for one advertiser."""
        result = await self.session.execute(
            select(PreBillFlag).where(
                PreBillFlag.organization_id == org_id,
                PreBillFlag.advertiser_id == advertiser_id,
                PreBillFlag.is_active.is_(True),
            )
        )
        row: PreBillFlag | None = result.scalars().first()
        return row

    async def flag(
        self,
        org_id: UUID,
        advertiser_id: str,
        reason: str,
        advertiser_name: str | None = None,
        notes: str | None = None,
        flagged_by: UUID | None = None,
    ) -> PreBillFlag:
        """Flag an advertiser, updating the active flag when one exists."""
        flag = await self.get_active(org_id, advertiser_id)
        if flag is None:
            flag = PreBillFlag(
                organization_id=org_id,
                advertiser_id=advertiser_id,
                is_active=True,
            )
            self.session.add(flag)
        flag.reason = reason
        flag.advertiser_name = advertiser_name
        flag.notes = notes
        flag.flagged_by = flagged_by
        flag.flagged_at = _utcnow()
        await self.session.flush()
        return flag

    async def deactivate(self, org_id: UUID, advertiser_id: str) -> bool:
        """Deactivate an advertiser's flags."""
        result = await self.session.execute(
            update(PreBillFlag)
            .where(
                PreBillFlag.organization_id == org_id,
                PreBillFlag.advertiser_id == advertiser_id,
                PreBillFlag.is_active.is_(True),
            )
            .values(is_active=False)
        )
        rowcount = getattr(result, "rowcount", 0)
        return bool(rowcount and rowcount > 0)


class AuditLogRepository:
    """Repository for persisted audit logs."""

    def __init__(self, session: AsyncSession):
        self.session = session

    @staticmethod
    def to_row(entry: AuditLogEntry) -> AuditLog:
        """Build an ORM row from a buffered entry."""
        return AuditLog(
            event_type=entry.event_type.value,
            severity=entry.severity.value,
            user_id=entry.user_id,
            organization_id=entry.organization_id,
            entity_type=entry.entity_type,
            entity_id=entry.entity_id,
            action=entry.action,
            details=entry.details,
            request_metadata=(
                entry.metadata.model_dump(exclude_none=True) if entry.metadata else None
            ),
            timestamp=entry.timestamp or _utcnow(),
            success=entry.success,
            error_message=entry.error_message,
        )

    async def create(self, entry: AuditLogEntry) -> AuditLog:
        """Persist a single entry."""
        row = self.to_row(entry)
        self.session.add(row)
        await self.session.flush()
        return row

    async def bulk_create(self, entries: Sequence[AuditLogEntry]) -> int:
        """Persist many entries in one flush."""
        self.session.add_all([self.to_row(entry) for entry in entries])
        await self.session.flush()
        return len(entries)

    def _apply_filters(self, query: Any, filters: AuditLogFilters) -> Any:
        if filters.organization_id:
            query = query.where(AuditLog.organization_id == filters.organization_id)
        if filters.user_id:
            query = query.where(AuditLog.user_id == filters.user_id)
        if filters.event_type:
            query = query.where(AuditLog.event_type == filters.event_type.value)
        if filters.severity:
            query = query.where(AuditLog.severity == filters.severity.value)
        if filters.start_date:
            query = query.where(AuditLog.timestamp >= filters.start_date)
        if filters.end_date:
            query = query.where(AuditLog.timestamp <= filters.end_date)
        return query

    async def query(self, filters: AuditLogFilters) -> tuple[list[AuditLog], int]:
        """Filtered logs, newest first, with the unpaginated total."""
        query = self._apply_filters(select(AuditLog), filters)

        count_result = await self.session.execute(
            select(func.count()).select_from(query.subquery())
        )
        total = count_result.scalar() or 0

        query = query.order_by(AuditLog.timestamp.desc())
        query = query.offset(filters.offset).limit(filters.limit)
        result = await self.session.execute(query)
        logs = list(result.unique().scalars().all())

        return logs, total

    async def summarize(
        self, org_id: UUID, start: datetime, end: datetime
    ) -> tuple[dict[str, int], dict[str, int]]:
        """Headline counts and per-event-type counts for a period."""
        window = (
            AuditLog.organization_id == org_id,
            AuditLog.timestamp >= start,
            AuditLog.timestamp <= end,
        )
        totals = await self.session.execute(
            select(
                func.count(),
                func.count().filter(AuditLog.severity == AuditSeverity.CRITICAL.value),
                func.count().filter(AuditLog.success.is_(False)),
                func.count(func.distinct(AuditLog.user_id)),
            ).where(*window)
        )
        row = totals.one()
        summary = {
            "total_events": row[0] or 0,
            "critical_events": row[1] or 0,
            "failed_events": row[2] or 0,
            "unique_users": row[3] or 0,
        }

        grouped = await self.session.execute(
            select(AuditLog.event_type, func.count()).where(*window).group_by(AuditLog.event_type)
        )
        event_counts = {event_type: count for event_type, count in grouped.all()}

        return summary, event_counts

    async def count_since(self, org_id: UUID, since: datetime) -> int:
        """Number of logs for an organization since a point in time."""
        result = await self.session.execute(
            select(func.count())
            .select_from(AuditLog)
            .where(AuditLog.organization_id == org_id, AuditLog.timestamp >= since)
        )
        return result.scalar() or 0

    async def delete_older_than(self, cutoff: datetime) -> int:
        """Delete non-critical logs older than ``cutoff``."""
        result = await self.session.execute(
            delete(AuditLog).where(
                AuditLog.timestamp < cutoff,
                AuditLog.severity != AuditSeverity.CRITICAL.value,
            )
        )
        return getattr(result, "rowcount", 0) or 0
