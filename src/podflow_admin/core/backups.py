"""Settings backups: gzip JSON snapshots of an organization's admin data."""

import gzip
import json
import logging
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any
from uuid import UUID

from pydantic import BaseModel, Field, ValidationError
from sqlalchemy import inspect
from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import Backup
from .types import (
    BACKUP_ENTITIES,
    RETENTION_DAYS_BY_FREQUENCY,
    BackupScheduleData,
    BillingSettingsData,
)

logger = logging.getLogger(__name__)

BACKUP_FORMAT_VERSION = "1.0"

# Entities that can be written back; the rest are snapshot-only
RESTORABLE_ENTITIES = ("organization", "billing_settings", "backup_schedule", "pre_bill_flags")

# Columns never written to an archive
_EXCLUDED_COLUMNS: dict[str, set[str]] = {
    "users": {"password_hash"},
    "api_keys": {"key_hash"},
    "webhooks": {"secret"},
}


class BackupError(Exception):
    """Raised when a backup archive cannot be produced or read."""

    pass


def _row_to_dict(row: Any, exclude: set[str] | None = None) -> dict[str, Any]:
    exclude = exclude or set()
    data: dict[str, Any] = {}
    for attr in inspect(row).mapper.column_attrs:
        if attr.key in exclude:
            continue
        value = getattr(row, attr.key)
        if isinstance(value, datetime):
            value = value.isoformat()
        elif isinstance(value, UUID):
            value = str(value)
        data[attr.key] = value
    return data


class BackupManager:
    """Creates, reads and restores settings backups under ``backup_dir``."""

    def __init__(self, backup_dir: str | Path):
        self.backup_dir = Path(backup_dir)

    def archive_path(self, organization_id: UUID, backup_id: UUID) -> Path:
        """Location of a backup archive."""
        return self.backup_dir / str(organization_id) / f"{backup_id}.json.gz"

    async def collect_entity(
        self, session: AsyncSession, organization_id: UUID, entity: str
    ) -> list[dict[str, Any]]:
        """Snapshot one entity type for an organization."""
        from ..db.repositories import (
            APIKeyRepository,
            BackupScheduleRepository,
            BillingSettingsRepository,
            OrganizationRepository,
            PreBillFlagRepository,
            UserRepository,
            WebhookRepository,
        )

        rows: list[Any]
        if entity == "organization":
            org = await OrganizationRepository(session).get_by_id(organization_id)
            rows = [org] if org else []
        elif entity == "users":
            rows = await UserRepository(session).list_by_organization(organization_id)
        elif entity == "api_keys":
            rows = await APIKeyRepository(session).list_by_organization(organization_id)
        elif entity == "webhooks":
            rows = await WebhookRepository(session).list_by_organization(organization_id)
        elif entity == "billing_settings":
            billing = await BillingSettingsRepository(session).get(organization_id)
            rows = [billing] if billing else []
        elif entity == "pre_bill_flags":
            rows = await PreBillFlagRepository(session).list_active(organization_id)
        elif entity == "backup_schedule":
            schedule = await BackupScheduleRepository(session).get(organization_id)
            rows = [schedule] if schedule else []
        else:
            raise BackupError(f"Unknown backup entity: {entity}")

        exclude = _EXCLUDED_COLUMNS.get(entity)
        return [_row_to_dict(row, exclude) for row in rows]

    def write_archive(self, path: Path, data: dict[str, Any]) -> tuple[int, int]:
        """Write ``data`` as gzip JSON. Returns (size, compressed_size)."""
        payload = json.dumps(data, indent=2, default=str).encode()
        compressed = gzip.compress(payload)
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(compressed)
        return len(payload), len(compressed)

    def read_archive(self, path: Path) -> dict[str, Any]:
        """Load a gzip JSON archive."""
        if not path.exists():
            raise BackupError(f"Backup archive not found: {path}")
        try:
            data: dict[str, Any] = json.loads(gzip.decompress(path.read_bytes()))
        except (OSError, ValueError) as e:
            raise BackupError(f"Corrupt backup archive {path}: {e}") from e
        return data

    def remove_archive(self, path: Path) -> None:
        """Delete an archive file, and its directory once empty."""
        path.unlink(missing_ok=True)
        try:
            path.parent.rmdir()
        except OSError:
            pass

    async def run_backup(self, session: AsyncSession, backup: Backup) -> Backup:
        """
        Snapshot the backup's entities and write the archive.

        The record moves ``running`` -> ``completed``. On error it is marked
        ``failed`` with the message and the error is re-raised.
        """
        from ..db.repositories import BackupRepository

        repo = BackupRepository(session)
        entities = list(backup.entities or BACKUP_ENTITIES)
        snapshot: dict[str, Any] = {
            "version": BACKUP_FORMAT_VERSION,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "organization_id": str(backup.organization_id),
            "entities": {},
        }

        try:
            await repo.update(backup, status="running", progress=0)

            for index, entity in enumerate(entities, start=1):
                logger.info(f"Backing up {entity} for organization {backup.organization_id}")
                snapshot["entities"][entity] = await self.collect_entity(
                    session, backup.organization_id, entity
                )
                await repo.update(backup, progress=round(index / len(entities) * 100))

            path = self.archive_path(backup.organization_id, backup.id)
            size, compressed_size = self.write_archive(path, snapshot)

            await repo.update(
                backup,
                status="completed",
                completed_at=datetime.now(timezone.utc),
                location=str(path),
                size=size,
                compressed_size=compressed_size,
                entity_count=sum(len(items) for items in snapshot["entities"].values()),
                progress=100,
            )
            logger.info(
                f"Backup {backup.id} completed ({size} bytes, {compressed_size} compressed)"
            )
            return backup

        except Exception as e:
            logger.error(f"Backup {backup.id} failed: {e}")
            await repo.update(backup, status="failed", error=str(e))
            raise

    def load_backup(self, backup: Backup) -> dict[str, Any]:
        """Read a completed backup's snapshot."""
        if backup.status != "completed" or not backup.location:
            raise BackupError(f"Backup {backup.id} is not available")
        return self.read_archive(Path(backup.location))

    async def restore(
        self,
        session: AsyncSession,
        organization_id: UUID,
        data: dict[str, Any],
        entities: list[str] | None = None,
    ) -> dict[str, int]:
        """
        Write a snapshot's restorable entities back for an organization.

        Returns the number of records restored per entity.
        """
        from ..db.repositories import (
            BackupScheduleRepository,
            BillingSettingsRepository,
            OrganizationRepository,
            PreBillFlagRepository,
        )

        stored = data.get("entities")
        if not isinstance(stored, dict):
            raise BackupError("Backup data has no entities section")

        requested = entities or list(stored.keys())

        # Validate everything before the first write
        prepared: dict[str, list[dict[str, Any]]] = {}
        for entity in requested:
            items = stored.get(entity)
            if not items or entity not in RESTORABLE_ENTITIES:
                continue
            prepared[entity] = _prepare_items(entity, items)

        restored: dict[str, int] = {}
        for entity, values in prepared.items():
            logger.info(f"Restoring {len(values)} {entity} records")
            if entity == "organization":
                await OrganizationRepository(session).replace_settings(
                    organization_id, values[0]["settings"]
                )
            elif entity == "billing_settings":
                await BillingSettingsRepository(session).upsert(organization_id, **values[0])
            elif entity == "backup_schedule":
                await BackupScheduleRepository(session).upsert(organization_id, **values[0])
            elif entity == "pre_bill_flags":
                repo = PreBillFlagRepository(session)
                for flag in values:
                    await repo.flag(organization_id, **flag)
            restored[entity] = len(values)

        return restored

    async def cleanup_old_backups(
        self, session: AsyncSession, organization_id: UUID, frequency: str
    ) -> int:
        """Delete scheduled backups older than the frequency's retention window."""
        from ..db.repositories import BackupRepository

        cutoff = datetime.now(timezone.utc) - timedelta(days=RETENTION_DAYS_BY_FREQUENCY[frequency])
        repo = BackupRepository(session)
        old_backups = await repo.list_scheduled_before(organization_id, cutoff)

        for backup in old_backups:
            if backup.location:
                self.remove_archive(Path(backup.location))
            await repo.delete(backup.id)

        logger.info(f"Removed {len(old_backups)} {frequency} backups older than {cutoff.date()}")
        return len(old_backups)


_BILLING_FIELDS = (
    "default_invoice_day",
    "default_payment_terms",
    "auto_generate_invoices",
    "invoice_prefix",
    "invoice_start_number",
    "late_fee_percentage",
    "grace_period_days",
    "pre_bill_enabled",
    "pre_bill_threshold_amount",
    "email_settings",
)

_SCHEDULE_FIELDS = ("enabled", "frequency", "time", "retention_days", "entities")


class RestoredPreBillFlag(BaseModel):
    """A pre-bill flag as stored in a snapshot."""

    advertiser_id: str = Field(min_length=1, max_length=100)
    advertiser_name: str | None = Field(default=None, max_length=255)
    reason: str | None = None
    notes: str | None = None


def _restorable_fields(item: dict[str, Any], fields: tuple[str, ...]) -> dict[str, Any]:
    return {key: item[key] for key in fields if key in item}


def _prepare_items(entity: str, items: Any) -> list[dict[str, Any]]:
    """Validate a snapshot entity and return the values to write."""
    if not isinstance(items, list) or not all(isinstance(item, dict) for item in items):
        raise BackupError(f"Backup entity {entity} must be a list of objects")

    try:
        if entity == "organization":
            settings = items[0].get("settings") or {}
            if not isinstance(settings, dict):
                raise BackupError("Organization settings in backup must be an object")
            return [{"settings": settings}]

        if entity == "billing_settings":
            billing = BillingSettingsData.model_validate(
                _restorable_fields(items[0], _BILLING_FIELDS)
            )
            return [billing.model_dump(mode="json", include=billing.model_fields_set)]

        if entity == "backup_schedule":
            schedule = BackupScheduleData.model_validate(
                _restorable_fields(items[0], _SCHEDULE_FIELDS)
            )
            return [schedule.model_dump(mode="json", include=schedule.model_fields_set)]

        flags = [RestoredPreBillFlag.model_validate(item) for item in items]
    except ValidationError as e:
        raise BackupError(f"Invalid {entity} in backup: {e.errors()[0]['msg']}") from e

    return [
        {
            "advertiser_id": flag.advertiser_id,
            "reason": flag.reason or "Restored from backup",
            "advertiser_name": flag.advertiser_name,
            "notes": flag.notes,
        }
        for flag in flags
    ]


def next_run(frequency: str, time: str, now: datetime | None = None) -> datetime:
    """
    Next scheduled run (UTC) for a frequency and ``HH:MM`` time.

    daily: today at ``time``, else tomorrow. weekly: the coming Sunday at
    ``time`` (a week later if that has passed). monthly: the 1st of this month
    at ``time``, else the 1st of next month.
    """
    now = now or datetime.now(timezone.utc)
    hour, minute = (int(part) for part in time.split(":"))
    candidate = now.replace(hour=hour, minute=minute, second=0, microsecond=0)

    if frequency == "daily":
        if candidate <= now:
            candidate += timedelta(days=1)
    elif frequency == "weekly":
        days_since_sunday = (candidate.weekday() + 1) % 7
        candidate += timedelta(days=7 - days_since_sunday)
        if candidate <= now:
            candidate += timedelta(days=7)
    elif frequency == "monthly":
        candidate = candidate.replace(day=1)
        if candidate <= now:
            if candidate.month == 12:
                candidate = candidate.replace(year=candidate.year + 1, month=1)
            else:
                candidate = candidate.replace(month=candidate.month + 1)
    else:
        raise ValueError(f"Invalid frequency: {frequency}")

    return candidate
