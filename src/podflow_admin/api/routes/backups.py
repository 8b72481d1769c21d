"""Settings backups, restore and the automatic backup schedule."""

import json
import logging
from datetime import datetime, timezone
from typing import Annotated, Any, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...audit.service import get_audit_service
from ...audit.types import AuditEventType, AuditLogEntry, AuditSeverity
from ...core.backups import BackupError, BackupManager, next_run
from ...core.types import BACKUP_ENTITIES, BackupScheduleData
from ...db.models import Backup, User
from ..config import APISettings, get_settings
from ..deps import get_db_session
from ..schemas import (
    BackupCreate,
    BackupResponse,
    BackupScheduleResponse,
    RestoreRequest,
    RestoreResponse,
)
from .auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()


def get_backup_manager(
    settings: Annotated[APISettings, Depends(get_settings)],
) -> BackupManager:
    """Backup manager rooted at the configured backup directory."""
    return BackupManager(settings.backup_dir)


def _to_response(backup: Backup) -> BackupResponse:
    return BackupResponse(
        id=UUID(str(backup.id)),
        name=backup.name,
        description=backup.description,
        type=backup.type,
        status=backup.status,
        entities=list(backup.entities or []),
        created_by=UUID(str(backup.created_by)) if backup.created_by else None,
        created_at=backup.created_at,
        completed_at=backup.completed_at,
        size=backup.size or 0,
        compressed_size=backup.compressed_size or 0,
        entity_count=backup.entity_count or 0,
        progress=backup.progress or 0,
        error=backup.error,
    )


def _check_entities(entities: list[str]) -> None:
    invalid = [entity for entity in entities if entity not in BACKUP_ENTITIES]
    if invalid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Unknown backup entities: {', '.join(invalid)}. "
            f"Allowed entities: {', '.join(BACKUP_ENTITIES)}",
        )


async def _get_backup(session: AsyncSession, backup_id: UUID, user: User) -> Backup:
    from ...db.repositories import BackupRepository

    backup = await BackupRepository(session).get(backup_id, user.organization_id)
    if not backup:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Backup not found",
        )
    return backup


async def _audit(
    event_type: AuditEventType,
    severity: AuditSeverity,
    user: User,
    entity_id: str | None,
    action: str,
    details: dict[str, Any] | None = None,
) -> None:
    await get_audit_service().log(
        AuditLogEntry(
            event_type=event_type,
            severity=severity,
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type="backup",
            entity_id=entity_id,
            action=action,
            details=details,
        )
    )


@router.get("/backups", response_model=list[BackupResponse])
async def list_backups(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    type: Annotated[Literal["manual", "scheduled"] | None, Query()] = None,
    status_filter: Annotated[str | None, Query(alias="status")] = None,
    limit: Annotated[int, Query(ge=1, le=100)] = 20,
) -> list[BackupResponse]:
    """List backups, newest first."""
    from ...db.repositories import BackupRepository

    backups = await BackupRepository(session).list_by_organization(
        user.organization_id, backup_type=type, status=status_filter, limit=limit
    )
    return [_to_response(b) for b in backups]


@router.post("/backups", response_model=BackupResponse, status_code=status.HTTP_201_CREATED)
async def create_backup(
    backup_data: BackupCreate,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    manager: Annotated[BackupManager, Depends(get_backup_manager)],
) -> BackupResponse:
    """
    Create a manual backup.

    The snapshot is taken within the request. A failure leaves the record
    in the ``failed`` state and answers 500.
    """
    from ...db.repositories import BackupRepository

    entities = backup_data.entities or list(BACKUP_ENTITIES)
    _check_entities(entities)

    now = datetime.now(timezone.utc)
    backup = await BackupRepository(session).create(
        organization_id=user.organization_id,
        name=backup_data.name or f"Manual Backup {now.strftime('%Y-%m-%d %H:%M')}",
        description=backup_data.description,
        entities=entities,
        backup_type="manual",
        created_by=user.id,
    )

    try:
        await manager.run_backup(session, backup)
    except Exception:
        # Keep the failed record; the error itself goes to the global handler
        await session.commit()
        raise

    await _audit(
        AuditEventType.BACKUP_CREATED,
        AuditSeverity.MEDIUM,
        user,
        str(backup.id),
        f"Backup '{backup.name}' created",
        {"entities": entities, "size": backup.size},
    )

    return _to_response(backup)


@router.post("/backups/restore", response_model=RestoreResponse)
async def restore_backup(
    restore_data: RestoreRequest,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    manager: Annotated[BackupManager, Depends(get_backup_manager)],
) -> RestoreResponse:
    """
    Restore from a stored backup or an uploaded snapshot.

    Organization settings, billing settings, the backup schedule and
    pre-bill flags are written back.
    """
    data: dict[str, Any]
    if restore_data.backup_id:
        backup = await _get_backup(session, restore_data.backup_id, user)
        try:
            data = manager.load_backup(backup)
        except BackupError as e:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail=str(e),
            )
    elif restore_data.uploaded_data is not None:
        if isinstance(restore_data.uploaded_data, str):
            try:
                data = json.loads(restore_data.uploaded_data)
            except ValueError:
                raise HTTPException(
                    status_code=status.HTTP_400_BAD_REQUEST,
                    detail="Uploaded backup is not valid JSON",
                )
        else:
            data = restore_data.uploaded_data
    else:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Either backup_id or uploaded_data is required",
        )

    if not isinstance(data, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Uploaded backup must be a JSON object",
        )

    if restore_data.entities:
        _check_entities(restore_data.entities)

    try:
        restored = await manager.restore(
            session, user.organization_id, data, restore_data.entities
        )
    except BackupError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        )

    await _audit(
        AuditEventType.BACKUP_RESTORED,
        AuditSeverity.CRITICAL,
        user,
        str(restore_data.backup_id) if restore_data.backup_id else None,
        "Settings restored from backup",
        {"restored": restored, "source": "backup" if restore_data.backup_id else "upload"},
    )
    logger.info(f"Restore for organization {user.organization_id}: {restored}")

    return RestoreResponse(
        status="completed",
        backup_id=restore_data.backup_id,
        restored=restored,
        message=f"Restored {sum(restored.values())} records",
    )


@router.get("/backups/{backup_id}", response_model=BackupResponse)
async def get_backup(
    backup_id: UUID,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> BackupResponse:
    """Get a backup record."""
    return _to_response(await _get_backup(session, backup_id, user))


@router.get("/backups/{backup_id}/download")
async def download_backup(
    backup_id: UUID,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    manager: Annotated[BackupManager, Depends(get_backup_manager)],
) -> Response:
    """Download a completed backup as uncompressed JSON."""
    backup = await _get_backup(session, backup_id, user)

    try:
        data = manager.load_backup(backup)
    except BackupError:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Backup not available for download",
        )

    created = backup.created_at or datetime.now(timezone.utc)
    filename = f"podcastflow-backup-{created.strftime('%Y-%m-%d')}.json"

    await get_audit_service().log_data_access(
        user.id, user.organization_id, "backup", str(backup.id), "Backup downloaded"
    )

    return Response(
        content=json.dumps(data, indent=2),
        media_type="application/json",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'},
    )


@router.delete("/backups/{backup_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_backup(
    backup_id: UUID,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    manager: Annotated[BackupManager, Depends(get_backup_manager)],
) -> None:
    """Delete a backup record and its archive."""
    from pathlib import Path

    from ...db.repositories import BackupRepository

    backup = await _get_backup(session, backup_id, user)
    if backup.location:
        manager.remove_archive(Path(backup.location))
    await BackupRepository(session).delete(backup.id)

    await _audit(
        AuditEventType.BACKUP_DELETED,
        AuditSeverity.HIGH,
        user,
        str(backup_id),
        f"Backup '{backup.name}' deleted",
    )


def _schedule_response(
    data: BackupScheduleData, updated_at: datetime | None
) -> BackupScheduleResponse:
    return BackupScheduleResponse(
        **data.model_dump(),
        next_run=next_run(data.frequency, data.time) if data.enabled else None,
        updated_at=updated_at,
    )


@router.get("/backup-schedule", response_model=BackupScheduleResponse)
async def get_backup_schedule(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> BackupScheduleResponse:
    """The automatic backup schedule, or the disabled default."""
    from ...db.repositories import BackupScheduleRepository

    schedule = await BackupScheduleRepository(session).get(user.organization_id)
    if schedule is None:
        return _schedule_response(BackupScheduleData(), None)

    data = BackupScheduleData(
        enabled=schedule.enabled,
        frequency=schedule.frequency,
        time=schedule.time,
        retention_days=schedule.retention_days,
        entities=list(schedule.entities or []),
    )
    return _schedule_response(data, schedule.updated_at)


@router.put("/backup-schedule", response_model=BackupScheduleResponse)
async def update_backup_schedule(
    schedule_data: BackupScheduleData,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> BackupScheduleResponse:
    """Create or replace the automatic backup schedule."""
    from ...db.repositories import BackupScheduleRepository

    schedule = await BackupScheduleRepository(session).upsert(
        user.organization_id,
        **schedule_data.model_dump(),
        updated_by=user.id,
    )

    await get_audit_service().log(
        AuditLogEntry(
            event_type=AuditEventType.SETTINGS_CHANGED,
            severity=AuditSeverity.MEDIUM,
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type="backup_schedule",
            entity_id=str(user.organization_id),
            action="Backup schedule updated",
            details=schedule_data.model_dump(),
        )
    )

    return _schedule_response(schedule_data, schedule.updated_at)
