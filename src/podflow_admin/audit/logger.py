"""Direct, unbuffered audit writes."""

import logging
from typing import Any
from uuid import UUID

from sqlalchemy.ext.asyncio import AsyncSession

from ..db.models import AuditLog
from .service import extract_request_metadata
from .types import AuditEventType, AuditLogEntry, AuditSeverity, event_description

logger = logging.getLogger(__name__)


async def create_audit_log(
    session: AsyncSession,
    event_type: AuditEventType,
    severity: AuditSeverity = AuditSeverity.MEDIUM,
    user_id: UUID | None = None,
    organization_id: UUID | None = None,
    entity_type: str | None = None,
    entity_id: str | None = None,
    action: str | None = None,
    changes: dict[str, Any] | None = None,
    details: dict[str, Any] | None = None,
    request: Any = None,
    success: bool = True,
    error_message: str | None = None,
) -> AuditLog:
    """
    Write one audit row in the caller's transaction.

    ``changes`` (typically ``{"before": ..., "after": ...}``) is merged into
    ``details``. The row is committed together with the caller's own writes.
    """
    from ..db.repositories import AuditLogRepository

    merged: dict[str, Any] = dict(details or {})
    if changes is not None:
        merged.update(changes)

    entry = AuditLogEntry(
        event_type=event_type,
        severity=severity,
        user_id=user_id,
        organization_id=organization_id,
        entity_type=entity_type,
        entity_id=entity_id,
        action=action or event_description(event_type),
        details=merged or None,
        metadata=extract_request_metadata(request) if request is not None else None,
        success=success,
        error_message=error_message,
    )

    row = await AuditLogRepository(session).create(entry)
    logger.info(f"Audit log written: {event_type.value} ({entity_type}:{entity_id})")
    return row
