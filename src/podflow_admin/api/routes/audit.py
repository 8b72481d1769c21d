"""Audit trail queries, compliance reports and exports."""

from datetime import datetime, timedelta, timezone
from typing import Annotated, Literal
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, Query, Response, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...audit.service import audit_log_to_dict, get_audit_service
from ...audit.types import (
    AuditEventType,
    AuditLogEntry,
    AuditLogFilters,
    AuditSeverity,
    ComplianceReport,
)
from ...db.models import User
from ..config import APISettings, get_settings
from ..deps import get_db_session
from ..schemas import AuditLogListResponse
from .auth import require_admin

router = APIRouter()


def _filters(
    organization_id: UUID,
    user_id: UUID | None,
    event_type: AuditEventType | None,
    severity: AuditSeverity | None,
    start_date: datetime | None,
    end_date: datetime | None,
    limit: int = 100,
    offset: int = 0,
) -> AuditLogFilters:
    if start_date and end_date and start_date > end_date:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must be before end_date",
        )
    return AuditLogFilters(
        organization_id=organization_id,
        user_id=user_id,
        event_type=event_type,
        severity=severity,
        start_date=start_date,
        end_date=end_date,
        limit=limit,
        offset=offset,
    )


@router.get("/logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    user_id: UUID | None = None,
    event_type: AuditEventType | None = None,
    severity: AuditSeverity | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
    limit: Annotated[int, Query(ge=1, le=1000)] = 100,
    offset: Annotated[int, Query(ge=0)] = 0,
) -> AuditLogListResponse:
    """List the organization's audit logs, newest first."""
    filters = _filters(
        user.organization_id, user_id, event_type, severity, start_date, end_date, limit, offset
    )
    logs, total = await get_audit_service().get_audit_logs(session, filters)

    return AuditLogListResponse(
        logs=[audit_log_to_dict(log) for log in logs],
        total=total,
        limit=limit,
        offset=offset,
    )


@router.get("/report", response_model=ComplianceReport)
async def compliance_report(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> ComplianceReport:
    """
    Compliance report for a period.

    Defaults to the last 30 days.
    """
    end = end_date or datetime.now(timezone.utc)
    start = start_date or end - timedelta(days=30)
    if start > end:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="start_date must be before end_date",
        )

    audit = get_audit_service()
    report = await audit.generate_compliance_report(session, user.organization_id, start, end)

    await audit.log(
        AuditLogEntry(
            event_type=AuditEventType.REPORT_GENERATED,
            severity=AuditSeverity.LOW,
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type="audit_report",
            action="Compliance report generated",
            details={"start": start.isoformat(), "end": end.isoformat()},
        )
    )

    return report


@router.get("/export")
async def export_audit_logs(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[APISettings, Depends(get_settings)],
    format: Literal["json", "csv"] = "json",
    event_type: AuditEventType | None = None,
    severity: AuditSeverity | None = None,
    start_date: datetime | None = None,
    end_date: datetime | None = None,
) -> Response:
    """Download the organization's audit logs as JSON or CSV."""
    filters = _filters(
        user.organization_id,
        None,
        event_type,
        severity,
        start_date,
        end_date,
        limit=settings.audit_export_limit,
    )

    audit = get_audit_service()
    content = await audit.export_audit_logs(session, user.organization_id, format, filters)

    await audit.log_data_access(
        user.id,
        user.organization_id,
        "audit_logs",
        str(user.organization_id),
        f"Audit logs exported as {format}",
    )

    stamp = datetime.now(timezone.utc).strftime("%Y-%m-%d")
    media_type = "text/csv" if format == "csv" else "application/json"
    return Response(
        content=content,
        media_type=media_type,
        headers={"Content-Disposition": f'attachment; filename="audit-logs-{stamp}.{format}"'},
    )
