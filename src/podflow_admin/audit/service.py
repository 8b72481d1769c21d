"""Buffered audit logging service.

Entries are collected in memory and written to the ``audit_logs`` table in
bulk. A flush happens on a timer, when the buffer reaches ``buffer_size``,
or straight away for CRITICAL entries. Failures are logged and counted, never
raised to the code that produced the entry.
"""

import asyncio
import csv
import io
import json
import logging
from collections.abc import Awaitable, Callable, Sequence
from datetime import datetime, timedelta, timezone
from typing import Any, Literal
from uuid import UUID

from prometheus_client import Counter, Gauge
from sqlalchemy.ext.asyncio import AsyncSession

from .types import (
    AuditEventType,
    AuditLogEntry,
    AuditLogFilters,
    AuditSeverity,
    ComplianceReport,
    ComplianceStatus,
    EventCount,
    ReportPeriod,
    ReportSummary,
    RequestMetadata,
    auth_event_severity,
    event_category,
    event_description,
)

logger = logging.getLogger(__name__)

AuditWriter = Callable[[Sequence[AuditLogEntry]], Awaitable[None]]

DEFAULT_BUFFER_SIZE = 50
DEFAULT_FLUSH_INTERVAL = 10.0
MAX_EXPORT_ROWS = 10000
CSV_HEADERS = ["Timestamp", "Event Type", "User", "Action", "Success", "Details"]

ENTRIES_LOGGED = Counter(
    "audit_entries_logged_total",
    "Audit entries accepted into the buffer",
    ["severity"],
)
ENTRIES_FLUSHED = Counter(
    "audit_entries_flushed_total",
    "Audit entries written to storage",
)
FLUSH_FAILURES = Counter(
    "audit_flush_failures_total",
    "Failed audit buffer flushes",
)
BUFFER_SIZE = Gauge(
    "audit_buffer_size",
    "Audit entries waiting in the buffer",
)
SECURITY_ALERTS = Counter(
    "audit_security_alerts_total",
    "Critical security alerts raised",
)


async def write_to_database(entries: Sequence[AuditLogEntry]) -> None:
    """Bulk insert entries using the API session factory."""
    from ..api.deps import get_session_factory
    from ..db.repositories import AuditLogRepository

    session_factory = get_session_factory()
    async with session_factory() as session:
        await AuditLogRepository(session).bulk_create(entries)
        await session.commit()


def extract_request_metadata(request: Any) -> RequestMetadata:
    """Pull client context out of a Starlette request."""
    headers = request.headers
    return RequestMetadata(
        ip_address=headers.get("x-forwarded-for") or headers.get("x-real-ip") or "unknown",
        user_agent=headers.get("user-agent") or "unknown",
        session_id=headers.get("x-session-id"),
        request_id=headers.get("x-request-id"),
        api_endpoint=str(request.url),
        http_method=request.method,
    )


def audit_log_to_dict(log: Any) -> dict[str, Any]:
    """Serialize a stored audit row for API responses and exports."""
    user = getattr(log, "user", None)
    return {
        "id": str(log.id),
        "event_type": log.event_type,
        "severity": log.severity,
        "user_id": str(log.user_id) if log.user_id else None,
        "organization_id": str(log.organization_id) if log.organization_id else None,
        "entity_type": log.entity_type,
        "entity_id": log.entity_id,
        "action": log.action,
        "details": log.details or {},
        "metadata": log.request_metadata or {},
        "timestamp": log.timestamp.isoformat() if log.timestamp else None,
        "success": log.success,
        "error_message": log.error_message,
        "user": (
            {"id": str(user.id), "name": user.name, "email": user.email} if user else None
        ),
    }


class AuditService:
    """In-memory buffered audit pipeline."""

    def __init__(
        self,
        buffer_size: int = DEFAULT_BUFFER_SIZE,
        flush_interval: float = DEFAULT_FLUSH_INTERVAL,
        writer: AuditWriter | None = None,
    ) -> None:
        self.buffer_size = buffer_size
        self.flush_interval = flush_interval
        self._writer: AuditWriter = writer or write_to_database
        self._buffer: list[AuditLogEntry] = []
        self._timer_task: asyncio.Task[None] | None = None

    @property
    def buffer(self) -> list[AuditLogEntry]:
        """Entries not yet written, oldest first."""
        return self._buffer

    @property
    def is_running(self) -> bool:
        """Whether the periodic flush task is active."""
        return self._timer_task is not None and not self._timer_task.done()

    def start(self) -> None:
        """Start the periodic flush task."""
        if self.is_running:
            return
        self._timer_task = asyncio.create_task(self._flush_periodically())
        logger.info(f"Audit flush timer started ({self.flush_interval}s interval)")

    async def stop(self) -> None:
        """Stop the periodic flush task and flush what is left."""
        if self._timer_task is not None:
            self._timer_task.cancel()
            try:
                await self._timer_task
            except asyncio.CancelledError:
                pass
            self._timer_task = None
        await self.flush_buffer()
        logger.info("Audit flush timer stopped")

    async def _flush_periodically(self) -> None:
        while True:
            await asyncio.sleep(self.flush_interval)
            await self.flush_buffer()

    async def log(self, entry: AuditLogEntry) -> None:
        """Buffer an entry, flushing when it is CRITICAL or the buffer is full."""
        try:
            if entry.timestamp is None:
                entry.timestamp = datetime.now(timezone.utc)

            self._buffer.append(entry)
            ENTRIES_LOGGED.labels(severity=entry.severity.value).inc()
            BUFFER_SIZE.set(len(self._buffer))

            if entry.severity == AuditSeverity.CRITICAL:
                await self.flush_buffer()
            elif len(self._buffer) >= self.buffer_size:
                await self.flush_buffer()

            logger.debug(f"Audit event logged: {entry.event_type.value} - {entry.action}")
        except Exception:
            logger.exception("Failed to log audit event")

    async def flush_buffer(self) -> None:
        """Write buffered entries in one batch."""
        if not self._buffer:
            return

        # Swap before the first await so entries logged meanwhile land in the new list
        entries = self._buffer
        self._buffer = []

        try:
            await self._writer(entries)
            ENTRIES_FLUSHED.inc(len(entries))
            logger.info(f"Flushed {len(entries)} audit log entries")
        except Exception as e:
            self._buffer[:0] = entries
            FLUSH_FAILURES.inc()
            logger.error(f"Failed to flush audit buffer ({len(entries)} entries kept): {e}")
        finally:
            BUFFER_SIZE.set(len(self._buffer))

    async def log_auth(
        self,
        event_type: AuditEventType,
        user_id: UUID | None,
        details: dict[str, Any] | None,
        request: Any = None,
        organization_id: UUID | None = None,
    ) -> None:
        """Log an authentication event."""
        await self.log(
            AuditLogEntry(
                event_type=event_type,
                severity=auth_event_severity(event_type),
                user_id=user_id,
                organization_id=organization_id,
                action=event_description(event_type),
                details=details,
                metadata=extract_request_metadata(request) if request is not None else None,
                success="FAILED" not in event_type.value,
            )
        )

    async def log_data_access(
        self,
        user_id: UUID,
        organization_id: UUID,
        entity_type: str,
        entity_id: str,
        action: str,
        sensitive: bool = False,
    ) -> None:
        """Log a data access or export."""
        await self.log(
            AuditLogEntry(
                event_type=(
                    AuditEventType.SENSITIVE_DATA_ACCESSED
                    if sensitive
                    else AuditEventType.DATA_EXPORTED
                ),
                severity=AuditSeverity.HIGH if sensitive else AuditSeverity.LOW,
                user_id=user_id,
                organization_id=organization_id,
                entity_type=entity_type,
                entity_id=entity_id,
                action=action,
                success=True,
            )
        )

    async def log_financial(
        self,
        event_type: AuditEventType,
        user_id: UUID,
        organization_id: UUID,
        entity_id: str,
        amount: float,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Log a money-moving event."""
        await self.log(
            AuditLogEntry(
                event_type=event_type,
                severity=AuditSeverity.HIGH,
                user_id=user_id,
                organization_id=organization_id,
                entity_type="financial",
                entity_id=entity_id,
                action=f"{event_description(event_type)} - Amount: ${amount}",
                details={**(details or {}), "amount": amount},
                success=True,
            )
        )

    async def log_security(
        self,
        event_type: AuditEventType,
        severity: AuditSeverity,
        details: dict[str, Any] | None,
        request: Any = None,
        user_id: UUID | None = None,
        organization_id: UUID | None = None,
    ) -> None:
        """Log a security event; CRITICAL ones also raise an alert."""
        await self.log(
            AuditLogEntry(
                event_type=event_type,
                severity=severity,
                user_id=user_id,
                organization_id=organization_id,
                action=event_description(event_type),
                details=details,
                metadata=extract_request_metadata(request) if request is not None else None,
                success=False,
            )
        )

        if severity == AuditSeverity.CRITICAL:
            self._send_security_alert(event_type, details)

    def _send_security_alert(
        self, event_type: AuditEventType, details: dict[str, Any] | None
    ) -> None:
        SECURITY_ALERTS.inc()
        logger.critical(
            f"SECURITY ALERT: {event_type.value}",
            extra={
                "event_type": event_type.value,
                "details": details,
                "alert_timestamp": datetime.now(timezone.utc).isoformat(),
            },
        )

    async def get_audit_logs(
        self, session: AsyncSession, filters: AuditLogFilters
    ) -> tuple[list[Any], int]:
        """Query stored logs after flushing anything still buffered."""
        from ..db.repositories import AuditLogRepository

        await self.flush_buffer()
        return await AuditLogRepository(session).query(filters)

    async def generate_compliance_report(
        self,
        session: AsyncSession,
        organization_id: UUID,
        start_date: datetime,
        end_date: datetime,
    ) -> ComplianceReport:
        """Summarize an organization's audit trail over a period."""
        from ..db.repositories import AuditLogRepository

        await self.flush_buffer()
        repo = AuditLogRepository(session)
        summary, event_counts = await repo.summarize(organization_id, start_date, end_date)

        categories: dict[str, int] = {}
        for event_type, count in event_counts.items():
            category = event_category(event_type)
            categories[category] = categories.get(category, 0) + count

        top_events = sorted(event_counts.items(), key=lambda item: item[1], reverse=True)[:10]

        recent = await repo.count_since(
            organization_id, datetime.now(timezone.utc) - timedelta(hours=24)
        )

        return ComplianceReport(
            organization_id=organization_id,
            period=ReportPeriod(start=start_date, end=end_date),
            summary=ReportSummary(**summary),
            categories=categories,
            top_events=[EventCount(event_type=name, count=count) for name, count in top_events],
            compliance_status=ComplianceStatus(
                data_retention=True,
                access_control=recent > 0,
                audit_trail=True,
                encryption=True,
            ),
        )

    async def export_audit_logs(
        self,
        session: AsyncSession,
        organization_id: UUID,
        format: Literal["json", "csv"],
        filters: AuditLogFilters | None = None,
    ) -> str:
        """Export an organization's logs as JSON or CSV."""
        # Only an explicit limit narrows the export
        base = filters.model_dump(exclude_unset=True) if filters else {}
        limit = min(base.get("limit", MAX_EXPORT_ROWS), MAX_EXPORT_ROWS)
        base.update(organization_id=organization_id, limit=limit, offset=0)
        logs, _ = await self.get_audit_logs(session, AuditLogFilters(**base))

        if format == "json":
            return json.dumps([audit_log_to_dict(log) for log in logs], indent=2)

        output = io.StringIO()
        writer = csv.writer(output, quoting=csv.QUOTE_ALL, lineterminator="\n")
        writer.writerow(CSV_HEADERS)
        for log in logs:
            user = getattr(log, "user", None)
            writer.writerow(
                [
                    log.timestamp.isoformat() if log.timestamp else "",
                    log.event_type,
                    user.email if user and user.email else "System",
                    log.action,
                    "Yes" if log.success else "No",
                    json.dumps(log.details or {}),
                ]
            )
        return output.getvalue().rstrip("\n")

    async def retain_audit_logs(self, session: AsyncSession, retention_days: int = 365) -> int:
        """Delete non-critical logs older than the retention window."""
        from ..db.repositories import AuditLogRepository

        cutoff = datetime.now(timezone.utc) - timedelta(days=retention_days)
        deleted = await AuditLogRepository(session).delete_older_than(cutoff)
        logger.info(f"Deleted {deleted} audit logs older than {retention_days} days")
        return deleted


_audit_service: AuditService | None = None


def get_audit_service() -> AuditService:
    """Get the process-wide audit service."""
    global _audit_service

    if _audit_service is None:
        from ..api.config import get_settings

        settings = get_settings()
        _audit_service = AuditService(
            buffer_size=settings.audit_buffer_size,
            flush_interval=settings.audit_flush_interval,
        )
    return _audit_service
