"""Buffered audit logging, compliance reports and exports."""

from .service import AuditService, get_audit_service
from .types import (
    AuditEventType,
    AuditLogEntry,
    AuditLogFilters,
    AuditSeverity,
    ComplianceReport,
)

__all__ = [
    "AuditService",
    "get_audit_service",
    "AuditEventType",
    "AuditLogEntry",
    "AuditLogFilters",
    "AuditSeverity",
    "ComplianceReport",
]
