"""Request-level audit trail for mutating API calls."""

import logging
import time
from collections.abc import Awaitable, Callable
from typing import Any, cast
from uuid import UUID

from fastapi import HTTPException, Request, Response, status
from starlette.middleware.base import BaseHTTPMiddleware

from .service import extract_request_metadata, get_audit_service
from .types import AuditEventType, AuditLogEntry, AuditSeverity

logger = logging.getLogger(__name__)

AUDITED_METHODS = frozenset({"POST", "PUT", "PATCH", "DELETE"})


def _parse_uuid(value: Any) -> UUID | None:
    try:
        return UUID(str(value)) if value else None
    except ValueError:
        return None


def token_identity(request: Request) -> tuple[UUID | None, UUID | None]:
    """(user id, organization id) from the bearer token, when it is valid."""
    auth_header = request.headers.get("Authorization", "")
    if not auth_header.startswith("Bearer "):
        return None, None

    from ..api.config import get_settings
    from ..api.routes.auth import verify_token

    try:
        payload = verify_token(auth_header.split(" ", 1)[1], get_settings())
    except HTTPException:
        return None, None
    return _parse_uuid(payload.get("sub")), _parse_uuid(payload.get("org"))


def classify_response(status_code: int) -> tuple[AuditEventType, AuditSeverity]:
    """Audit event and severity for a response status."""
    if status_code in (status.HTTP_401_UNAUTHORIZED, status.HTTP_403_FORBIDDEN):
        return AuditEventType.PERMISSION_VIOLATION, AuditSeverity.MEDIUM
    if status_code == status.HTTP_429_TOO_MANY_REQUESTS:
        return AuditEventType.API_RATE_LIMIT_EXCEEDED, AuditSeverity.MEDIUM
    return AuditEventType.API_REQUEST, AuditSeverity.LOW


class AuditMiddleware(BaseHTTPMiddleware):
    """
    Log an audit entry for every mutating request under ``path_prefix``.

    The entry is logged once the response is produced and goes through the
    buffered pipeline. When it fills the buffer the flush runs before the
    response is returned; a failed flush is re-queued, never raised.
    """

    def __init__(self, app: Any, path_prefix: str = "/api/") -> None:
        super().__init__(app)
        self.path_prefix = path_prefix

    async def dispatch(
        self, request: Request, call_next: Callable[[Request], Awaitable[Response]]
    ) -> Response:
        path = request.url.path
        if request.method not in AUDITED_METHODS or not path.startswith(self.path_prefix):
            return cast(Response, await call_next(request))

        start_time = time.perf_counter()
        response = cast(Response, await call_next(request))
        duration_ms = round((time.perf_counter() - start_time) * 1000, 2)

        user_id, organization_id = token_identity(request)
        event_type, severity = classify_response(response.status_code)

        await get_audit_service().log(
            AuditLogEntry(
                event_type=event_type,
                severity=severity,
                user_id=user_id,
                organization_id=organization_id,
                entity_type="api_request",
                entity_id=path,
                action=f"{request.method} {path}",
                details={
                    "method": request.method,
                    "path": path,
                    "status_code": response.status_code,
                    "duration_ms": duration_ms,
                },
                metadata=extract_request_metadata(request),
                success=response.status_code < 400,
            )
        )

        return response
