"""Organization security settings with ETag-based optimistic concurrency."""

import logging
from datetime import datetime, timezone
from typing import Annotated, Any

from fastapi import APIRouter, Depends, Header, HTTPException, Request, Response, status
from fastapi.responses import JSONResponse
from sqlalchemy.ext.asyncio import AsyncSession

from ...audit.logger import create_audit_log
from ...audit.service import get_audit_service
from ...audit.types import AuditEventType, AuditLogEntry, AuditSeverity
from ...core.types import SecuritySettings, SecuritySettingsUpdate, merge_settings
from ...db.models import User
from ..deps import get_db_session
from .auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()

CACHE_CONTROL = "private, no-cache"


def make_etag(settings: SecuritySettings) -> str:
    """``"<version>-<last_updated_at epoch ms>"``, quoted."""
    updated_at = settings.last_updated_at
    millis = int(updated_at.timestamp() * 1000) if updated_at else 0
    return f'"{settings.version}-{millis}"'


def parse_if_match(value: str) -> int:
    """Version number carried by an If-Match header."""
    tag = value.strip()
    if tag.startswith("W/"):
        tag = tag[2:]
    tag = tag.strip('"')
    try:
        return int(tag.split("-", 1)[0])
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid If-Match header: {value}",
        )


async def _load(
    session: AsyncSession, user: User, for_update: bool = False
) -> SecuritySettings:
    from ...db.repositories import OrganizationRepository

    stored = await OrganizationRepository(session).get_settings_section(
        user.organization_id, "security", for_update=for_update
    )
    if stored is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found",
        )
    settings: SecuritySettings = merge_settings(SecuritySettings, stored)
    return settings


@router.get("", response_model=SecuritySettings)
async def get_security_settings(
    response: Response,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> SecuritySettings:
    """Security settings merged over defaults, with an ETag for later updates."""
    settings = await _load(session, user)
    response.headers["ETag"] = make_etag(settings)
    response.headers["Cache-Control"] = CACHE_CONTROL
    return settings


@router.put("", response_model=SecuritySettings)
async def update_security_settings(
    request: Request,
    response: Response,
    update: SecuritySettingsUpdate,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    if_match: Annotated[str | None, Header()] = None,
) -> Any:
    """
    Update security settings.

    When an If-Match header is sent, or the body carries a version above 1,
    the stored version must match the expected one or the update is
    rejected with 409. A successful update bumps the version.
    """
    from ...db.repositories import OrganizationRepository

    invalid = update.invalid_cidrs()
    if invalid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid CIDR notation: {invalid[0]}",
        )

    # Row lock held until commit so concurrent If-Match checks serialize
    current = await _load(session, user, for_update=True)

    expected_version = parse_if_match(if_match) if if_match else update.version
    if if_match or (update.version or 0) > 1:
        if current.version != expected_version:
            logger.warning(
                f"Security settings conflict for organization {user.organization_id}: "
                f"stored v{current.version}, expected v{expected_version}"
            )
            return JSONResponse(
                status_code=status.HTTP_409_CONFLICT,
                content={
                    "detail": "Security settings were modified by another user",
                    "current_version": current.version,
                    "expected_version": expected_version,
                },
                headers={"ETag": make_etag(current)},
            )

    before = current.model_dump(mode="json")
    changes = update.model_dump(exclude_unset=True, exclude_none=True, exclude={"version"})

    try:
        updated = SecuritySettings.model_validate(
            {
                **before,
                **changes,
                "version": current.version + 1,
                "last_updated_at": datetime.now(timezone.utc),
                "last_updated_by": str(user.id),
            }
        )
        after = updated.model_dump(mode="json")

        await OrganizationRepository(session).update_settings_section(
            user.organization_id, "security", after
        )
        await create_audit_log(
            session,
            AuditEventType.SECURITY_SETTINGS_UPDATED,
            severity=AuditSeverity.HIGH,
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type="security_settings",
            entity_id=str(user.organization_id),
            action="Security settings updated",
            changes={"before": before, "after": after},
            details={"sections": sorted(changes), "version": updated.version},
            request=request,
        )
    except Exception as e:
        # The transaction is rolled back, so record the failure outside it
        await get_audit_service().log(
            AuditLogEntry(
                event_type=AuditEventType.SECURITY_SETTINGS_UPDATED,
                severity=AuditSeverity.HIGH,
                user_id=user.id,
                organization_id=user.organization_id,
                entity_type="security_settings",
                entity_id=str(user.organization_id),
                action="Security settings update failed",
                details={"sections": sorted(changes)},
                success=False,
                error_message=str(e),
            )
        )
        raise

    logger.info(
        f"Security settings for organization {user.organization_id} "
        f"updated to v{updated.version}"
    )

    response.headers["ETag"] = make_etag(updated)
    response.headers["Cache-Control"] = CACHE_CONTROL
    return updated
