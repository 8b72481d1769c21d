"""Organization email and notification settings areas."""

import logging
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...audit.service import get_audit_service
from ...audit.types import AuditEventType, AuditLogEntry, AuditSeverity
from ...core.types import EmailSettings, NotificationSettings, merge_settings
from ...db.models import User
from ..deps import get_db_session
from ..schemas import EmailSettingsEnvelope
from .auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()


async def _read_section(session: AsyncSession, org_id: UUID, section: str) -> dict[str, Any]:
    from ...db.repositories import OrganizationRepository

    stored = await OrganizationRepository(session).get_settings_section(org_id, section)
    if stored is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found",
        )
    return stored


async def _write_section(
    session: AsyncSession, user: User, section: str, value: dict[str, Any]
) -> None:
    from ...db.repositories import OrganizationRepository

    org = await OrganizationRepository(session).update_settings_section(
        user.organization_id, section, value
    )
    if org is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found",
        )

    await get_audit_service().log(
        AuditLogEntry(
            event_type=AuditEventType.SETTINGS_CHANGED,
            severity=AuditSeverity.MEDIUM,
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type="organization_settings",
            entity_id=section,
            action=f"{section.capitalize()} settings updated",
        )
    )
    logger.info(f"{section} settings updated for organization {user.organization_id}")


@router.get("/organization/email-settings", response_model=EmailSettingsEnvelope)
async def get_email_settings(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> EmailSettingsEnvelope:
    """Email settings, with defaults for anything not stored."""
    stored = await _read_section(session, user.organization_id, "email")
    return EmailSettingsEnvelope(settings=merge_settings(EmailSettings, stored))


@router.put("/organization/email-settings", response_model=EmailSettingsEnvelope)
async def update_email_settings(
    payload: EmailSettingsEnvelope,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> EmailSettingsEnvelope:
    """Replace the email settings."""
    value = payload.settings.model_dump(mode="json")
    await _write_section(session, user, "email", value)
    return EmailSettingsEnvelope(settings=merge_settings(EmailSettings, value))


@router.get("/settings/notifications", response_model=NotificationSettings)
async def get_notification_settings(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> NotificationSettings:
    """Notification routing, with the default event catalogue filled in."""
    stored = await _read_section(session, user.organization_id, "notifications")
    settings: NotificationSettings = merge_settings(NotificationSettings, stored)
    return settings


@router.put("/settings/notifications", response_model=NotificationSettings)
async def update_notification_settings(
    payload: NotificationSettings,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> NotificationSettings:
    """Replace the notification settings."""
    value = payload.model_dump(mode="json")
    await _write_section(session, user, "notifications", value)
    return payload
