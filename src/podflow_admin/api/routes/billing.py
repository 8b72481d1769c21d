"""Billing automation settings and advertiser pre-bill flags."""

import logging
from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...audit.service import get_audit_service
from ...audit.types import AuditEventType, AuditLogEntry, AuditSeverity
from ...core.types import BillingSettingsData
from ...db.models import BillingSettings, PreBillFlag, User
from ..deps import get_db_session
from ..schemas import PreBillFlagCreate, PreBillFlagResponse
from .auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()

_BILLING_COLUMNS = tuple(
    name for name in BillingSettingsData.model_fields if name != "email_settings"
)


def _settings_from_row(row: BillingSettings | None) -> BillingSettingsData:
    if row is None:
        return BillingSettingsData()
    values: dict[str, Any] = {name: getattr(row, name) for name in _BILLING_COLUMNS}
    if row.email_settings:
        values["email_settings"] = row.email_settings
    return BillingSettingsData.model_validate(values)


def _flag_response(flag: PreBillFlag) -> PreBillFlagResponse:
    return PreBillFlagResponse(
        id=UUID(str(flag.id)),
        advertiser_id=flag.advertiser_id,
        advertiser_name=flag.advertiser_name,
        reason=flag.reason,
        notes=flag.notes,
        flagged_by=UUID(str(flag.flagged_by)) if flag.flagged_by else None,
        flagged_at=flag.flagged_at,
        is_active=flag.is_active,
    )


async def _audit(
    event_type: AuditEventType, user: User, entity_type: str, entity_id: str, action: str
) -> None:
    await get_audit_service().log(
        AuditLogEntry(
            event_type=event_type,
            severity=AuditSeverity.MEDIUM,
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type=entity_type,
            entity_id=entity_id,
            action=action,
        )
    )


@router.get("/settings", response_model=BillingSettingsData)
async def get_billing_settings(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> BillingSettingsData:
    """Billing settings, or the defaults when none are stored."""
    from ...db.repositories import BillingSettingsRepository

    row = await BillingSettingsRepository(session).get(user.organization_id)
    return _settings_from_row(row)


@router.put("/settings", response_model=BillingSettingsData)
async def update_billing_settings(
    billing: BillingSettingsData,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> BillingSettingsData:
    """Create or replace billing settings."""
    from ...db.repositories import BillingSettingsRepository

    row = await BillingSettingsRepository(session).upsert(
        user.organization_id, **billing.model_dump(mode="json")
    )

    await _audit(
        AuditEventType.SETTINGS_CHANGED,
        user,
        "billing_settings",
        str(user.organization_id),
        "Billing settings updated",
    )
    logger.info(f"Billing settings updated for organization {user.organization_id}")

    return _settings_from_row(row)


@router.get("/pre-bill", response_model=list[PreBillFlagResponse])
async def list_pre_bill_flags(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> list[PreBillFlagResponse]:
    """Advertisers currently flagged for pre-billing."""
    from ...db.repositories import PreBillFlagRepository

    flags = await PreBillFlagRepository(session).list_active(user.organization_id)
    return [_flag_response(f) for f in flags]


@router.post(
    "/pre-bill", response_model=PreBillFlagResponse, status_code=status.HTTP_201_CREATED
)
async def flag_advertiser(
    flag_data: PreBillFlagCreate,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> PreBillFlagResponse:
    """Flag an advertiser for pre-billing (updates an existing active flag)."""
    from ...db.repositories import PreBillFlagRepository

    flag = await PreBillFlagRepository(session).flag(
        user.organization_id,
        advertiser_id=flag_data.advertiser_id,
        reason=flag_data.reason,
        advertiser_name=flag_data.advertiser_name,
        notes=flag_data.notes,
        flagged_by=user.id,
    )

    await _audit(
        AuditEventType.SETTINGS_CHANGED,
        user,
        "pre_bill_flag",
        flag_data.advertiser_id,
        f"Advertiser flagged for pre-billing: {flag_data.reason}",
    )

    return _flag_response(flag)


@router.delete("/pre-bill/{advertiser_id}", status_code=status.HTTP_204_NO_CONTENT)
async def unflag_advertiser(
    advertiser_id: str,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> None:
    """Remove an advertiser's pre-bill flag."""
    from ...db.repositories import PreBillFlagRepository

    removed = await PreBillFlagRepository(session).deactivate(user.organization_id, advertiser_id)

    if not removed:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Pre-bill flag not found",
        )

    await _audit(
        AuditEventType.SETTINGS_CHANGED,
        user,
        "pre_bill_flag",
        advertiser_id,
        "Pre-bill flag removed",
    )
