"""Organization API key management."""

import hashlib
import logging
import secrets
from datetime import datetime, timedelta, timezone
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...audit.service import get_audit_service
from ...audit.types import AuditEventType, AuditLogEntry, AuditSeverity
from ...core.types import SecuritySettings, merge_settings
from ...db.models import APIKey, User
from ..config import APISettings, get_settings
from ..deps import get_db_session
from ..schemas import APIKeyCreate, APIKeyListItem, APIKeyListResponse, APIKeyResponse
from .auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()

KEY_PREFIX_LENGTH = 12


def generate_api_key(environment: str = "live") -> tuple[str, str, str]:
    """Generate an API key. Returns (key, sha256 hash, display prefix)."""
    key = f"pk_{environment}_{secrets.token_hex(24)}"
    key_hash = hashlib.sha256(key.encode()).hexdigest()
    return key, key_hash, key[:KEY_PREFIX_LENGTH]


def key_status(api_key: APIKey, now: datetime | None = None) -> str:
    """``revoked``, ``expired`` or ``active``."""
    now = now or datetime.now(timezone.utc)
    if api_key.revoked:
        return "revoked"
    expires_at = api_key.expires_at
    if expires_at is not None:
        if expires_at.tzinfo is None:
            expires_at = expires_at.replace(tzinfo=timezone.utc)
        if expires_at <= now:
            return "expired"
    return "active"


async def _load_policy(session: AsyncSession, org_id: UUID) -> SecuritySettings:
    from ...db.repositories import OrganizationRepository

    stored = await OrganizationRepository(session).get_settings_section(org_id, "security")
    return merge_settings(SecuritySettings, stored)  # type: ignore[no-any-return]


@router.get("", response_model=APIKeyListResponse)
async def list_api_keys(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> APIKeyListResponse:
    """
    List the organization's API keys with their status.

    The key policy from the security settings is returned alongside.
    """
    from ...db.repositories import APIKeyRepository

    org_id = user.organization_id
    keys = await APIKeyRepository(session).list_by_organization(org_id)
    policy = await _load_policy(session, org_id)

    now = datetime.now(timezone.utc)
    items = []
    for k in keys:
        state = key_status(k, now)
        items.append(
            APIKeyListItem(
                id=UUID(str(k.id)),
                name=k.name,
                description=k.description,
                prefix=k.prefix,
                scopes=list(k.scopes or []),
                status=state,
                is_expired=state == "expired",
                created_by=UUID(str(k.created_by)) if k.created_by else None,
                created_at=k.created_at,
                expires_at=k.expires_at,
                last_used_at=k.last_used_at,
            )
        )

    return APIKeyListResponse(keys=items, policy=policy.api_keys.model_dump())


@router.post("", response_model=APIKeyResponse, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    key_data: APIKeyCreate,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[APISettings, Depends(get_settings)],
) -> APIKeyResponse:
    """
    Create a new API key for the organization.

    The full key is only returned once upon creation.
    """
    from ...db.repositories import APIKeyRepository

    org_id = user.organization_id
    policy = (await _load_policy(session, org_id)).api_keys

    if not policy.enabled:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="API keys are disabled for this organization",
        )

    invalid_scopes = [scope for scope in key_data.scopes if scope not in policy.allowed_scopes]
    if invalid_scopes:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid scopes: {', '.join(invalid_scopes)}. "
            f"Allowed scopes: {', '.join(policy.allowed_scopes)}",
        )

    repo = APIKeyRepository(session)
    active_count = await repo.count_active_by_creator(org_id, user.id)
    if active_count >= policy.max_keys_per_user:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Maximum of {policy.max_keys_per_user} active API keys per user reached",
        )

    expires_in_days = key_data.expires_in_days
    if expires_in_days is None and policy.require_expiry:
        expires_in_days = policy.default_expiry_days
    expires_at = (
        datetime.now(timezone.utc) + timedelta(days=expires_in_days) if expires_in_days else None
    )

    key, key_hash, prefix = generate_api_key(settings.api_key_environment)
    api_key = await repo.create(
        organization_id=org_id,
        name=key_data.name,
        description=key_data.description,
        key_hash=key_hash,
        prefix=prefix,
        scopes=key_data.scopes,
        created_by=user.id,
        expires_at=expires_at,
    )

    await get_audit_service().log(
        AuditLogEntry(
            event_type=AuditEventType.API_KEY_CREATED,
            severity=AuditSeverity.MEDIUM,
            user_id=user.id,
            organization_id=org_id,
            entity_type="api_key",
            entity_id=str(api_key.id),
            action=f"API key '{key_data.name}' created",
            details={"scopes": key_data.scopes, "prefix": prefix},
        )
    )
    logger.info(f"API key {prefix}... created for organization {org_id}")

    return APIKeyResponse(
        id=UUID(str(api_key.id)),
        name=api_key.name,
        key=key,  # Only returned once
        prefix=prefix,
        scopes=list(api_key.scopes),
        created_at=api_key.created_at,
        expires_at=api_key.expires_at,
    )


@router.delete("/{key_id}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_api_key(
    key_id: UUID,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> None:
    """
    Revoke an API key.
    """
    from ...db.repositories import APIKeyRepository

    revoked = await APIKeyRepository(session).revoke(key_id, user.organization_id)

    if not revoked:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="API key not found",
        )

    await get_audit_service().log(
        AuditLogEntry(
            event_type=AuditEventType.API_KEY_REVOKED,
            severity=AuditSeverity.HIGH,
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type="api_key",
            entity_id=str(key_id),
            action="API key revoked",
        )
    )
