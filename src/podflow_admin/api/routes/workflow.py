"""Campaign workflow automation settings."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...audit.service import get_audit_service
from ...audit.types import AuditEventType, AuditLogEntry, AuditSeverity
from ...core.cache import get_settings_cache
from ...core.types import WorkflowSettings, merge_settings
from ...core.workflow import SimulationRequest, SimulationResult, simulate_transition
from ...db.models import User
from ..deps import get_db_session
from .auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()

CACHE_AREA = "workflow"
SETTINGS_SECTION = "workflow_automation"


async def load_workflow_settings(session: AsyncSession, org_id: UUID) -> WorkflowSettings:
    """Workflow settings for an organization, served from the cache when warm."""
    from ...db.repositories import OrganizationRepository

    cache = await get_settings_cache()
    if cache is not None:
        cached = await cache.get(CACHE_AREA, org_id)
        if cached is not None:
            return WorkflowSettings.model_validate(cached)

    stored = await OrganizationRepository(session).get_settings_section(org_id, SETTINGS_SECTION)
    if stored is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found",
        )

    settings: WorkflowSettings = merge_settings(WorkflowSettings, stored)
    if cache is not None:
        await cache.set(CACHE_AREA, org_id, settings.model_dump(mode="json"))
    return settings


@router.get("", response_model=WorkflowSettings)
async def get_workflow_settings(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> WorkflowSettings:
    """Workflow automation settings merged over defaults."""
    return await load_workflow_settings(session, user.organization_id)


@router.put("", response_model=WorkflowSettings)
async def update_workflow_settings(
    workflow: WorkflowSettings,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> WorkflowSettings:
    """Replace the workflow automation settings."""
    from ...db.repositories import OrganizationRepository

    value = workflow.model_dump(mode="json")
    org = await OrganizationRepository(session).update_settings_section(
        user.organization_id, SETTINGS_SECTION, value
    )
    if org is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found",
        )

    cache = await get_settings_cache()
    if cache is not None:
        await cache.invalidate(CACHE_AREA, user.organization_id)

    await get_audit_service().log(
        AuditLogEntry(
            event_type=AuditEventType.SETTINGS_CHANGED,
            severity=AuditSeverity.MEDIUM,
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type="workflow_automation",
            entity_id=str(user.organization_id),
            action="Workflow automation settings updated",
            details={"enabled": workflow.enabled},
        )
    )
    logger.info(f"Workflow settings updated for organization {user.organization_id}")

    return workflow


@router.post("/simulate", response_model=SimulationResult)
async def simulate_workflow(
    simulation: SimulationRequest,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> SimulationResult:
    """List the actions the current settings would trigger. Nothing is changed."""
    settings = await load_workflow_settings(session, user.organization_id)
    return simulate_transition(settings, simulation)
