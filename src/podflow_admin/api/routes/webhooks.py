"""Outbound webhook subscriptions."""

import logging
from typing import Annotated
from uuid import UUID

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...audit.service import get_audit_service
from ...audit.types import AuditEventType, AuditLogEntry, AuditSeverity
from ...core.types import WEBHOOK_EVENTS
from ...core.webhooks import build_test_payload, deliver_webhook, generate_webhook_secret
from ...db.models import User, Webhook
from ..config import APISettings, get_settings
from ..deps import get_db_session
from ..schemas import WebhookCreate, WebhookResponse, WebhookTestResponse, WebhookUpdate
from .auth import require_admin

logger = logging.getLogger(__name__)

router = APIRouter()


def _check_events(events: list[str]) -> None:
    invalid = [event for event in events if event not in WEBHOOK_EVENTS]
    if invalid:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Invalid events: {', '.join(invalid)}. "
            f"Allowed events: {', '.join(WEBHOOK_EVENTS)}",
        )


def _to_response(webhook: Webhook, secret: str | None = None) -> WebhookResponse:
    return WebhookResponse(
        id=UUID(str(webhook.id)),
        name=webhook.name,
        url=webhook.url,
        events=list(webhook.events or []),
        is_active=webhook.is_active,
        secret=secret,
        created_at=webhook.created_at,
        updated_at=webhook.updated_at,
        last_triggered_at=webhook.last_triggered_at,
        last_failure_at=webhook.last_failure_at,
        failure_count=webhook.failure_count or 0,
    )


async def _audit(event_type: AuditEventType, user: User, webhook_id: UUID, action: str) -> None:
    await get_audit_service().log(
        AuditLogEntry(
            event_type=event_type,
            severity=AuditSeverity.MEDIUM,
            user_id=user.id,
            organization_id=user.organization_id,
            entity_type="webhook",
            entity_id=str(webhook_id),
            action=action,
        )
    )


@router.get("", response_model=list[WebhookResponse])
async def list_webhooks(
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> list[WebhookResponse]:
    """List the organization's webhooks."""
    from ...db.repositories import WebhookRepository

    webhooks = await WebhookRepository(session).list_by_organization(user.organization_id)
    return [_to_response(w) for w in webhooks]


@router.post("", response_model=WebhookResponse, status_code=status.HTTP_201_CREATED)
async def create_webhook(
    webhook_data: WebhookCreate,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> WebhookResponse:
    """
    Create a webhook.

    The signing secret is only returned in this response.
    """
    from ...db.repositories import WebhookRepository

    _check_events(webhook_data.events)

    secret = generate_webhook_secret()
    webhook = await WebhookRepository(session).create(
        organization_id=user.organization_id,
        name=webhook_data.name,
        url=str(webhook_data.url),
        events=webhook_data.events,
        secret=secret,
        created_by=user.id,
    )

    await _audit(
        AuditEventType.WEBHOOK_CREATED, user, webhook.id, f"Webhook '{webhook_data.name}' created"
    )
    logger.info(f"Webhook {webhook.id} created for organization {user.organization_id}")

    return _to_response(webhook, secret=secret)


@router.put("/{webhook_id}", response_model=WebhookResponse)
async def update_webhook(
    webhook_id: UUID,
    webhook_data: WebhookUpdate,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> WebhookResponse:
    """Partially update a webhook."""
    from ...db.repositories import WebhookRepository

    repo = WebhookRepository(session)
    webhook = await repo.get(webhook_id, user.organization_id)

    if not webhook:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found",
        )

    updates = webhook_data.model_dump(exclude_unset=True, exclude_none=True)
    if "events" in updates:
        _check_events(updates["events"])
    if "url" in updates:
        updates["url"] = str(updates["url"])

    if updates:
        webhook = await repo.update(webhook, **updates)

    await _audit(
        AuditEventType.WEBHOOK_UPDATED,
        user,
        webhook_id,
        f"Webhook updated: {', '.join(sorted(updates)) or 'no changes'}",
    )

    return _to_response(webhook)


@router.delete("/{webhook_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_webhook(
    webhook_id: UUID,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> None:
    """Delete a webhook."""
    from ...db.repositories import WebhookRepository

    deleted = await WebhookRepository(session).delete(webhook_id, user.organization_id)

    if not deleted:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found",
        )

    await _audit(AuditEventType.WEBHOOK_DELETED, user, webhook_id, "Webhook deleted")


@router.post("/{webhook_id}/test", response_model=WebhookTestResponse)
async def test_webhook(
    webhook_id: UUID,
    user: Annotated[User, Depends(require_admin)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
    settings: Annotated[APISettings, Depends(get_settings)],
) -> WebhookTestResponse:
    """
    Send a signed ``webhook.test`` event.

    A failed delivery is recorded on the webhook and answered with 400.
    """
    from ...db.repositories import WebhookRepository

    repo = WebhookRepository(session)
    webhook = await repo.get(webhook_id, user.organization_id)

    if not webhook:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Webhook not found",
        )

    payload = build_test_payload(str(webhook.id), str(user.organization_id))
    result = await deliver_webhook(
        webhook.url, payload, webhook.secret, timeout=settings.webhook_timeout
    )

    if not result.success:
        await repo.record_failure(webhook)
        # Persist the failure counters before the 400 rolls the session back
        await session.commit()
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail={
                "message": "Webhook test failed",
                "status_code": result.status_code,
                "error": result.error,
                "duration_ms": result.duration_ms,
            },
        )

    await repo.record_success(webhook)
    return WebhookTestResponse(
        success=True,
        status_code=result.status_code,
        duration_ms=result.duration_ms,
        message="Webhook test successful",
    )
