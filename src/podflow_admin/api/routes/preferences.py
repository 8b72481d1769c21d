"""Per-user sidebar customization."""

from typing import Annotated

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.ext.asyncio import AsyncSession

from ...core.types import duplicate_menu_ids
from ...db.models import User
from ..deps import get_db_session
from ..schemas import SidebarPreferences
from .auth import require_organization

router = APIRouter()


@router.get("/preferences", response_model=SidebarPreferences)
async def get_preferences(
    user: Annotated[User, Depends(require_organization)],
) -> SidebarPreferences:
    """The current user's sidebar layout (empty when never customized)."""
    stored = user.preferences or {}
    return SidebarPreferences(
        sidebar_customization=stored.get("sidebar_customization") or [],
        sidebar_customization_version=stored.get("sidebar_customization_version", 1),
    )


@router.put("/preferences", response_model=SidebarPreferences)
async def update_preferences(
    preferences: SidebarPreferences,
    user: Annotated[User, Depends(require_organization)],
    session: Annotated[AsyncSession, Depends(get_db_session)],
) -> SidebarPreferences:
    """
    Save the sidebar layout.

    Menu ids must be unique across the whole tree. Other stored preferences
    are kept.
    """
    from ...db.repositories import UserRepository

    duplicates = duplicate_menu_ids(preferences.sidebar_customization)
    if duplicates:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=f"Duplicate menu item ids: {', '.join(sorted(duplicates))}",
        )

    await UserRepository(session).update_preferences(user, preferences.model_dump(mode="json"))
    return preferences
