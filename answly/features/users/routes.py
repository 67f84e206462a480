"""
User feature routes.
"""
from typing import Annotated
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core.database.engine import get_db
from answly.features.users.models import User
from answly.features.users.schemas import UserResponse, UserPublic, UpdateUserRole
from answly.features.users.dependencies import get_current_user, get_current_admin_user
from answly.features.permissions.dependencies import record_audit_event
from answly.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["users"])


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(
    user: Annotated[User, Depends(get_current_user)]
):
    """Get current authenticated user's profile."""
    return user


@router.get("/{user_id}", response_model=UserPublic)
async def get_user_by_id(
    user_id: str,
    _user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Get public user profile by ID."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    return user


# Admin-only routes
@router.patch("/{user_id}/role", response_model=UserResponse)
async def update_user_role(
    user_id: str,
    update: UpdateUserRole,
    background_tasks: BackgroundTasks,
    request: Request,
    admin: Annotated[User, Depends(get_current_admin_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Change a user's role (admin only)."""
    result = await db.execute(select(User).where(User.id == user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    # Prevent self-demotion
    if user.id == admin.id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Cannot modify your own role"
        )

    previous = user.role
    user.role = update.role
    await db.commit()
    await db.refresh(user)
    log.info("User %s role changed %s -> %s by %s", user.id, previous.value, user.role.value, admin.id)

    background_tasks.add_task(
        record_audit_event,
        user_id=admin.id,
        action="change_role",
        resource_type="user",
        resource_id=user.id,
        organization_id=user.organization_id,
        details={"from": previous.value, "to": user.role.value},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )

    return user
