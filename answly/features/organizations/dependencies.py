"""
Organization-related dependency injection functions.
"""
from typing import Annotated
from fastapi import Depends, HTTPException, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core.database.engine import get_db
from answly.core.exceptions import Forbidden
from answly.features.users.models import User
from answly.features.users.dependencies import get_current_user
from answly.features.organizations.models import Organization


async def get_organization_by_id(
    organization_id: str,
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get organization by ID or raise 404.

    Raises:
        HTTPException: 404 if organization not found
    """
    result = await db.execute(
        select(Organization).where(Organization.id == organization_id)
    )
    organization = result.scalar_one_or_none()

    if organization is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Organization not found"
        )

    return organization


async def get_member_organization(
    organization_id: str,
    user: Annotated[User, Depends(get_current_user)],
    db: Annotated[AsyncSession, Depends(get_db)]
) -> Organization:
    """
    Get organization and verify the user belongs to it (admins always pass).

    Raises:
        HTTPException: 404 if org not found
        Forbidden: 403 if user is not a member
    """
    organization = await get_organization_by_id(organization_id, db)

    if not user.is_admin and user.organization_id != organization.id:
        raise Forbidden("You are not a member of this organization")

    return organization
