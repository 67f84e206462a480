"""
Organization feature routes.
"""
from typing import Annotated, List
from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core.database.engine import get_db
from answly.features.users.models import User, UserRole
from answly.features.users.schemas import UserPublic
from answly.features.users.dependencies import require_roles
from answly.features.organizations.models import Organization
from answly.features.organizations.schemas import OrganizationCreate, OrganizationResponse, AddMember
from answly.features.organizations.dependencies import get_organization_by_id, get_member_organization
from answly.features.permissions.dependencies import record_audit_event, require_scope
from answly.features.permissions.models import PermissionScope
from answly.utils import get_logger


log = get_logger(__name__)
router = APIRouter(tags=["organizations"])


@router.post("", response_model=OrganizationResponse, status_code=status.HTTP_201_CREATED)
async def create_organization(
    org_data: OrganizationCreate,
    admin: Annotated[User, Depends(require_roles(UserRole.ADMIN))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Create a new organization (admin only)."""
    result = await db.execute(select(Organization).where(Organization.slug == org_data.slug))
    if result.scalar_one_or_none() is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Organization with slug '{org_data.slug}' already exists"
        )

    organization = Organization(name=org_data.name, slug=org_data.slug)
    db.add(organization)
    await db.commit()
    await db.refresh(organization)

    log.info("Organization %s (%s) created by %s", organization.id, organization.slug, admin.id)
    return organization


@router.get("/{organization_id}", response_model=OrganizationResponse)
async def get_organization(
    organization: Annotated[Organization, Depends(get_member_organization)]
):
    """Get an organization (members and admins)."""
    return organization


@router.get("/{organization_id}/members", response_model=List[UserPublic])
async def list_members(
    organization_id: str,
    _user: Annotated[User, Depends(require_scope(PermissionScope.MANAGE_MEMBERS))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """List an organization's members (requires MANAGE_MEMBERS)."""
    await get_organization_by_id(organization_id, db)

    result = await db.execute(
        select(User).where(User.organization_id == organization_id).order_by(User.name, User.id)
    )
    return result.scalars().all()


@router.post("/{organization_id}/members", response_model=UserPublic, status_code=status.HTTP_201_CREATED)
async def add_member(
    organization_id: str,
    member: AddMember,
    background_tasks: BackgroundTasks,
    request: Request,
    current_user: Annotated[User, Depends(require_scope(PermissionScope.MANAGE_MEMBERS))],
    db: Annotated[AsyncSession, Depends(get_db)]
):
    """Add a user to an organization (requires MANAGE_MEMBERS)."""
    organization = await get_organization_by_id(organization_id, db)

    result = await db.execute(select(User).where(User.id == member.user_id))
    user = result.scalar_one_or_none()

    if user is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="User not found"
        )

    if user.organization_id == organization.id:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User is already a member of this organization"
        )
    if user.organization_id is not None:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="User already belongs to another organization"
        )

    user.organization_id = organization.id
    await db.commit()
    await db.refresh(user)
    log.info("User %s added to organization %s by %s", user.id, organization.id, current_user.id)

    background_tasks.add_task(
        record_audit_event,
        user_id=current_user.id,
        action="add_member",
        resource_type="organization",
        resource_id=organization.id,
        organization_id=organization.id,
        details={"member_id": user.id},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )

    return user
