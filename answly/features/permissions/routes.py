"""
Permission management API routes.

Provides endpoints for granting and revoking scopes, checking permissions,
and reading the audit log.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status, Request, BackgroundTasks
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core import config
from answly.core.database.engine import get_db
from answly.core.exceptions import Forbidden, MissingOrganization
from answly.features.users.dependencies import get_current_user, limiter
from answly.features.users.models import User
from answly.features.organizations.dependencies import get_organization_by_id
from answly.features.permissions.evaluator import PermissionEvaluator
from answly.features.permissions.models import AuditLog, PermissionScope
from answly.features.permissions.schemas import (
    GrantCreate,
    GrantResponse,
    PermissionCheckRequest,
    PermissionCheckResponse,
    AuditLogResponse,
    AuditLogListResponse,
)
from answly.features.permissions.store import GrantStore
from answly.features.permissions.dependencies import (
    ensure_scope,
    get_grant_store,
    get_permission_evaluator,
    record_audit_event,
    require_scope,
)
from answly.utils import get_logger


log = get_logger(__name__)
router = APIRouter()


# ============================================================================
# Grant Routes
# ============================================================================

@router.post("/grants", response_model=GrantResponse, status_code=status.HTTP_201_CREATED)
async def create_grant(
    grant: GrantCreate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[GrantStore, Depends(get_grant_store)],
    evaluator: Annotated[PermissionEvaluator, Depends(get_permission_evaluator)],
    current_user: Annotated[User, Depends(get_current_user)]
):
    """Grant a scope to a user (requires MANAGE_PERMISSIONS in the organization)."""
    await ensure_scope(evaluator, current_user, grant.organization_id, PermissionScope.MANAGE_PERMISSIONS)
    await get_organization_by_id(grant.organization_id, db)

    result = await db.execute(select(User).where(User.id == grant.user_id))
    if result.scalar_one_or_none() is None:
        raise HTTPException(status_code=404, detail="User not found")

    db_grant = await store.grant(
        user_id=grant.user_id,
        organization_id=grant.organization_id,
        scope=grant.scope,
        granted_by=current_user.id,
        expires_at=grant.expires_at
    )
    await db.commit()
    await db.refresh(db_grant)

    background_tasks.add_task(
        record_audit_event,
        user_id=current_user.id,
        action="grant",
        resource_type="permission_grant",
        resource_id=db_grant.id,
        organization_id=grant.organization_id,
        details={
            "user_id": grant.user_id,
            "scope": grant.scope.value,
            "expires_at": db_grant.expires_at.isoformat() if db_grant.expires_at else None,
        },
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )

    return db_grant


@router.delete("/grants/{organization_id}/{user_id}/{scope}", status_code=status.HTTP_204_NO_CONTENT)
async def revoke_grant(
    organization_id: str,
    user_id: str,
    scope: PermissionScope,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    store: Annotated[GrantStore, Depends(get_grant_store)],
    current_user: Annotated[User, Depends(require_scope(PermissionScope.MANAGE_PERMISSIONS))]
):
    """Revoke a scope from a user (requires MANAGE_PERMISSIONS in the organization)."""
    await store.revoke(user_id, organization_id, scope)
    await db.commit()

    background_tasks.add_task(
        record_audit_event,
        user_id=current_user.id,
        action="revoke",
        resource_type="permission_grant",
        resource_id=user_id,
        organization_id=organization_id,
        details={"user_id": user_id, "scope": scope.value},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )

    return None


@router.get("/grants/{organization_id}", response_model=List[GrantResponse])
async def list_grants(
    organization_id: str,
    store: Annotated[GrantStore, Depends(get_grant_store)],
    _user: Annotated[User, Depends(require_scope(PermissionScope.MANAGE_PERMISSIONS))],
    user_id: Optional[str] = None,
    include_expired: bool = False
):
    """List grants in an organization, optionally for one user."""
    return await store.list_grants(organization_id, user_id=user_id, include_expired=include_expired)


# ============================================================================
# Permission Check Routes
# ============================================================================

@router.post("/check", response_model=PermissionCheckResponse)
@limiter.limit(config.SESSION_RATE_LIMIT)
async def check_permission(
    request: Request,
    check_request: PermissionCheckRequest,
    db: Annotated[AsyncSession, Depends(get_db)],
    evaluator: Annotated[PermissionEvaluator, Depends(get_permission_evaluator)],
    current_user: Annotated[User, Depends(get_current_user)]
):
    """Check if the current user (or, for admins, any user) holds a scope."""
    target_id = check_request.user_id or current_user.id
    organization_id = check_request.organization_id

    if target_id != current_user.id:
        if not current_user.is_admin:
            raise Forbidden("Not authorized to check other users' permissions")
        if not organization_id:
            result = await db.execute(select(User.organization_id).where(User.id == target_id))
            organization_id = result.scalar_one_or_none()
    elif not organization_id:
        organization_id = current_user.organization_id

    if not organization_id:
        raise MissingOrganization("Organization ID required")

    has_perm = await evaluator.has_permission(target_id, organization_id, check_request.scope)

    return PermissionCheckResponse(
        has_permission=has_perm,
        user_id=target_id,
        organization_id=organization_id,
        scope=check_request.scope,
        reason=None if has_perm else "Permission denied"
    )


# ============================================================================
# Audit Log Routes
# ============================================================================

@router.get("/audit-logs", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    evaluator: Annotated[PermissionEvaluator, Depends(get_permission_evaluator)],
    current_user: Annotated[User, Depends(get_current_user)],
    skip: int = 0,
    limit: int = 50,
    organization_id: Optional[str] = None,
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    resource_type: Optional[str] = None
):
    """List audit logs. Non-admins must name an organization where they hold VIEW_AUDIT_LOGS."""
    if not current_user.is_admin:
        if not organization_id:
            raise MissingOrganization("organization_id is required")
        await ensure_scope(evaluator, current_user, organization_id, PermissionScope.VIEW_AUDIT_LOGS)

    stmt = select(AuditLog)

    if organization_id:
        stmt = stmt.where(AuditLog.organization_id == organization_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if resource_type:
        stmt = stmt.where(AuditLog.resource_type == resource_type)

    count_stmt = select(func.count()).select_from(stmt.subquery())
    total_result = await db.execute(count_stmt)
    total = total_result.scalar() or 0

    stmt = stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
    result = await db.execute(stmt)
    logs = result.scalars().all()

    pages = (total + limit - 1) // limit if limit > 0 else 0
    page = (skip // limit) + 1 if limit > 0 else 1

    return AuditLogListResponse(
        items=[AuditLogResponse.model_validate(entry) for entry in logs],
        total=total,
        page=page,
        page_size=limit,
        pages=pages
    )
