"""
Permission dependencies for route protection, plus audit logging helpers.

Implements:
- Organization resolution for scope checks
- require_scope(), the FastAPI guard around PermissionEvaluator
- Audit log writers
"""
from typing import Annotated, Any, Dict, Optional
from fastapi import Depends, Request
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core.clock import Clock, get_clock
from answly.core.database.engine import AsyncSessionLocal, get_db
from answly.core.exceptions import Forbidden, MissingOrganization
from answly.features.permissions.evaluator import PermissionEvaluator
from answly.features.permissions.models import AuditLog, PermissionScope
from answly.features.permissions.store import GrantStore
from answly.features.users.dependencies import get_current_user
from answly.features.users.models import User
from answly.utils import get_logger


log = get_logger(__name__)


async def get_permission_evaluator(
    db: Annotated[AsyncSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> PermissionEvaluator:
    return PermissionEvaluator.default(db, clock)


async def get_grant_store(
    db: Annotated[AsyncSession, Depends(get_db)],
    clock: Annotated[Clock, Depends(get_clock)],
) -> GrantStore:
    return GrantStore(db, clock)


def resolve_organization_id(request: Request, user: Optional[User]) -> str:
    """
    Pick the organization a scope check applies to.

    Order: ``organization_id`` path parameter, the organization attached by
    the API key gate, then the user's own organization.

    Raises:
        MissingOrganization: none of the sources provide one
    """
    organization_id = (
        request.path_params.get("organization_id")
        or getattr(request.state, "organization_id", None)
        or (user.organization_id if user else None)
    )
    if not organization_id:
        raise MissingOrganization()
    return organization_id


async def ensure_scope(
    evaluator: PermissionEvaluator,
    user: User,
    organization_id: str,
    scope: PermissionScope
) -> None:
    """Raise Forbidden unless ``user`` holds ``scope`` in ``organization_id``."""
    if not await evaluator.has_permission(user.id, organization_id, scope):
        raise Forbidden(f"Permission denied: requires {scope.value}")


def require_scope(scope: PermissionScope):
    """
    FastAPI dependency to require a scope in the request's organization.

    Usage:
        @router.get("/{organization_id}/members")
        async def list_members(
            user: User = Depends(require_scope(PermissionScope.MANAGE_MEMBERS))
        ):
            # User holds MANAGE_MEMBERS in organization_id (or is ADMIN)
            pass

    Raises:
        MissingOrganization: 400 if no organization can be resolved
        Forbidden: 403 if the user lacks the scope
    """
    async def scope_dependency(
        request: Request,
        evaluator: Annotated[PermissionEvaluator, Depends(get_permission_evaluator)],
        current_user: Annotated[User, Depends(get_current_user)],
    ) -> User:
        organization_id = resolve_organization_id(request, current_user)
        await ensure_scope(evaluator, current_user, organization_id, scope)
        return current_user

    return scope_dependency


# ============================================================================
# Audit Logging
# ============================================================================

async def create_audit_log(
    db: AsyncSession,
    user_id: Optional[str],
    action: str,
    resource_type: str,
    resource_id: Optional[str] = None,
    organization_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None
) -> AuditLog:
    """
    Create an audit log entry.

    Args:
        db: Database session
        user_id: User performing the action
        action: Action performed (e.g., "grant", "revoke", "create_api_key")
        resource_type: Type of resource (e.g., "permission_grant", "api_key", "user")
        resource_id: ID of the resource
        organization_id: Organization context
        details: Additional details
        ip_address: Client IP address
        user_agent: Client user agent

    Returns:
        Created AuditLog object
    """
    audit_log = AuditLog(
        user_id=user_id,
        action=action,
        resource_type=resource_type,
        resource_id=resource_id,
        organization_id=organization_id,
        details=details,
        ip_address=ip_address,
        user_agent=(user_agent or "")[:255] or None
    )

    db.add(audit_log)
    await db.commit()
    await db.refresh(audit_log)

    log.info(
        f"Audit: user={user_id} action={action} resource={resource_type}:{resource_id} org={organization_id}"
    )

    return audit_log


async def record_audit_event(**fields: Any) -> None:
    """Background-task entry point: writes the audit entry in its own session."""
    async with AsyncSessionLocal() as db:
        await create_audit_log(db, **fields)
