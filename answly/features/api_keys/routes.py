"""
API key management routes and the key-authenticated self endpoints.
"""
from typing import Annotated, List
from fastapi import APIRouter, Depends, status, Request, BackgroundTasks, Query
from sqlalchemy.ext.asyncio import AsyncSession

from answly.core.database.engine import get_db
from answly.features.api_keys.dependencies import (
    get_api_key_service,
    require_api_key,
    require_api_key_scope,
)
from answly.features.api_keys.models import ApiKey
from answly.features.api_keys.schemas import (
    ApiKeyCreate,
    ApiKeyCreated,
    ApiKeyIdentity,
    ApiKeyResponse,
    ApiKeyUsageStats,
)
from answly.features.api_keys.service import ApiKeyService
from answly.features.organizations.dependencies import get_organization_by_id
from answly.features.permissions.dependencies import (
    ensure_scope,
    get_permission_evaluator,
    record_audit_event,
    require_scope,
)
from answly.features.permissions.evaluator import PermissionEvaluator
from answly.features.permissions.models import PermissionScope
from answly.features.users.dependencies import get_current_user
from answly.features.users.models import User


router = APIRouter()


# ============================================================================
# Key-authenticated routes
# ============================================================================

@router.get("/self", response_model=ApiKeyIdentity)
async def get_self(api_key: Annotated[ApiKey, Depends(require_api_key)]):
    """Describe the key used for this request."""
    return ApiKeyIdentity(
        id=api_key.id,
        name=api_key.name,
        organization_id=api_key.organization_id,
        scopes=api_key.scopes or [],
        rate_limit=api_key.rate_limit,
        daily_quota=api_key.daily_quota,
    )


@router.get("/self/stats", response_model=ApiKeyUsageStats)
async def get_self_stats(
    service: Annotated[ApiKeyService, Depends(get_api_key_service)],
    api_key: Annotated[ApiKey, Depends(require_api_key_scope(PermissionScope.VIEW_REPORTS.value))],
    days: int = Query(30, ge=1, le=365)
):
    """Usage of the key used for this request (key needs VIEW_REPORTS)."""
    return await service.get_usage_stats(api_key.id, days=days)


# ============================================================================
# Management routes
# ============================================================================

@router.post("", response_model=ApiKeyCreated, status_code=status.HTTP_201_CREATED)
async def create_api_key(
    key_data: ApiKeyCreate,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    service: Annotated[ApiKeyService, Depends(get_api_key_service)],
    evaluator: Annotated[PermissionEvaluator, Depends(get_permission_evaluator)],
    current_user: Annotated[User, Depends(get_current_user)]
):
    """Create an API key (requires MANAGE_API_KEYS in the organization). The raw key is returned once."""
    await ensure_scope(evaluator, current_user, key_data.organization_id, PermissionScope.MANAGE_API_KEYS)
    await get_organization_by_id(key_data.organization_id, db)

    api_key, raw_key = await service.create_api_key(
        organization_id=key_data.organization_id,
        created_by_id=current_user.id,
        name=key_data.name,
        scopes=key_data.scopes,
        rate_limit=key_data.rate_limit,
        daily_quota=key_data.daily_quota,
        expires_at=key_data.expires_at,
    )
    await db.commit()
    await db.refresh(api_key)

    background_tasks.add_task(
        record_audit_event,
        user_id=current_user.id,
        action="create_api_key",
        resource_type="api_key",
        resource_id=api_key.id,
        organization_id=api_key.organization_id,
        details={"name": api_key.name, "key_prefix": api_key.key_prefix},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )

    response = ApiKeyResponse.model_validate(api_key)
    return ApiKeyCreated(**response.model_dump(), key=raw_key)


@router.get("/organization/{organization_id}", response_model=List[ApiKeyResponse])
async def list_organization_keys(
    organization_id: str,
    service: Annotated[ApiKeyService, Depends(get_api_key_service)],
    _user: Annotated[User, Depends(require_scope(PermissionScope.MANAGE_API_KEYS))]
):
    """List an organization's keys. Hashes and raw keys are never returned."""
    return await service.list_organization_keys(organization_id)


@router.delete("/{key_id}", response_model=ApiKeyResponse)
async def revoke_api_key(
    key_id: str,
    background_tasks: BackgroundTasks,
    request: Request,
    db: Annotated[AsyncSession, Depends(get_db)],
    service: Annotated[ApiKeyService, Depends(get_api_key_service)],
    evaluator: Annotated[PermissionEvaluator, Depends(get_permission_evaluator)],
    current_user: Annotated[User, Depends(get_current_user)]
):
    """Revoke a key (requires MANAGE_API_KEYS in the key's organization)."""
    api_key = await service.get_key(key_id)
    await ensure_scope(evaluator, current_user, api_key.organization_id, PermissionScope.MANAGE_API_KEYS)

    api_key = await service.revoke_key(key_id)
    await db.commit()
    await db.refresh(api_key)

    background_tasks.add_task(
        record_audit_event,
        user_id=current_user.id,
        action="revoke_api_key",
        resource_type="api_key",
        resource_id=api_key.id,
        organization_id=api_key.organization_id,
        details={"name": api_key.name, "key_prefix": api_key.key_prefix},
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent")
    )

    return api_key


@router.get("/{key_id}/stats", response_model=ApiKeyUsageStats)
async def get_api_key_stats(
    key_id: str,
    service: Annotated[ApiKeyService, Depends(get_api_key_service)],
    evaluator: Annotated[PermissionEvaluator, Depends(get_permission_evaluator)],
    current_user: Annotated[User, Depends(get_current_user)],
    days: int = Query(30, ge=1, le=365)
):
    """Usage statistics for a key (requires MANAGE_API_KEYS in the key's organization)."""
    api_key = await service.get_key(key_id)
    await ensure_scope(evaluator, current_user, api_key.organization_id, PermissionScope.MANAGE_API_KEYS)
    return await service.get_usage_stats(key_id, days=days)
