"""
Pydantic schemas for permission grants, checks and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from answly.core.clock import to_utc
from answly.features.permissions.models import PermissionScope


# ============================================================================
# Grant Schemas
# ============================================================================

class GrantCreate(BaseModel):
    """Schema for granting a scope to a user in an organization."""
    user_id: str = Field(..., description="User receiving the grant")
    organization_id: str = Field(..., description="Organization the grant applies to")
    scope: PermissionScope
    expires_at: Optional[datetime] = Field(None, description="Grant stops applying at this instant; null never expires")


class GrantResponse(BaseModel):
    id: str
    user_id: str
    organization_id: str
    scope: PermissionScope
    granted_by_id: Optional[str]
    expires_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("expires_at", "created_at")
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """SQLite hands datetimes back naive; they are stored as UTC."""
        return to_utc(v) if v else v


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking if a user holds a scope."""
    scope: PermissionScope
    organization_id: Optional[str] = Field(None, description="Organization ID (uses the caller's if not provided)")
    user_id: Optional[str] = Field(None, description="User to check (admins only; defaults to the caller)")


class PermissionCheckResponse(BaseModel):
    has_permission: bool
    user_id: str
    organization_id: str
    scope: PermissionScope
    reason: Optional[str] = None


# ============================================================================
# Audit Log Schemas
# ============================================================================

class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    user_id: Optional[str]
    action: str
    resource_type: str
    resource_id: Optional[str]
    organization_id: Optional[str]
    details: Optional[Dict[str, Any]]
    ip_address: Optional[str]
    user_agent: Optional[str]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    page: int
    page_size: int
    pages: int
