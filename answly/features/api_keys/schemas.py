"""
Pydantic schemas for API keys.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from answly.core.clock import to_utc
from answly.features.permissions.models import PermissionScope


class ApiKeyCreate(BaseModel):
    """Schema for creating an API key."""
    organization_id: str
    name: str = Field(..., min_length=1, max_length=100)
    scopes: List[PermissionScope] = Field(default_factory=list)
    rate_limit: Optional[int] = Field(None, ge=0, description="Requests per rate window; server default if omitted")
    daily_quota: Optional[int] = Field(None, ge=0, description="Requests per UTC day; server default if omitted")
    expires_at: Optional[datetime] = None


class ApiKeyResponse(BaseModel):
    id: str
    organization_id: str
    created_by_id: Optional[str]
    name: str
    key_prefix: str
    scopes: List[str]
    rate_limit: int
    daily_quota: int
    is_active: bool
    expires_at: Optional[datetime]
    last_used_at: Optional[datetime]
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)

    @field_validator("expires_at", "last_used_at", "created_at")
    @classmethod
    def as_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        return to_utc(v) if v else v


class ApiKeyCreated(ApiKeyResponse):
    """Creation response; the only time the raw key is returned."""
    key: str


class EndpointUsage(BaseModel):
    endpoint: str
    requests: int


class ApiKeyUsageStats(BaseModel):
    api_key_id: str
    days: int
    total_requests: int
    success_requests: int
    error_requests: int
    success_rate: float = Field(..., description="Percentage of requests answered below 400")
    avg_response_time_ms: float
    top_endpoints: List[EndpointUsage]


class ApiKeyIdentity(BaseModel):
    """What a key-authenticated caller learns about itself."""
    id: str
    name: str
    organization_id: str
    scopes: List[str]
    rate_limit: int
    daily_quota: int
