"""
Pydantic schemas for organizations.
"""
from datetime import datetime
from pydantic import BaseModel, ConfigDict, Field, field_validator


class OrganizationCreate(BaseModel):
    """Schema for creating an organization."""
    name: str = Field(..., min_length=1, max_length=255)
    slug: str = Field(..., min_length=2, max_length=100, description="URL-safe unique handle")

    @field_validator("slug")
    @classmethod
    def slug_format(cls, v: str) -> str:
        v = v.lower()
        if not v.replace("-", "").isalnum():
            raise ValueError("Slug must contain only letters, digits and hyphens")
        return v


class OrganizationResponse(BaseModel):
    id: str
    name: str
    slug: str
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AddMember(BaseModel):
    """Schema for adding a user to an organization."""
    user_id: str = Field(..., description="User ID")
