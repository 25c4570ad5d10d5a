"""
Pydantic schemas for user-related responses.
"""
from datetime import datetime
from pydantic import BaseModel, EmailStr, Field


class UserBase(BaseModel):
    """Base user schema with common fields."""
    email: EmailStr
    name: str = Field(..., min_length=1, max_length=255)


class UserResponse(UserBase):
    """Schema for the authenticated user's own profile."""
    id: str
    is_active: bool
    organization_id: str | None = None
    role: str
    last_login_at: datetime | None = None
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}


class UserPublic(BaseModel):
    """User information visible to members of the same organization."""
    id: str
    name: str
    role: str

    model_config = {"from_attributes": True}
