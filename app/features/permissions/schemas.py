"""
Pydantic schemas for the permissions API.

Request and response models for the catalog, system roles, custom roles,
assignments, permission checks and audit logs.
"""
from datetime import datetime
from typing import Dict, Any, List, Optional
from pydantic import BaseModel, Field, ConfigDict, StrictBool, model_validator

from app.features.permissions.system_roles import SystemRole


# ============================================================================
# Catalog Schemas
# ============================================================================

class CatalogAction(BaseModel):
    action: str
    key: str = Field(..., description="Wire permission key, '<resource>.<action>'")
    label: str


class CatalogResource(BaseModel):
    resource: str
    label: str
    actions: List[CatalogAction]


class CatalogResponse(BaseModel):
    """Every protectable resource with the actions valid for it."""
    resources: List[CatalogResource]
    groups: Dict[str, List[str]]


class SystemRoleResponse(BaseModel):
    role: SystemRole
    description: str
    permissions: Dict[str, bool]


# ============================================================================
# Custom Role Schemas
# ============================================================================

class CustomRoleCreate(BaseModel):
    """Schema for creating a custom role in the caller's organization."""
    name: str = Field(..., max_length=100, description="Role name, unique within the organization")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")
    based_on_role: str = Field(..., description="System role the custom role inherits from")
    permissions: Dict[str, StrictBool] = Field(
        default_factory=dict,
        description="Sparse overrides; keys absent here inherit from based_on_role",
    )
    is_default: StrictBool = Field(False, description="Assigned to users joining without an explicit role")


class CustomRoleUpdate(BaseModel):
    """
    Schema for updating a custom role. Only supplied fields change.

    ``permissions`` replaces the stored override map entirely.
    """
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    based_on_role: Optional[str] = None
    permissions: Optional[Dict[str, StrictBool]] = None
    is_default: Optional[StrictBool] = None


class CustomRoleResponse(BaseModel):
    """Schema for custom role response."""
    id: int
    name: str
    description: Optional[str]
    organization_id: str
    based_on_role: str
    is_default: bool
    permissions: Dict[str, bool]
    created_by_id: Optional[str]
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class MessageResponse(BaseModel):
    message: str


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignRoleToUser(BaseModel):
    """
    Schema for assigning a role to a user of the caller's organization.

    Exactly one of ``role_id`` (custom role) or ``system_role`` must be given.
    """
    user_id: str = Field(..., description="User ID")
    role_id: Optional[int] = Field(None, description="Custom role ID")
    system_role: Optional[SystemRole] = Field(None, description="System role")

    @model_validator(mode="after")
    def exactly_one_role(self) -> "AssignRoleToUser":
        if (self.role_id is None) == (self.system_role is None):
            raise ValueError("Provide exactly one of role_id or system_role")
        return self


class AssignedUser(BaseModel):
    id: str
    name: str
    role: str
    organization_id: Optional[str]

    model_config = ConfigDict(from_attributes=True)


class AssignRoleResponse(BaseModel):
    message: str
    user: AssignedUser


# ============================================================================
# Permission Check Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Schema for checking whether the current user has a permission."""
    resource: str = Field(..., description="Resource type")
    action: str = Field(..., description="Action")


class PermissionCheckResponse(BaseModel):
    """Schema for permission check response."""
    has_permission: bool
    reason: Optional[str] = None


class EffectivePermissionsResponse(BaseModel):
    """The current user's role reference and every catalog key resolved."""
    role: str
    permissions: Dict[str, bool]


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
