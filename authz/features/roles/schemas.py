"""
Pydantic schemas for role management.

Request and response models for roles, role permissions, templates and user
role assignments.
"""
from datetime import datetime
from typing import List, Optional
from pydantic import BaseModel, Field, ConfigDict, field_validator

from authz.core.errors import ValidationError
from authz.features.permissions.schemas import PermissionLevel


# ============================================================================
# Role Permission Schemas
# ============================================================================

class RolePermissionEntry(BaseModel):
    """One resource -> level pair inside a role's permission set."""
    resource_code: str = Field(..., min_length=1, max_length=100)
    permission_level: PermissionLevel

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('permission_level', mode='before')
    @classmethod
    def parse_level(cls, v):
        """Accept legacy aliases such as "view" or "read"."""
        try:
            return PermissionLevel.parse(v)
        except ValidationError as exc:
            raise ValueError(exc.detail) from exc


def _reject_duplicate_resources(entries: Optional[List[RolePermissionEntry]]):
    if not entries:
        return entries
    seen: set[str] = set()
    for entry in entries:
        if entry.resource_code in seen:
            raise ValueError(f"Duplicate permission for resource '{entry.resource_code}'")
        seen.add(entry.resource_code)
    return entries


# ============================================================================
# Role Schemas
# ============================================================================

class RoleBase(BaseModel):
    """Base role schema."""
    name: str = Field(..., min_length=1, max_length=100, description="Role name, unique per tenant and module")
    description: Optional[str] = Field(None, max_length=1000, description="Role description")

    @field_validator('name')
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        """Reject names that are only whitespace."""
        v = v.strip()
        if not v:
            raise ValueError('Role name is required')
        return v


class RoleCreate(RoleBase):
    """Schema for creating a new role."""
    module_code: str = Field(..., min_length=1, max_length=50, description="Module the role belongs to")
    based_on_template: Optional[str] = Field(None, description="Template the role was derived from")
    permissions: Optional[List[RolePermissionEntry]] = Field(None, description="Initial permission set")

    @field_validator('permissions')
    @classmethod
    def unique_resources(cls, v):
        return _reject_duplicate_resources(v)


class RoleUpdate(BaseModel):
    """Schema for updating a role. A provided permission list replaces the whole set."""
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    permissions: Optional[List[RolePermissionEntry]] = None

    @field_validator('permissions')
    @classmethod
    def unique_resources(cls, v):
        return _reject_duplicate_resources(v)


class RolePermissionsReplace(BaseModel):
    """Schema for replacing a role's permission set."""
    permissions: List[RolePermissionEntry]

    @field_validator('permissions')
    @classmethod
    def unique_resources(cls, v):
        return _reject_duplicate_resources(v)


class RoleClone(BaseModel):
    """Schema for cloning a role with its permissions."""
    name: str = Field(..., min_length=1, max_length=100, description="Name of the new role")
    description: Optional[str] = Field(None, max_length=1000)


class RoleFromTemplate(BaseModel):
    """Schema for instantiating a role template."""
    template_id: str = Field(..., min_length=1, description="Role template ID")
    custom_name: Optional[str] = Field(None, max_length=100, description="Overrides the template display name")


class RoleResponse(BaseModel):
    """Schema for role response."""
    id: str
    tenant_id: str
    module_code: str
    name: str
    description: Optional[str] = None
    is_custom: bool
    based_on_template: Optional[str] = None
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class RoleWithPermissions(RoleResponse):
    """Schema for role with permissions."""
    permissions: List[RolePermissionEntry] = []


class RoleTemplateResponse(BaseModel):
    """Schema for role template response."""
    id: str
    module_code: str
    template_name: str
    display_name: str
    description: Optional[str] = None
    default_permissions: List[RolePermissionEntry] = []
    is_active: bool

    model_config = ConfigDict(from_attributes=True)


# ============================================================================
# Assignment Schemas
# ============================================================================

class AssignRoleToUser(BaseModel):
    """Schema for assigning a role to a user in the role's module."""
    user_id: str = Field(..., min_length=1, description="User ID")
    role_id: str = Field(..., min_length=1, description="Role ID")
    valid_until: Optional[datetime] = Field(None, description="Expiry for temporary assignments")


class UserModuleRoleResponse(BaseModel):
    """Schema for a user role assignment."""
    id: str
    tenant_id: str
    user_id: str
    module_code: str
    role_id: str
    assigned_by: Optional[str] = None
    assigned_at: datetime
    valid_until: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True)


class ExpiredAssignmentsResponse(BaseModel):
    expired: int
