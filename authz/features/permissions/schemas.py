"""
Pydantic schemas for permission resolution.

Permission levels, decisions returned by the resolver, and request/response
models for the permission routes.
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional, Union
from pydantic import BaseModel, ConfigDict, Field

from authz.core.errors import ValidationError


# ============================================================================
# Permission Levels
# ============================================================================

class PermissionLevel(str, Enum):
    """
    Totally ordered permission level: no_access < view_only < manage.

    Comparison operators use the level order, not string order, so
    ``max(levels)`` and ``level >= PermissionLevel.VIEW_ONLY`` behave as expected.
    """
    NO_ACCESS = "no_access"
    VIEW_ONLY = "view_only"
    MANAGE = "manage"

    @property
    def rank(self) -> int:
        return _LEVEL_RANKS[self]

    def meets(self, required: "PermissionLevel") -> bool:
        return self.rank >= required.rank

    @classmethod
    def parse(cls, value: Union["PermissionLevel", str]) -> "PermissionLevel":
        """Accept the enum, its value, or a legacy alias ("view", "read")."""
        if isinstance(value, cls):
            return value
        if isinstance(value, str):
            normalized = value.strip().lower()
            normalized = _LEVEL_ALIASES.get(normalized, normalized)
            try:
                return cls(normalized)
            except ValueError:
                pass
        raise ValidationError(f"Unknown permission level: {value!r}", value=str(value))

    def __lt__(self, other):
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank < other.rank

    def __le__(self, other):
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank <= other.rank

    def __gt__(self, other):
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank > other.rank

    def __ge__(self, other):
        if not isinstance(other, PermissionLevel):
            return NotImplemented
        return self.rank >= other.rank


_LEVEL_RANKS = {
    PermissionLevel.NO_ACCESS: 1,
    PermissionLevel.VIEW_ONLY: 2,
    PermissionLevel.MANAGE: 3,
}

_LEVEL_ALIASES = {
    "view": "view_only",
    "read": "view_only",
    "none": "no_access",
}


# ============================================================================
# Resolver Results
# ============================================================================

class RoleGrant(BaseModel):
    """One role-permission row reachable from a user's active assignments."""
    role_id: str
    role_name: str
    module_code: str
    resource_code: str
    permission_level: PermissionLevel

    model_config = ConfigDict(frozen=True)


class PermissionCheck(BaseModel):
    """Outcome of a single permission check."""
    allowed: bool
    level: PermissionLevel = PermissionLevel.NO_ACCESS
    resource_code: Optional[str] = None
    granted_by_role: Optional[str] = None
    inherited_by: Optional[str] = Field(
        None, description="Set when a parent resource's grant was applied to this child"
    )
    reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)

    @classmethod
    def deny(cls, resource_code: Optional[str], reason: str,
             level: PermissionLevel = PermissionLevel.NO_ACCESS) -> "PermissionCheck":
        return cls(allowed=False, level=level, resource_code=resource_code, reason=reason)


class CombinedCheck(BaseModel):
    """Outcome of require_any / require_all over several resources."""
    allowed: bool
    checks: List[PermissionCheck] = []
    missing: Optional[str] = Field(None, description="First resource code that failed (require_all)")
    reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)


class EffectivePermission(BaseModel):
    """Resolved (max) permission level for a user on one resource."""
    user_id: str
    module_code: str
    resource_code: str
    permission_level: PermissionLevel
    granted_by_role: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)


class CachedEffectivePermission(EffectivePermission):
    calculated_at: datetime


class MenuPermission(BaseModel):
    """Menu resource annotated with the user's resolved level."""
    resource_code: str
    resource_name: str
    parent_code: Optional[str]
    is_leaf: bool
    level: int
    path: List[int]
    permission_level: PermissionLevel
    granted_by_role: Optional[str] = None

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Request Schemas
# ============================================================================

class PermissionCheckRequest(BaseModel):
    """Check one resource for a user (defaults to the caller)."""
    resource_code: str = Field(..., min_length=1, description="Resource code, e.g. 'wms_inventory_tracking'")
    required_level: PermissionLevel = PermissionLevel.VIEW_ONLY
    user_id: Optional[str] = Field(None, description="User to check (uses caller if not provided)")


class HierarchicalCheckRequest(BaseModel):
    parent_resource: str = Field(..., min_length=1)
    child_resource: str = Field(..., min_length=1)
    required_level: PermissionLevel = PermissionLevel.VIEW_ONLY
    user_id: Optional[str] = None


class MultiPermissionCheckRequest(BaseModel):
    resource_codes: List[str] = Field(..., min_length=1)
    required_level: PermissionLevel = PermissionLevel.VIEW_ONLY
    user_id: Optional[str] = None


class EndpointAccessRequest(BaseModel):
    endpoint: str = Field(..., min_length=1, description="Request path, e.g. '/api/wms/inventory'")
    method: str = Field(..., min_length=1, description="HTTP method")
    user_id: Optional[str] = None


class ModuleAccessResponse(BaseModel):
    user_id: str
    module_code: str
    has_access: bool


class AccessibleModulesResponse(BaseModel):
    user_id: str
    modules: List[str]


class RecalculationResponse(BaseModel):
    user_id: str
    calculated: int
    permissions: List[EffectivePermission]
