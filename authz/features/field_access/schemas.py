"""
Pydantic schemas for field access.
"""
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator

from authz.features.data_scopes.schemas import DataScopeLevel, UserDataScope


class FieldAccessLevel(str, Enum):
    FULL = "full"          # read and edit
    READ = "read"          # read only
    MASKED = "masked"      # display masked value
    PARTIAL = "partial"    # display partially masked value
    HIDDEN = "hidden"      # key removed
    DENIED = "denied"      # key removed, access refused

    @property
    def removes_field(self) -> bool:
        return self in (FieldAccessLevel.HIDDEN, FieldAccessLevel.DENIED)

    @property
    def masks_value(self) -> bool:
        return self in (FieldAccessLevel.MASKED, FieldAccessLevel.PARTIAL)


class MaskingStrategy(str, Enum):
    ASTERISK = "asterisk"
    DOTS = "dots"
    REDACTED = "redacted"
    PARTIAL = "partial"
    INITIALS = "initials"
    DOMAIN = "domain"
    CURRENCY = "currency"
    CUSTOM = "custom"


class FieldRule(BaseModel):
    """
    Rule for one (resource, field). Requirement lists are OR-sets and an
    empty list is always satisfied. Higher priority is evaluated first.
    """
    id: str
    resource: str
    field: str
    required_permissions: List[str] = []
    required_roles: List[str] = []
    required_scopes: List[DataScopeLevel] = []
    access_level: FieldAccessLevel
    masking_strategy: Optional[MaskingStrategy] = None
    custom_mask: Optional[str] = Field(None, description="Name of a registered custom masking function")
    priority: int = 0
    category: str = "general"

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('required_permissions', 'required_roles', 'required_scopes', mode='before')
    @classmethod
    def default_empty(cls, v):
        return v or []


class FieldAccessContext(BaseModel):
    """Everything field rules are evaluated against, passed explicitly per call."""
    permissions: frozenset[str] = frozenset()
    roles: frozenset[str] = frozenset()
    action: str = "read"
    user_scope: Optional[UserDataScope] = None

    model_config = ConfigDict(frozen=True)


class FieldMaskingResult(BaseModel):
    """
    Outcome of masking one field. ``value`` is only set when the raw value may
    be shown (full/read); masked and removed fields never carry it.
    """
    value: Any = None
    display_value: str = ""
    access_level: FieldAccessLevel
    is_original: bool
    masking_applied: List[str] = []
    reason: Optional[str] = None

    model_config = ConfigDict(frozen=True)


# ============================================================================
# Request / Response Schemas
# ============================================================================

class MaskRecordRequest(BaseModel):
    resource: str = Field(..., min_length=1)
    record: Dict[str, Any]
    action: str = "read"


class MaskRecordsRequest(BaseModel):
    resource: str = Field(..., min_length=1)
    records: List[Dict[str, Any]]
    action: str = "read"


class MaskFieldRequest(BaseModel):
    resource: str = Field(..., min_length=1)
    field: str = Field(..., min_length=1)
    value: Any = None
    action: str = "read"


class FieldAccessRequest(BaseModel):
    resource: str = Field(..., min_length=1)
    fields: List[str]
    action: str = "read"


class FieldAccessSummary(BaseModel):
    field: str
    access_level: FieldAccessLevel
    visible: bool
    can_edit: bool
