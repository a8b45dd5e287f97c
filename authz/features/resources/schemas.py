"""
Pydantic schemas for the resource catalog.
"""
from enum import Enum
from typing import List, Optional
from pydantic import BaseModel, ConfigDict, Field


class ResourceType(str, Enum):
    MENU = "menu"
    API = "api"
    REPORT = "report"
    WIDGET = "widget"
    DATA = "data"


class ModuleResponse(BaseModel):
    """Schema for module response."""
    code: str
    name: str
    description: Optional[str] = None
    is_active: bool = True

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ResourceResponse(BaseModel):
    """A permission resource as an immutable value object."""
    code: str
    name: str
    description: Optional[str] = None
    module_code: str
    parent_code: Optional[str] = None
    resource_type: ResourceType
    is_leaf: bool = True
    display_order: int = 0

    model_config = ConfigDict(from_attributes=True, frozen=True)


class ResourceNode(ResourceResponse):
    """Resource annotated with its depth and ordering path in the module tree."""
    level: int = Field(..., ge=0, description="Depth below the root (roots are 0)")
    path: List[int] = Field(..., description="display_order of every ancestor, then of this node")
