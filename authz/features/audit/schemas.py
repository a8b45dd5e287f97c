"""
Pydantic schemas for audit events and audit log listing.
"""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional
from pydantic import BaseModel, ConfigDict, Field


class AuditStatus(str, Enum):
    SUCCESS = "success"
    DENIED = "denied"
    ERROR = "error"


class AuditSeverity(str, Enum):
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class AuditEvent(BaseModel):
    """A decision or administration event handed to an AuditSink."""
    tenant_id: str
    user_id: Optional[str] = None
    action: str = Field(..., description="e.g. 'permission_check', 'role_create', 'role_assign'")
    resource_type: str = Field(..., description="e.g. 'resource', 'role', 'data_scope'")
    resource_id: Optional[str] = None
    module_code: Optional[str] = None
    permission_required: Optional[str] = None
    status: AuditStatus = AuditStatus.SUCCESS
    severity: AuditSeverity = AuditSeverity.INFO
    details: Optional[Dict[str, Any]] = None

    model_config = ConfigDict(frozen=True)


class AuditLogResponse(BaseModel):
    """Schema for audit log response."""
    id: str
    tenant_id: str
    user_id: Optional[str] = None
    action: str
    resource_type: str
    resource_id: Optional[str] = None
    module_code: Optional[str] = None
    permission_required: Optional[str] = None
    status: str
    severity: str
    details: Optional[Dict[str, Any]] = None
    created_at: datetime

    model_config = ConfigDict(from_attributes=True)


class AuditLogListResponse(BaseModel):
    """Schema for paginated audit log list."""
    items: List[AuditLogResponse]
    total: int
    skip: int
    limit: int
