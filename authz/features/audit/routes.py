"""
Audit log API routes.
"""
from typing import Annotated, Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import get_db, storage_errors
from authz.features.audit.models import AuditLog
from authz.features.audit.schemas import AuditLogListResponse, AuditLogResponse
from authz.features.permissions.dependencies import AUDIT_LOG_RESOURCE, require_permission
from authz.features.permissions.schemas import PermissionLevel
from authz.features.users.schemas import Caller


router = APIRouter()


@router.get("", response_model=AuditLogListResponse)
async def list_audit_logs(
    db: Annotated[AsyncSession, Depends(get_db)],
    caller: Annotated[Caller, Depends(require_permission(AUDIT_LOG_RESOURCE, PermissionLevel.VIEW_ONLY))],
    skip: int = Query(0, ge=0),
    limit: int = Query(100, ge=1, le=500),
    user_id: Optional[str] = None,
    action: Optional[str] = None,
    status: Optional[str] = None,
    module_code: Optional[str] = None
):
    """List the tenant's audit logs, newest first, with optional filtering."""
    stmt = select(AuditLog).where(AuditLog.tenant_id == caller.tenant_id)
    if user_id:
        stmt = stmt.where(AuditLog.user_id == user_id)
    if action:
        stmt = stmt.where(AuditLog.action == action)
    if status:
        stmt = stmt.where(AuditLog.status == status)
    if module_code:
        stmt = stmt.where(AuditLog.module_code == module_code)

    count_stmt = select(func.count()).select_from(stmt.subquery())
    async with storage_errors():
        total = await db.scalar(count_stmt)
        result = await db.execute(
            stmt.order_by(AuditLog.created_at.desc(), AuditLog.id.desc()).offset(skip).limit(limit)
        )
    items = [AuditLogResponse.model_validate(row) for row in result.scalars().all()]
    return AuditLogListResponse(items=items, total=total or 0, skip=skip, limit=limit)
