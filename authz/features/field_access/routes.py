"""
Field access API routes.

Records are masked server-side against the caller's live grants, roles and
data scope; clients receive the masked result, never the rules to apply.
"""
from typing import Annotated, Any, Dict, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import get_db
from authz.features.data_scopes.store import DataScopeStore
from authz.features.field_access.context import build_field_context
from authz.features.field_access.resolver import FieldAccessResolver
from authz.features.field_access.schemas import (
    FieldAccessRequest,
    FieldAccessSummary,
    FieldMaskingResult,
    FieldRule,
    MaskFieldRequest,
    MaskRecordRequest,
    MaskRecordsRequest,
)
from authz.features.field_access.store import FieldRuleStore
from authz.features.permissions.dependencies import (
    ROLE_ADMIN_RESOURCE,
    get_permission_resolver,
    require_permission,
)
from authz.features.permissions.resolver import PermissionResolver
from authz.features.permissions.schemas import PermissionLevel
from authz.features.users.dependencies import get_caller
from authz.features.users.schemas import Caller


router = APIRouter()

CallerDep = Annotated[Caller, Depends(get_caller)]
ResolverDep = Annotated[PermissionResolver, Depends(get_permission_resolver)]
DbDep = Annotated[AsyncSession, Depends(get_db)]


async def _field_resolver(db: AsyncSession, tenant_id: str, resource: str) -> FieldAccessResolver:
    rules = await FieldRuleStore(db).load_rules(tenant_id, resource)
    scope_resolver = await DataScopeStore(db).resolver(tenant_id)
    return FieldAccessResolver(rules, scope_resolver)


@router.get("/rules", response_model=List[FieldRule])
async def list_field_rules(
    db: DbDep,
    caller: Annotated[Caller, Depends(require_permission(ROLE_ADMIN_RESOURCE, PermissionLevel.VIEW_ONLY))],
    resource: Optional[str] = None
):
    return await FieldRuleStore(db).load_rules(caller.tenant_id, resource)


@router.get("/categories/{resource}", response_model=Dict[str, List[str]])
async def get_field_categories(resource: str, db: DbDep, caller: CallerDep):
    """Fields of a resource grouped by category (pii, financial, ...)."""
    resolver = await _field_resolver(db, caller.tenant_id, resource)
    return resolver.field_categories(resource)


@router.post("/fields", response_model=List[FieldAccessSummary])
async def get_field_access(payload: FieldAccessRequest, db: DbDep, caller: CallerDep, permissions: ResolverDep):
    """Access level, visibility and editability of each requested field for the caller."""
    resolver = await _field_resolver(db, caller.tenant_id, payload.resource)
    context = await build_field_context(caller, permissions, DataScopeStore(db), payload.action)
    summaries = []
    for field in payload.fields:
        level = resolver.field_access(payload.resource, field, context)
        summaries.append(FieldAccessSummary(
            field=field,
            access_level=level,
            visible=not level.removes_field,
            can_edit=resolver.can_edit_field(payload.resource, field, context),
        ))
    return summaries


@router.post("/mask-field", response_model=FieldMaskingResult, response_model_exclude_none=True)
async def mask_field(payload: MaskFieldRequest, db: DbDep, caller: CallerDep, permissions: ResolverDep):
    resolver = await _field_resolver(db, caller.tenant_id, payload.resource)
    context = await build_field_context(caller, permissions, DataScopeStore(db), payload.action)
    return resolver.mask_field(payload.resource, payload.field, payload.value, context)


@router.post("/mask", response_model=Dict[str, Any])
async def mask_record(payload: MaskRecordRequest, db: DbDep, caller: CallerDep, permissions: ResolverDep):
    """Mask one flat record; hidden and denied keys are removed."""
    resolver = await _field_resolver(db, caller.tenant_id, payload.resource)
    context = await build_field_context(caller, permissions, DataScopeStore(db), payload.action)
    return resolver.mask_object(payload.resource, payload.record, context)


@router.post("/mask-records", response_model=List[Dict[str, Any]])
async def mask_records(payload: MaskRecordsRequest, db: DbDep, caller: CallerDep, permissions: ResolverDep):
    resolver = await _field_resolver(db, caller.tenant_id, payload.resource)
    context = await build_field_context(caller, permissions, DataScopeStore(db), payload.action)
    return resolver.mask_records(payload.resource, payload.records, context)
