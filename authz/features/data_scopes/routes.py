"""
Data scope API routes.

Exposes scope rules, per-user scope records, and resolved scopes/filters for
the caller so clients consume decisions instead of re-implementing them.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import get_db
from authz.core.errors import NotFoundError
from authz.features.data_scopes.schemas import (
    AllowedScopesResponse,
    DataFilter,
    DataScopeLevel,
    DataScopeRule,
    RecordAccessRequest,
    RecordAccessResponse,
    ScopeLevelInfo,
    UserDataScope,
    UserDataScopeUpdate,
)
from authz.features.data_scopes.store import DataScopeStore
from authz.features.permissions.dependencies import (
    ROLE_ADMIN_RESOURCE,
    USER_ADMIN_RESOURCE,
    authorize_target_user,
    get_permission_resolver,
    require_permission,
)
from authz.features.permissions.resolver import PermissionResolver
from authz.features.permissions.schemas import PermissionLevel
from authz.features.users.dependencies import get_caller
from authz.features.users.schemas import Caller


router = APIRouter()


async def get_data_scope_store(db: Annotated[AsyncSession, Depends(get_db)]) -> DataScopeStore:
    return DataScopeStore(db)


StoreDep = Annotated[DataScopeStore, Depends(get_data_scope_store)]
CallerDep = Annotated[Caller, Depends(get_caller)]


@router.get("/levels", response_model=List[ScopeLevelInfo])
async def list_scope_levels():
    """The scope hierarchy, broadest first, with descriptions."""
    return [
        ScopeLevelInfo(scope=scope, rank=scope.rank, description=scope.description)
        for scope in DataScopeLevel.hierarchy()
    ]


@router.get("/rules", response_model=List[DataScopeRule])
async def list_rules(
    store: StoreDep,
    caller: Annotated[Caller, Depends(require_permission(ROLE_ADMIN_RESOURCE, PermissionLevel.VIEW_ONLY))],
    resource: Optional[str] = None,
    action: Optional[str] = None
):
    """Rules visible to the tenant, highest priority first."""
    resolver = await store.resolver(caller.tenant_id)
    return resolver.rules_for(resource, action)


@router.get("/me/allowed", response_model=AllowedScopesResponse)
async def get_my_allowed_scopes(resource: str, action: str, caller: CallerDep, store: StoreDep):
    resolver = await store.resolver(caller.tenant_id)
    user_scope = await store.get_user_data_scope(caller.tenant_id, caller.user_id)
    return AllowedScopesResponse(
        resource=resource,
        action=action,
        scopes=resolver.allowed_scopes(resource, action, user_scope),
    )


@router.get("/me/filter", response_model=DataFilter)
async def get_my_filter(resource: str, action: str, caller: CallerDep, store: StoreDep):
    """Compiled row filter for the caller; scope none yields an always-false filter."""
    resolver = await store.resolver(caller.tenant_id)
    user_scope = await store.get_user_data_scope(caller.tenant_id, caller.user_id)
    return resolver.compile_filter(resource, action, user_scope)


@router.post("/me/can-access", response_model=RecordAccessResponse)
async def can_access_record(payload: RecordAccessRequest, caller: CallerDep, store: StoreDep):
    resolver = await store.resolver(caller.tenant_id)
    user_scope = await store.get_user_data_scope(caller.tenant_id, caller.user_id)
    allowed = resolver.can_access(payload.resource, payload.action, user_scope, payload.record)
    return RecordAccessResponse(allowed=allowed)


@router.get("/users/{user_id}", response_model=UserDataScope)
async def get_user_scope(
    user_id: str,
    caller: CallerDep,
    store: StoreDep,
    resolver: Annotated[PermissionResolver, Depends(get_permission_resolver)]
):
    user_id = await authorize_target_user(caller, user_id, resolver)
    scope = await store.get_user_data_scope(caller.tenant_id, user_id)
    if scope is None:
        raise NotFoundError(f"No data scope stored for user '{user_id}'", user_id=user_id)
    return scope


@router.put("/users/{user_id}", response_model=UserDataScope)
async def set_user_scope(
    user_id: str,
    payload: UserDataScopeUpdate,
    store: StoreDep,
    caller: Annotated[Caller, Depends(require_permission(USER_ADMIN_RESOURCE, PermissionLevel.MANAGE))]
):
    """Create or replace a user's data scope. Granting global needs a super admin."""
    return await store.set_user_data_scope(
        caller.tenant_id, user_id, payload, allow_global=caller.is_super_admin
    )
