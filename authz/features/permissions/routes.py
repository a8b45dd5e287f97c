"""
Permission resolution API routes.

Decision endpoints return the resolver's result as data (HTTP 200 with
``allowed`` false on denial); only the ``require_*`` dependencies turn a
denial into a 403.
"""
from typing import Annotated, List, Optional
from fastapi import APIRouter, Depends, HTTPException, status
from starlette.requests import Request

from authz.core import config
from authz.core.limiter import limiter
from authz.features.permissions.dependencies import (
    ROLE_ADMIN_RESOURCE,
    authorize_target_user,
    get_permission_resolver,
    require_permission,
)
from authz.features.permissions.resolver import PermissionResolver
from authz.features.permissions.schemas import (
    AccessibleModulesResponse,
    CachedEffectivePermission,
    CombinedCheck,
    EffectivePermission,
    EndpointAccessRequest,
    HierarchicalCheckRequest,
    MenuPermission,
    ModuleAccessResponse,
    MultiPermissionCheckRequest,
    PermissionCheck,
    PermissionCheckRequest,
    PermissionLevel,
    RecalculationResponse,
)
from authz.features.users.dependencies import get_caller
from authz.features.users.schemas import Caller
from authz.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

CallerDep = Annotated[Caller, Depends(get_caller)]
ResolverDep = Annotated[PermissionResolver, Depends(get_permission_resolver)]


# ============================================================================
# Checks
# ============================================================================

@router.post("/check", response_model=PermissionCheck)
@limiter.limit(config.CHECK_RATE_LIMIT)
async def check_permission(
    request: Request,
    payload: PermissionCheckRequest,
    caller: CallerDep,
    resolver: ResolverDep
):
    """Check one resource for the caller, or for another user with user management access."""
    user_id = await authorize_target_user(caller, payload.user_id, resolver)
    return await resolver.check_permission(
        caller.tenant_id, user_id, payload.resource_code, payload.required_level
    )


@router.post("/check-hierarchical", response_model=PermissionCheck)
@limiter.limit(config.CHECK_RATE_LIMIT)
async def check_hierarchical(
    request: Request,
    payload: HierarchicalCheckRequest,
    caller: CallerDep,
    resolver: ResolverDep
):
    """Check a child resource, falling back to its parent."""
    user_id = await authorize_target_user(caller, payload.user_id, resolver)
    return await resolver.check_hierarchical(
        caller.tenant_id, user_id, payload.parent_resource, payload.child_resource, payload.required_level
    )


@router.post("/check-any", response_model=CombinedCheck)
@limiter.limit(config.CHECK_RATE_LIMIT)
async def check_any(
    request: Request,
    payload: MultiPermissionCheckRequest,
    caller: CallerDep,
    resolver: ResolverDep
):
    user_id = await authorize_target_user(caller, payload.user_id, resolver)
    return await resolver.require_any(
        caller.tenant_id, user_id, payload.resource_codes, payload.required_level
    )


@router.post("/check-all", response_model=CombinedCheck)
@limiter.limit(config.CHECK_RATE_LIMIT)
async def check_all(
    request: Request,
    payload: MultiPermissionCheckRequest,
    caller: CallerDep,
    resolver: ResolverDep
):
    user_id = await authorize_target_user(caller, payload.user_id, resolver)
    return await resolver.require_all(
        caller.tenant_id, user_id, payload.resource_codes, payload.required_level
    )


@router.post("/validate-endpoint", response_model=PermissionCheck)
@limiter.limit(config.CHECK_RATE_LIMIT)
async def validate_endpoint(
    request: Request,
    payload: EndpointAccessRequest,
    caller: CallerDep,
    resolver: ResolverDep
):
    """Map an API endpoint to its resource and check it (GET needs view_only, writes need manage)."""
    user_id = await authorize_target_user(caller, payload.user_id, resolver)
    return await resolver.validate_endpoint_access(caller.tenant_id, user_id, payload.endpoint, payload.method)


# ============================================================================
# Listings
# ============================================================================

@router.get("/me", response_model=List[EffectivePermission])
async def get_my_permissions(
    caller: CallerDep,
    resolver: ResolverDep,
    module_code: Optional[str] = None
):
    """Effective permissions of the caller."""
    return await resolver.effective_permissions(caller.tenant_id, caller.user_id, module_code)


@router.get("/users/{user_id}", response_model=List[EffectivePermission])
async def get_user_permissions(
    user_id: str,
    caller: CallerDep,
    resolver: ResolverDep,
    module_code: Optional[str] = None
):
    """Effective permissions of a user (self, or requires user management access)."""
    user_id = await authorize_target_user(caller, user_id, resolver)
    return await resolver.effective_permissions(caller.tenant_id, user_id, module_code)


@router.get("/modules", response_model=AccessibleModulesResponse)
async def get_accessible_modules(caller: CallerDep, resolver: ResolverDep):
    modules = await resolver.accessible_modules(caller.tenant_id, caller.user_id)
    return AccessibleModulesResponse(user_id=caller.user_id, modules=modules)


@router.get("/modules/{module_code}/access", response_model=ModuleAccessResponse)
async def get_module_access(module_code: str, caller: CallerDep, resolver: ResolverDep):
    has_access = await resolver.check_module_access(caller.tenant_id, caller.user_id, module_code)
    return ModuleAccessResponse(user_id=caller.user_id, module_code=module_code, has_access=has_access)


@router.get("/modules/{module_code}/menu", response_model=List[MenuPermission])
async def get_menu_permissions(module_code: str, caller: CallerDep, resolver: ResolverDep):
    """Menu tree of a module annotated with the caller's levels."""
    return await resolver.menu_permissions(caller.tenant_id, caller.user_id, module_code)


# ============================================================================
# Effective Permission Cache
# ============================================================================

def _ensure_cache_enabled():
    if not config.EFFECTIVE_PERMISSION_CACHE:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Effective permission cache is disabled"
        )


@router.post("/users/{user_id}/recalculate", response_model=RecalculationResponse)
async def recalculate_user_permissions(
    user_id: str,
    resolver: ResolverDep,
    caller: Caller = Depends(require_permission(ROLE_ADMIN_RESOURCE, PermissionLevel.MANAGE))
):
    """Rebuild a user's cached effective permissions."""
    _ensure_cache_enabled()
    permissions = await resolver.calculate_effective_permissions(caller.tenant_id, user_id)
    log.info(f"User {caller.user_id} recalculated permissions of {user_id}")
    return RecalculationResponse(user_id=user_id, calculated=len(permissions), permissions=permissions)


@router.get("/users/{user_id}/cached", response_model=List[CachedEffectivePermission])
async def get_cached_permissions(
    user_id: str,
    caller: CallerDep,
    resolver: ResolverDep,
    module_code: Optional[str] = None
):
    _ensure_cache_enabled()
    user_id = await authorize_target_user(caller, user_id, resolver)
    return await resolver.cached_effective_permissions(caller.tenant_id, user_id, module_code)
