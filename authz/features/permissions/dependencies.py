"""
FastAPI dependencies for route protection.

Each ``require_*`` factory returns a dependency that resolves the caller, asks
the PermissionResolver, and raises ``AuthorizationDenied`` (403) on a negative
decision. Super admins listed in ``SUPER_ADMIN_USER_IDS`` bypass the resolver
here, at the transport boundary, and nowhere else.
"""
from typing import Annotated, Sequence
from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import get_db
from authz.core.errors import AuthorizationDenied
from authz.features.audit.sink import AuditSink, get_audit_sink
from authz.features.permissions.resolver import LevelLike, PermissionResolver
from authz.features.permissions.schemas import PermissionLevel
from authz.features.users.dependencies import get_caller
from authz.features.users.schemas import Caller
from authz.utils import get_logger


log = get_logger(__name__)

# Resources guarding the administration routes of this service
ROLE_ADMIN_RESOURCE = "core_role_management"
USER_ADMIN_RESOURCE = "core_user_management"
AUDIT_LOG_RESOURCE = "core_audit_logs"


async def get_permission_resolver(
    db: Annotated[AsyncSession, Depends(get_db)],
    sink: Annotated[AuditSink, Depends(get_audit_sink)]
) -> PermissionResolver:
    return PermissionResolver(db, sink=sink)


def _bypass(caller: Caller, what: str) -> bool:
    if caller.is_super_admin:
        log.debug(f"Super admin {caller.user_id} bypassed {what}")
        return True
    return False


def require_permission(resource_code: str, level: LevelLike = PermissionLevel.VIEW_ONLY):
    """
    FastAPI dependency to require a level on one resource.

    Usage:
        @router.put("/inventory")
        async def update_inventory(
            caller: Caller = Depends(require_permission("wms_inventory_tracking", "manage"))
        ):
            # Caller holds manage on wms_inventory_tracking
            pass

    Raises:
        AuthorizationDenied: 403 if the resolver denies the check
    """
    required = PermissionLevel.parse(level)

    async def permission_dependency(
        caller: Annotated[Caller, Depends(get_caller)],
        resolver: Annotated[PermissionResolver, Depends(get_permission_resolver)]
    ) -> Caller:
        if _bypass(caller, resource_code):
            return caller
        check = await resolver.check_permission(caller.tenant_id, caller.user_id, resource_code, required)
        if not check.allowed:
            raise AuthorizationDenied(
                f"Permission denied: {required.value} on {resource_code}",
                resource_code=resource_code,
                required_level=required.value,
                current_level=check.level.value,
            )
        return caller

    return permission_dependency


def require_any_permission(resource_codes: Sequence[str], level: LevelLike = PermissionLevel.VIEW_ONLY):
    """
    FastAPI dependency to require the level on ANY of the resources.

    Usage:
        @router.get("/reports")
        async def get_reports(
            caller: Caller = Depends(require_any_permission(["wms_reports_analytics", "wms_dashboard"]))
        ):
            pass
    """
    required = PermissionLevel.parse(level)
    codes = list(resource_codes)

    async def permission_dependency(
        caller: Annotated[Caller, Depends(get_caller)],
        resolver: Annotated[PermissionResolver, Depends(get_permission_resolver)]
    ) -> Caller:
        if _bypass(caller, f"any of {codes}"):
            return caller
        result = await resolver.require_any(caller.tenant_id, caller.user_id, codes, required)
        if not result.allowed:
            raise AuthorizationDenied(
                f"Permission denied: requires {required.value} on one of {codes}",
                resource_codes=codes,
                required_level=required.value,
            )
        return caller

    return permission_dependency


def require_all_permissions(resource_codes: Sequence[str], level: LevelLike = PermissionLevel.VIEW_ONLY):
    """FastAPI dependency to require the level on EVERY resource; names the first missing one."""
    required = PermissionLevel.parse(level)
    codes = list(resource_codes)

    async def permission_dependency(
        caller: Annotated[Caller, Depends(get_caller)],
        resolver: Annotated[PermissionResolver, Depends(get_permission_resolver)]
    ) -> Caller:
        if _bypass(caller, f"all of {codes}"):
            return caller
        result = await resolver.require_all(caller.tenant_id, caller.user_id, codes, required)
        if not result.allowed:
            raise AuthorizationDenied(
                f"Permission denied: {required.value} on {result.missing}",
                resource_code=result.missing,
                required_level=required.value,
            )
        return caller

    return permission_dependency


def require_hierarchical_permission(
    parent_resource: str,
    child_resource: str,
    level: LevelLike = PermissionLevel.VIEW_ONLY
):
    """FastAPI dependency passing when the child, or failing that the parent, grants the level."""
    required = PermissionLevel.parse(level)

    async def permission_dependency(
        caller: Annotated[Caller, Depends(get_caller)],
        resolver: Annotated[PermissionResolver, Depends(get_permission_resolver)]
    ) -> Caller:
        if _bypass(caller, child_resource):
            return caller
        check = await resolver.check_hierarchical(
            caller.tenant_id, caller.user_id, parent_resource, child_resource, required
        )
        if not check.allowed:
            raise AuthorizationDenied(
                f"Permission denied: {required.value} on {child_resource}",
                resource_code=child_resource,
                parent_resource=parent_resource,
                required_level=required.value,
            )
        return caller

    return permission_dependency


def require_module_access(module_code: str):
    """FastAPI dependency requiring at least one active role in the module."""

    async def module_dependency(
        caller: Annotated[Caller, Depends(get_caller)],
        resolver: Annotated[PermissionResolver, Depends(get_permission_resolver)]
    ) -> Caller:
        if _bypass(caller, f"module {module_code}"):
            return caller
        if not await resolver.check_module_access(caller.tenant_id, caller.user_id, module_code):
            raise AuthorizationDenied(
                f"No access to module {module_code}",
                module_code=module_code,
            )
        return caller

    return module_dependency


async def authorize_target_user(
    caller: Caller,
    user_id: str | None,
    resolver: PermissionResolver
) -> str:
    """
    Resolve whose permissions a request is about.

    Callers may always inspect themselves; inspecting another user needs
    view_only on user management.
    """
    if not user_id or user_id == caller.user_id or caller.is_super_admin:
        return user_id or caller.user_id
    check = await resolver.check_permission(
        caller.tenant_id, caller.user_id, USER_ADMIN_RESOURCE, PermissionLevel.VIEW_ONLY
    )
    if not check.allowed:
        raise AuthorizationDenied(
            "Permission denied: cannot inspect other users",
            resource_code=USER_ADMIN_RESOURCE,
        )
    return user_id
