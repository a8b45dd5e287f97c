"""
Role management API routes.

Provides endpoints for managing roles, their permission sets, role templates
and user role assignments. Reads need view_only and writes need manage on the
role management resource.
"""
from typing import Annotated, Any, Dict, List, Optional
from fastapi import APIRouter, BackgroundTasks, Depends, status
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import get_db
from authz.features.audit.schemas import AuditEvent
from authz.features.audit.sink import AuditSink, emit_safely, get_audit_sink
from authz.features.permissions.dependencies import ROLE_ADMIN_RESOURCE, require_permission
from authz.features.permissions.schemas import PermissionLevel
from authz.features.roles.schemas import (
    AssignRoleToUser,
    ExpiredAssignmentsResponse,
    RoleClone,
    RoleCreate,
    RoleFromTemplate,
    RolePermissionEntry,
    RolePermissionsReplace,
    RoleResponse,
    RoleTemplateResponse,
    RoleUpdate,
    RoleWithPermissions,
    UserModuleRoleResponse,
)
from authz.features.roles.store import RoleStore
from authz.features.users.schemas import Caller
from authz.utils import get_logger


log = get_logger(__name__)
router = APIRouter()

RoleReader = Annotated[Caller, Depends(require_permission(ROLE_ADMIN_RESOURCE, PermissionLevel.VIEW_ONLY))]
RoleManager = Annotated[Caller, Depends(require_permission(ROLE_ADMIN_RESOURCE, PermissionLevel.MANAGE))]


async def get_role_store(db: Annotated[AsyncSession, Depends(get_db)]) -> RoleStore:
    return RoleStore(db)


StoreDep = Annotated[RoleStore, Depends(get_role_store)]
SinkDep = Annotated[AuditSink, Depends(get_audit_sink)]


def _audit(
    background_tasks: BackgroundTasks,
    sink: AuditSink,
    caller: Caller,
    action: str,
    resource_type: str,
    resource_id: Optional[str],
    module_code: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None
) -> None:
    """Log an administration event in the background."""
    background_tasks.add_task(
        emit_safely,
        sink,
        AuditEvent(
            tenant_id=caller.tenant_id,
            user_id=caller.user_id,
            action=action,
            resource_type=resource_type,
            resource_id=resource_id,
            module_code=module_code,
            permission_required=PermissionLevel.MANAGE.value,
            details=details,
        ),
    )


# ============================================================================
# Template Routes
# ============================================================================

@router.get("/templates", response_model=List[RoleTemplateResponse])
async def list_templates(
    store: StoreDep,
    caller: RoleReader,
    module_code: Optional[str] = None
):
    """List active role templates, optionally for one module."""
    return await store.list_templates(module_code)


@router.get("/templates/{template_id}", response_model=RoleTemplateResponse)
async def get_template(template_id: str, store: StoreDep, caller: RoleReader):
    return await store.get_template(template_id)


# ============================================================================
# Assignment Routes
# ============================================================================

@router.post("/assignments", response_model=UserModuleRoleResponse, status_code=status.HTTP_201_CREATED)
async def assign_role_to_user(
    assignment: AssignRoleToUser,
    background_tasks: BackgroundTasks,
    store: StoreDep,
    sink: SinkDep,
    caller: RoleManager
):
    """Assign a role to a user in the role's module (optionally until a date)."""
    result = await store.assign_user_role(
        caller.tenant_id,
        assignment.user_id,
        assignment.role_id,
        assigned_by=caller.user_id,
        valid_until=assignment.valid_until,
    )
    _audit(
        background_tasks, sink, caller, "assign_role", "user", assignment.user_id,
        module_code=result.module_code, details={"role_id": assignment.role_id},
    )
    return result


@router.post("/assignments/expire", response_model=ExpiredAssignmentsResponse)
async def expire_assignments(store: StoreDep, caller: RoleManager):
    """Remove temporary assignments of this tenant whose validity has ended."""
    expired = await store.expire_temporary_assignments(caller.tenant_id)
    return ExpiredAssignmentsResponse(expired=expired)


@router.get("/assignments/{user_id}", response_model=List[UserModuleRoleResponse])
async def list_user_roles(
    user_id: str,
    store: StoreDep,
    caller: RoleReader,
    module_code: Optional[str] = None,
    include_expired: bool = False
):
    return await store.user_module_roles(caller.tenant_id, user_id, module_code, include_expired)


@router.delete("/assignments/{user_id}/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def remove_role_from_user(
    user_id: str,
    role_id: str,
    background_tasks: BackgroundTasks,
    store: StoreDep,
    sink: SinkDep,
    caller: RoleManager
):
    await store.remove_user_role(caller.tenant_id, user_id, role_id)
    _audit(background_tasks, sink, caller, "remove_role", "user", user_id, details={"role_id": role_id})


# ============================================================================
# Role Routes
# ============================================================================

@router.get("", response_model=List[RoleResponse])
async def list_roles(module_code: str, store: StoreDep, caller: RoleReader):
    """List the tenant's roles in a module."""
    return await store.roles_by_module(caller.tenant_id, module_code)


@router.post("", response_model=RoleWithPermissions, status_code=status.HTTP_201_CREATED)
async def create_role(
    role: RoleCreate,
    background_tasks: BackgroundTasks,
    store: StoreDep,
    sink: SinkDep,
    caller: RoleManager
):
    """Create a role and its initial permission set."""
    created = await store.create_role(caller.tenant_id, role)
    _audit(
        background_tasks, sink, caller, "create", "role", created.id,
        module_code=created.module_code, details=role.model_dump(mode="json"),
    )
    return created


@router.post("/from-template", response_model=RoleWithPermissions, status_code=status.HTTP_201_CREATED)
async def create_role_from_template(
    payload: RoleFromTemplate,
    background_tasks: BackgroundTasks,
    store: StoreDep,
    sink: SinkDep,
    caller: RoleManager
):
    created = await store.create_from_template(caller.tenant_id, payload.template_id, payload.custom_name)
    _audit(
        background_tasks, sink, caller, "create_from_template", "role", created.id,
        module_code=created.module_code, details={"template_id": payload.template_id},
    )
    return created


@router.get("/{role_id}", response_model=RoleWithPermissions)
async def get_role(role_id: str, store: StoreDep, caller: RoleReader):
    """Get a role with its permissions."""
    return await store.get_role(caller.tenant_id, role_id)


@router.put("/{role_id}", response_model=RoleWithPermissions)
async def update_role(
    role_id: str,
    role_update: RoleUpdate,
    background_tasks: BackgroundTasks,
    store: StoreDep,
    sink: SinkDep,
    caller: RoleManager
):
    updated = await store.update_role(caller.tenant_id, role_id, role_update)
    _audit(
        background_tasks, sink, caller, "update", "role", role_id,
        module_code=updated.module_code, details=role_update.model_dump(mode="json", exclude_unset=True),
    )
    return updated


@router.put("/{role_id}/permissions", response_model=List[RolePermissionEntry])
async def replace_role_permissions(
    role_id: str,
    payload: RolePermissionsReplace,
    background_tasks: BackgroundTasks,
    store: StoreDep,
    sink: SinkDep,
    caller: RoleManager
):
    """Atomically replace the role's permission set."""
    permissions = await store.set_role_permissions(caller.tenant_id, role_id, payload.permissions)
    _audit(
        background_tasks, sink, caller, "set_permissions", "role", role_id,
        details={"count": len(permissions)},
    )
    return permissions


@router.post("/{role_id}/clone", response_model=RoleWithPermissions, status_code=status.HTTP_201_CREATED)
async def clone_role(
    role_id: str,
    payload: RoleClone,
    background_tasks: BackgroundTasks,
    store: StoreDep,
    sink: SinkDep,
    caller: RoleManager
):
    cloned = await store.clone_role(caller.tenant_id, role_id, payload.name, payload.description)
    _audit(
        background_tasks, sink, caller, "clone", "role", cloned.id,
        module_code=cloned.module_code, details={"source_role_id": role_id},
    )
    return cloned


@router.delete("/{role_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_role(
    role_id: str,
    background_tasks: BackgroundTasks,
    store: StoreDep,
    sink: SinkDep,
    caller: RoleManager
):
    """Delete a role. Fails with 409 while any user holds it."""
    await store.delete_role(caller.tenant_id, role_id)
    _audit(background_tasks, sink, caller, "delete", "role", role_id)
