"""
Building a FieldAccessContext for a caller from their live grants.

Permission names visible to field rules are the resource codes the caller
holds at ``view_only`` or above, plus ``<resource_code>.manage`` for those held
at ``manage``. Role names are the names of the caller's active roles.
"""
from authz.features.data_scopes.store import DataScopeStore
from authz.features.field_access.schemas import FieldAccessContext
from authz.features.permissions.resolver import PermissionResolver
from authz.features.permissions.schemas import EffectivePermission, PermissionLevel
from authz.features.users.schemas import Caller


def permission_names(permissions: list[EffectivePermission]) -> frozenset[str]:
    names: set[str] = set()
    for permission in permissions:
        if permission.permission_level.meets(PermissionLevel.VIEW_ONLY):
            names.add(permission.resource_code)
        if permission.permission_level.meets(PermissionLevel.MANAGE):
            names.add(f"{permission.resource_code}.manage")
    return frozenset(names)


async def build_field_context(
    caller: Caller,
    resolver: PermissionResolver,
    scope_store: DataScopeStore,
    action: str = "read"
) -> FieldAccessContext:
    permissions = await resolver.effective_permissions(caller.tenant_id, caller.user_id)
    role_names = await resolver.store.active_role_names(caller.tenant_id, caller.user_id)
    user_scope = await scope_store.get_user_data_scope(caller.tenant_id, caller.user_id)
    return FieldAccessContext(
        permissions=permission_names(permissions),
        roles=frozenset(role_names),
        action=action,
        user_scope=user_scope,
    )
