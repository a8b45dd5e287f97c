from datetime import timedelta

import pytest

from authz.core.errors import StorageError, ValidationError
from authz.features.audit.schemas import AuditStatus
from authz.features.permissions.endpoints import normalize_endpoint, required_level_for, resource_for_endpoint
from authz.features.permissions.resolver import PermissionResolver, evaluate_grants, strongest_grant
from authz.features.permissions.schemas import PermissionLevel, RoleGrant
from authz.features.roles.models import UserModuleRole, utcnow
from authz.features.roles.store import RoleStore

from conftest import OTHER_TENANT, TENANT, assign, make_role


def grant(role_name, level, resource_code="wms_inventory_tracking"):
    return RoleGrant(
        role_id=role_name.lower(),
        role_name=role_name,
        module_code="wms",
        resource_code=resource_code,
        permission_level=level,
    )


class BrokenStore:
    async def active_grants(self, *args, **kwargs):
        raise StorageError("database unavailable")

    async def user_module_roles(self, *args, **kwargs):
        raise StorageError("database unavailable")


# ----------------------------------------------------------------------
# Levels and pure evaluation
# ----------------------------------------------------------------------

def test_permission_levels_are_totally_ordered():
    assert PermissionLevel.NO_ACCESS < PermissionLevel.VIEW_ONLY < PermissionLevel.MANAGE
    assert max([PermissionLevel.VIEW_ONLY, PermissionLevel.MANAGE, PermissionLevel.NO_ACCESS]) == PermissionLevel.MANAGE
    assert PermissionLevel.MANAGE.meets(PermissionLevel.VIEW_ONLY)
    assert not PermissionLevel.VIEW_ONLY.meets(PermissionLevel.MANAGE)


@pytest.mark.parametrize("raw, expected", [
    ("manage", PermissionLevel.MANAGE),
    ("view", PermissionLevel.VIEW_ONLY),
    ("READ", PermissionLevel.VIEW_ONLY),
    (" view_only ", PermissionLevel.VIEW_ONLY),
    (PermissionLevel.NO_ACCESS, PermissionLevel.NO_ACCESS),
])
def test_parse_accepts_aliases(raw, expected):
    assert PermissionLevel.parse(raw) == expected


def test_parse_rejects_unknown_level():
    with pytest.raises(ValidationError):
        PermissionLevel.parse("admin")


def test_strongest_grant_keeps_first_on_ties():
    best = strongest_grant([
        grant("Alpha", PermissionLevel.VIEW_ONLY),
        grant("Beta", PermissionLevel.VIEW_ONLY),
    ])
    assert best.role_name == "Alpha"
    assert strongest_grant([]) is None


def test_evaluate_grants_highest_level_wins():
    check = evaluate_grants(
        [grant("Viewer", PermissionLevel.VIEW_ONLY), grant("Manager", PermissionLevel.MANAGE)],
        "wms_inventory_tracking",
        PermissionLevel.MANAGE,
    )
    assert check.allowed
    assert check.level == PermissionLevel.MANAGE
    assert check.granted_by_role == "Manager"


def test_evaluate_grants_no_access_row_does_not_satisfy_view():
    check = evaluate_grants(
        [grant("Blocked", PermissionLevel.NO_ACCESS)], "wms_inventory_tracking", PermissionLevel.VIEW_ONLY
    )
    assert not check.allowed
    assert check.reason == "insufficient_level"


# ----------------------------------------------------------------------
# Resolver against storage
# ----------------------------------------------------------------------

async def test_user_without_roles_is_denied_and_audited(catalog_db, sink):
    resolver = PermissionResolver(catalog_db, sink=sink)

    check = await resolver.check_permission(TENANT, "nobody", "wms_dashboard", "view_only")

    assert not check.allowed
    assert check.level == PermissionLevel.NO_ACCESS
    assert check.reason == "no_grant"
    assert len(sink.events) == 1
    assert sink.events[0].status == AuditStatus.DENIED
    assert sink.events[0].resource_id == "wms_dashboard"


async def test_wms_viewer_can_view_but_not_manage(catalog_db, sink):
    store = RoleStore(catalog_db)
    role = await store.create_from_template(TENANT, "wms_viewer")
    await assign(catalog_db, "u1", role.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    view = await resolver.check_permission(TENANT, "u1", "wms_inventory_tracking", "view_only")
    manage = await resolver.check_permission(TENANT, "u1", "wms_inventory_tracking", "manage")

    assert view.allowed
    assert view.granted_by_role == "WMS Viewer"
    assert not manage.allowed
    assert manage.level == PermissionLevel.VIEW_ONLY
    assert manage.reason == "insufficient_level"


async def test_highest_level_across_roles_wins(catalog_db, sink):
    viewer = await make_role(catalog_db, "Viewer", "wms", {"wms_inventory_tracking": "view_only"})
    manager = await make_role(catalog_db, "Manager", "wms", {"wms_inventory_tracking": "manage"})
    await assign(catalog_db, "u1", viewer.id)
    await assign(catalog_db, "u1", manager.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    check = await resolver.check_permission(TENANT, "u1", "wms_inventory_tracking", PermissionLevel.MANAGE)

    assert check.allowed
    assert check.granted_by_role == "Manager"
    assert sink.events == []


async def test_roles_do_not_leak_across_tenants(catalog_db, sink):
    role = await make_role(catalog_db, "Manager", "wms", {"wms_dashboard": "manage"}, tenant_id=OTHER_TENANT)
    await assign(catalog_db, "u1", role.id, tenant_id=OTHER_TENANT)
    resolver = PermissionResolver(catalog_db, sink=sink)

    assert (await resolver.check_permission(OTHER_TENANT, "u1", "wms_dashboard")).allowed
    assert not (await resolver.check_permission(TENANT, "u1", "wms_dashboard")).allowed


async def test_expired_assignment_grants_nothing(catalog_db, sink):
    role = await make_role(catalog_db, "Temp", "wms", {"wms_dashboard": "manage"})
    catalog_db.add(UserModuleRole(
        tenant_id=TENANT,
        user_id="u1",
        module_code="wms",
        role_id=role.id,
        valid_until=utcnow() - timedelta(minutes=1),
    ))
    await catalog_db.commit()
    resolver = PermissionResolver(catalog_db, sink=sink)

    assert not (await resolver.check_permission(TENANT, "u1", "wms_dashboard")).allowed
    assert not await resolver.check_module_access(TENANT, "u1", "wms")


async def test_storage_failure_fails_closed(sink):
    resolver = PermissionResolver(None, store=BrokenStore(), sink=sink)

    check = await resolver.check_permission(TENANT, "u1", "wms_dashboard")

    assert not check.allowed
    assert check.reason == "storage_error"
    assert sink.events[0].status == AuditStatus.ERROR
    assert not await resolver.check_module_access(TENANT, "u1", "wms")


async def test_storage_failure_propagates_from_listings():
    resolver = PermissionResolver(None, store=BrokenStore())
    with pytest.raises(StorageError):
        await resolver.effective_permissions(TENANT, "u1")


async def test_hierarchical_check_falls_back_to_parent(catalog_db, sink):
    role = await make_role(catalog_db, "Ops Lead", "wms", {"wms_warehouse_operations": "manage"})
    await assign(catalog_db, "u1", role.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    check = await resolver.check_hierarchical(
        TENANT, "u1", "wms_warehouse_operations", "wms_inbound_operations", "manage"
    )

    assert check.allowed
    assert check.resource_code == "wms_warehouse_operations"
    assert check.inherited_by == "wms_inbound_operations"


async def test_hierarchical_check_prefers_child_grant(catalog_db, sink):
    role = await make_role(catalog_db, "Inbound Clerk", "wms", {
        "wms_warehouse_operations": "view_only",
        "wms_inbound_operations": "manage",
    })
    await assign(catalog_db, "u1", role.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    check = await resolver.check_hierarchical(
        TENANT, "u1", "wms_warehouse_operations", "wms_inbound_operations", "manage"
    )
    assert check.allowed
    assert check.resource_code == "wms_inbound_operations"
    assert check.inherited_by is None

    denied = await resolver.check_hierarchical(
        TENANT, "u1", "wms_warehouse_operations", "wms_outbound_operations", "manage"
    )
    assert not denied.allowed
    assert denied.resource_code == "wms_outbound_operations"


async def test_check_with_inheritance_walks_ancestors(catalog_db, sink):
    role = await make_role(catalog_db, "Ops Lead", "wms", {"wms_warehouse_operations": "view_only"})
    await assign(catalog_db, "u1", role.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    check = await resolver.check_with_inheritance(TENANT, "u1", "wms", "wms_inventory_tracking")
    assert check.allowed
    assert check.inherited_by == "wms_inventory_tracking"

    orphaned = await resolver.check_with_inheritance(TENANT, "u1", "wms", "wms_reports_analytics")
    assert not orphaned.allowed


async def test_require_all_names_first_missing_resource(catalog_db, sink):
    role = await make_role(catalog_db, "Partial", "wms", {"wms_dashboard": "view_only"})
    await assign(catalog_db, "u1", role.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    result = await resolver.require_all(
        TENANT, "u1", ["wms_dashboard", "wms_reports_analytics", "wms_inbound_operations"]
    )

    assert not result.allowed
    assert result.missing == "wms_reports_analytics"
    assert len(result.checks) == 2


async def test_require_any_passes_on_one_grant(catalog_db, sink):
    role = await make_role(catalog_db, "Partial", "wms", {"wms_dashboard": "view_only"})
    await assign(catalog_db, "u1", role.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    assert (await resolver.require_any(TENANT, "u1", ["wms_reports_analytics", "wms_dashboard"])).allowed
    assert not (await resolver.require_any(TENANT, "u1", ["wms_reports_analytics"])).allowed


async def test_combinators_reject_empty_lists(catalog_db):
    resolver = PermissionResolver(catalog_db)
    with pytest.raises(ValidationError):
        await resolver.require_all(TENANT, "u1", [])
    with pytest.raises(ValidationError):
        await resolver.require_any(TENANT, "u1", [])


async def test_effective_permissions_and_modules(catalog_db, sink):
    store = RoleStore(catalog_db)
    wms_role = await store.create_from_template(TENANT, "wms_inventory_worker")
    core_role = await make_role(catalog_db, "Dashboards", "core", {"core_kpi_overview": "view_only"})
    await assign(catalog_db, "u1", wms_role.id)
    await assign(catalog_db, "u1", core_role.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    permissions = await resolver.effective_permissions(TENANT, "u1", module_code="wms")
    by_code = {p.resource_code: p.permission_level for p in permissions}

    assert by_code["wms_inventory_tracking"] == PermissionLevel.MANAGE
    assert by_code["wms_dashboard"] == PermissionLevel.VIEW_ONLY
    assert "core_kpi_overview" not in by_code
    assert await resolver.accessible_modules(TENANT, "u1") == ["core", "wms"]
    assert await resolver.accessible_modules(TENANT, "someone-else") == []


async def test_menu_permissions_cover_menu_resources_only(catalog_db, sink):
    store = RoleStore(catalog_db)
    role = await store.create_from_template(TENANT, "wms_inventory_worker")
    await assign(catalog_db, "u1", role.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    menu = await resolver.menu_permissions(TENANT, "u1", "wms")
    levels = {item.resource_code: item.permission_level for item in menu}

    assert "wms_reports_analytics" not in levels
    assert "wms_inventory_data" not in levels
    assert levels["wms_warehouse_operations"] == PermissionLevel.NO_ACCESS
    assert levels["wms_inventory_tracking"] == PermissionLevel.MANAGE
    assert [item.resource_code for item in menu][:2] == ["wms_dashboard", "wms_warehouse_operations"]


async def test_recalculate_and_read_cache(catalog_db, sink):
    role = await make_role(catalog_db, "Viewer", "wms", {"wms_dashboard": "view_only", "wms_inbound_operations": "manage"})
    await assign(catalog_db, "u1", role.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    first = await resolver.calculate_effective_permissions(TENANT, "u1")
    second = await resolver.calculate_effective_permissions(TENANT, "u1")
    cached = await resolver.cached_effective_permissions(TENANT, "u1")

    assert len(first) == len(second) == 2
    assert [(c.resource_code, c.permission_level) for c in cached] == [
        ("wms_dashboard", PermissionLevel.VIEW_ONLY),
        ("wms_inbound_operations", PermissionLevel.MANAGE),
    ]


# ----------------------------------------------------------------------
# Endpoint mapping
# ----------------------------------------------------------------------

def test_endpoint_mapping_exact_and_prefix():
    assert resource_for_endpoint("/api/wms/inventory", "get") == "wms_inventory_tracking"
    assert resource_for_endpoint("/api/wms/inventory/42?expand=1", "PUT") == "wms_inventory_tracking"
    assert resource_for_endpoint("/api/wms/inventory-export", "GET") is None
    assert resource_for_endpoint("/api/wms/inventory", "DELETE") is None


def test_endpoint_helpers():
    assert normalize_endpoint("/api/users/?page=2") == "/api/users"
    assert normalize_endpoint("/") == "/"
    assert required_level_for("head") == PermissionLevel.VIEW_ONLY
    assert required_level_for("PATCH") == PermissionLevel.MANAGE


async def test_validate_endpoint_access(catalog_db, sink):
    store = RoleStore(catalog_db)
    role = await store.create_from_template(TENANT, "wms_viewer")
    await assign(catalog_db, "u1", role.id)
    resolver = PermissionResolver(catalog_db, sink=sink)

    assert (await resolver.validate_endpoint_access(TENANT, "u1", "/api/wms/inbound", "GET")).allowed
    assert not (await resolver.validate_endpoint_access(TENANT, "u1", "/api/wms/inbound", "POST")).allowed

    unmapped = await resolver.validate_endpoint_access(TENANT, "u1", "/api/unknown", "GET")
    assert not unmapped.allowed
    assert unmapped.reason == "unmapped_endpoint"
    assert sink.actions()[-1] == "endpoint_access"
