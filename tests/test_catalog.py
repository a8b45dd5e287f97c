import pytest

from authz.core.errors import NotFoundError
from authz.features.resources.catalog import ResourceCatalog, ancestor_codes, build_hierarchy
from authz.features.resources.schemas import ResourceResponse, ResourceType


def resource(code, parent=None, order=0, leaf=True):
    return ResourceResponse(
        code=code,
        name=code.title(),
        module_code="wms",
        parent_code=parent,
        resource_type=ResourceType.MENU,
        is_leaf=leaf,
        display_order=order,
    )


def test_build_hierarchy_is_preorder_with_level_and_path():
    nodes = build_hierarchy([
        resource("reports", order=2),
        resource("inbound", parent="operations", order=1),
        resource("operations", order=1, leaf=False),
        resource("outbound", parent="operations", order=2),
    ])

    assert [n.code for n in nodes] == ["operations", "inbound", "outbound", "reports"]
    assert [n.level for n in nodes] == [0, 1, 1, 0]
    assert [n.path for n in nodes] == [[1], [1, 1], [1, 2], [2]]


def test_build_hierarchy_orders_siblings_by_display_order_then_code():
    nodes = build_hierarchy([
        resource("b", order=1),
        resource("a", order=1),
        resource("c", order=0),
    ])
    assert [n.code for n in nodes] == ["c", "a", "b"]


def test_build_hierarchy_omits_orphans_and_cycles():
    nodes = build_hierarchy([
        resource("root"),
        resource("child", parent="root"),
        resource("orphan", parent="missing"),
        resource("loop_a", parent="loop_b"),
        resource("loop_b", parent="loop_a"),
    ])
    assert [n.code for n in nodes] == ["root", "child"]


def test_ancestor_codes_nearest_first_and_stops_on_cycle():
    resources = [
        resource("root"),
        resource("mid", parent="root"),
        resource("leaf", parent="mid"),
    ]
    assert ancestor_codes(resources, "leaf") == ["mid", "root"]
    assert ancestor_codes(resources, "root") == []

    cyclic = [resource("x", parent="y"), resource("y", parent="x")]
    assert ancestor_codes(cyclic, "x") == ["y"]


async def test_seeded_wms_hierarchy(catalog_db):
    catalog = ResourceCatalog(catalog_db)
    nodes = await catalog.hierarchy("wms")

    assert [n.code for n in nodes] == [
        "wms_dashboard",
        "wms_warehouse_operations",
        "wms_inbound_operations",
        "wms_outbound_operations",
        "wms_inventory_tracking",
        "wms_reports_analytics",
        "wms_inventory_data",
        "wms_shipment_data",
    ]
    inventory = next(n for n in nodes if n.code == "wms_inventory_tracking")
    assert inventory.level == 1
    assert inventory.path == [2, 3]


async def test_list_resources_leaf_only_by_default(catalog_db):
    catalog = ResourceCatalog(catalog_db)

    leaves = [r.code for r in await catalog.list_resources("wms")]
    everything = [r.code for r in await catalog.list_resources("wms", include_non_leaf=True)]

    assert "wms_warehouse_operations" not in leaves
    assert "wms_warehouse_operations" in everything


async def test_scopeable_resources_are_leaf_data(catalog_db):
    catalog = ResourceCatalog(catalog_db)
    scopeable = await catalog.scopeable_resources("wms")
    assert [r.code for r in scopeable] == ["wms_inventory_data", "wms_shipment_data"]


async def test_unknown_module_and_resource(catalog_db):
    catalog = ResourceCatalog(catalog_db)

    with pytest.raises(NotFoundError):
        await catalog.get_module("finance")
    with pytest.raises(NotFoundError):
        await catalog.hierarchy("finance")
    with pytest.raises(NotFoundError):
        await catalog.get_resource("wms_nothing")


async def test_ancestors_from_storage(catalog_db):
    catalog = ResourceCatalog(catalog_db)
    assert await catalog.ancestors("wms", "wms_inbound_operations") == ["wms_warehouse_operations"]
