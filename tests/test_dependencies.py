"""Route guards built by the require_* dependency factories."""

from collections.abc import AsyncIterator

import pytest_asyncio
from fastapi import Depends, FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core import config
from authz.core.database.engine import get_db
from authz.core.errors import AuthzError
from authz.features.audit.sink import get_audit_sink
from authz.features.permissions.dependencies import (
    require_all_permissions,
    require_any_permission,
    require_hierarchical_permission,
    require_module_access,
)
from authz.main import authz_exception_handler

from conftest import assign, headers, make_role

GUARDED_PATHS = ["/any", "/all", "/hierarchical", "/module"]


def build_guarded_app() -> FastAPI:
    guarded = FastAPI()
    guarded.add_exception_handler(AuthzError, authz_exception_handler)

    @guarded.get("/any", dependencies=[Depends(require_any_permission(["wms_reports_analytics", "wms_dashboard"]))])
    async def any_route():
        return {"ok": True}

    @guarded.get("/all", dependencies=[Depends(require_all_permissions(["wms_dashboard", "wms_reports_analytics"]))])
    async def all_route():
        return {"ok": True}

    @guarded.get("/hierarchical", dependencies=[Depends(require_hierarchical_permission(
        "wms_warehouse_operations", "wms_inbound_operations", "manage"
    ))])
    async def hierarchical_route():
        return {"ok": True}

    @guarded.get("/module", dependencies=[Depends(require_module_access("wms"))])
    async def module_route():
        return {"ok": True}

    return guarded


@pytest_asyncio.fixture()
async def guarded_client(session_factory, sink) -> AsyncIterator[AsyncClient]:
    guarded = build_guarded_app()

    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    guarded.dependency_overrides[get_db] = override_get_db
    guarded.dependency_overrides[get_audit_sink] = lambda: sink

    transport = ASGITransport(app=guarded)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


async def test_dashboard_viewer(guarded_client, catalog_db, sink):
    role = await make_role(catalog_db, "Viewer", "wms", {"wms_dashboard": "view_only"})
    await assign(catalog_db, "viewer", role.id)
    viewer = headers("viewer")

    assert (await guarded_client.get("/any", headers=viewer)).status_code == 200
    assert (await guarded_client.get("/module", headers=viewer)).status_code == 200

    every = await guarded_client.get("/all", headers=viewer)
    assert every.status_code == 403
    assert every.json()["context"]["resource_code"] == "wms_reports_analytics"
    assert sink.actions()[-1] == "permission_check_all"

    hierarchical = await guarded_client.get("/hierarchical", headers=viewer)
    assert hierarchical.status_code == 403
    assert hierarchical.json()["context"] == {
        "resource_code": "wms_inbound_operations",
        "parent_resource": "wms_warehouse_operations",
        "required_level": "manage",
    }


async def test_parent_grant_satisfies_hierarchical_guard(guarded_client, catalog_db):
    role = await make_role(catalog_db, "Operations", "wms", {"wms_warehouse_operations": "manage"})
    await assign(catalog_db, "ops", role.id)

    response = await guarded_client.get("/hierarchical", headers=headers("ops"))

    assert response.status_code == 200


async def test_user_without_roles_is_rejected_everywhere(guarded_client, catalog_db):
    stranger = headers("stranger")

    for path in GUARDED_PATHS:
        assert (await guarded_client.get(path, headers=stranger)).status_code == 403

    any_of = await guarded_client.get("/any", headers=stranger)
    assert any_of.json()["context"]["resource_codes"] == ["wms_reports_analytics", "wms_dashboard"]
    module = await guarded_client.get("/module", headers=stranger)
    assert module.json()["context"] == {"module_code": "wms"}


async def test_super_admin_passes_every_guard(guarded_client, catalog_db, monkeypatch, sink):
    monkeypatch.setattr(config, "SUPER_ADMIN_USER_IDS", frozenset({"root"}))

    for path in GUARDED_PATHS:
        assert (await guarded_client.get(path, headers=headers("root"))).status_code == 200
    assert sink.events == []
