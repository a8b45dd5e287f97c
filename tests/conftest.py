"""Shared pytest fixtures: in-memory database, seeded catalog and an HTTP client."""

from collections.abc import AsyncIterator

import pytest
import pytest_asyncio
from fastapi import FastAPI
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from authz.core.database.base import Base
from authz.core.database.engine import enable_sqlite_foreign_keys, get_db, import_models
from authz.features.audit.schemas import AuditEvent
from authz.features.audit.sink import get_audit_sink
from authz.features.roles.schemas import AssignRoleToUser, RoleCreate, RolePermissionEntry
from authz.features.roles.store import RoleStore
from scripts.seed_permissions import seed_modules, seed_rules, seed_templates

TENANT = "tenant-a"
OTHER_TENANT = "tenant-b"


class RecordingSink:
    """Audit sink that keeps events in memory."""

    def __init__(self):
        self.events: list[AuditEvent] = []

    async def emit(self, event: AuditEvent) -> None:
        self.events.append(event)

    def actions(self) -> list[str]:
        return [event.action for event in self.events]


@pytest_asyncio.fixture()
async def session_factory() -> AsyncIterator[async_sessionmaker[AsyncSession]]:
    """Fresh in-memory SQLite database per test."""

    engine = create_async_engine(
        "sqlite+aiosqlite://",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    enable_sqlite_foreign_keys(engine)
    import_models()
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False, autoflush=False)

    await engine.dispose()


@pytest_asyncio.fixture()
async def db(session_factory) -> AsyncIterator[AsyncSession]:
    async with session_factory() as session:
        yield session


@pytest_asyncio.fixture()
async def catalog_db(db: AsyncSession) -> AsyncSession:
    """Session over a database holding the default modules, templates and rules."""

    await seed_modules(db)
    await seed_templates(db)
    await seed_rules(db)
    return db


@pytest.fixture()
def sink() -> RecordingSink:
    return RecordingSink()


async def make_role(
    db: AsyncSession,
    name: str,
    module_code: str,
    permissions: dict[str, str],
    tenant_id: str = TENANT
):
    store = RoleStore(db)
    return await store.create_role(tenant_id, RoleCreate(
        name=name,
        module_code=module_code,
        permissions=[
            RolePermissionEntry(resource_code=code, permission_level=level)
            for code, level in permissions.items()
        ],
    ))


async def assign(db: AsyncSession, user_id: str, role_id: str, tenant_id: str = TENANT, valid_until=None):
    store = RoleStore(db)
    payload = AssignRoleToUser(user_id=user_id, role_id=role_id, valid_until=valid_until)
    return await store.assign_user_role(tenant_id, payload.user_id, payload.role_id, valid_until=payload.valid_until)


@pytest_asyncio.fixture()
async def admin_db(catalog_db: AsyncSession) -> AsyncSession:
    """Catalog plus an "admin" user who manages users, roles and audit logs in TENANT."""

    role = await make_role(catalog_db, "Tenant Admin", "core", {
        "core_role_management": "manage",
        "core_user_management": "manage",
        "core_audit_logs": "view_only",
    })
    await assign(catalog_db, "admin", role.id)
    return catalog_db


@pytest_asyncio.fixture()
async def app(session_factory, sink: RecordingSink) -> AsyncIterator[FastAPI]:
    from authz.main import app as application

    async def override_get_db() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            try:
                yield session
                await session.commit()
            except Exception:
                await session.rollback()
                raise

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_audit_sink] = lambda: sink
    yield application
    application.dependency_overrides.clear()


@pytest_asyncio.fixture()
async def client(app: FastAPI) -> AsyncIterator[AsyncClient]:
    """HTTPX async client bound to the FastAPI app."""

    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://testserver") as http_client:
        yield http_client


def headers(user_id: str, tenant_id: str = TENANT) -> dict[str, str]:
    return {"X-Tenant-ID": tenant_id, "X-User-ID": user_id}
