"""
RoleStore: tenant roles, their permission sets, templates and assignments.

Every write runs inside ``atomic`` so a role and its permission set change
together or not at all. Every tenant-owned query filters on ``tenant_id``.
"""
from collections.abc import Iterable
from datetime import datetime
from typing import Optional
from sqlalchemy import select, delete, insert, func
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.base import generate_ulid
from authz.core.database.engine import atomic, storage_errors
from authz.core.errors import ConflictError, NotFoundError, ValidationError
from authz.features.permissions.schemas import PermissionLevel, RoleGrant
from authz.features.resources.catalog import ResourceCatalog
from authz.features.roles.models import (
    Role,
    RolePermission,
    RoleTemplate,
    UserModuleRole,
    as_utc,
    utcnow,
)
from authz.features.roles.schemas import (
    RoleCreate,
    RolePermissionEntry,
    RoleResponse,
    RoleTemplateResponse,
    RoleUpdate,
    RoleWithPermissions,
    UserModuleRoleResponse,
)
from authz.utils import get_logger


log = get_logger(__name__)


class RoleStore:
    """
    Usage:
        store = RoleStore(db)
        role = await store.create_role(tenant_id, RoleCreate(name="WMS Viewer", module_code="wms"))
    """

    def __init__(self, db: AsyncSession, catalog: Optional[ResourceCatalog] = None):
        self.db = db
        self.catalog = catalog or ResourceCatalog(db)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    async def roles_by_module(self, tenant_id: str, module_code: str) -> list[RoleResponse]:
        stmt = (
            select(Role)
            .where(Role.tenant_id == tenant_id, Role.module_code == module_code)
            .order_by(Role.name)
        )
        async with storage_errors():
            result = await self.db.execute(stmt)
        return [RoleResponse.model_validate(role) for role in result.scalars().all()]

    async def _load_role(self, tenant_id: str, role_id: str, for_update: bool = False) -> Role:
        stmt = select(Role).where(Role.id == role_id, Role.tenant_id == tenant_id)
        if for_update:
            stmt = stmt.with_for_update()
        async with storage_errors():
            result = await self.db.execute(stmt)
        role = result.scalar_one_or_none()
        if role is None:
            raise NotFoundError(f"Role '{role_id}' not found", role_id=role_id)
        return role

    async def role_permissions(self, tenant_id: str, role_id: str) -> list[RolePermissionEntry]:
        await self._load_role(tenant_id, role_id)
        return await self._permission_entries(role_id)

    async def _permission_entries(self, role_id: str) -> list[RolePermissionEntry]:
        stmt = (
            select(RolePermission)
            .where(RolePermission.role_id == role_id)
            .order_by(RolePermission.resource_code)
        )
        async with storage_errors():
            result = await self.db.execute(stmt)
        return [
            RolePermissionEntry(
                resource_code=row.resource_code,
                permission_level=PermissionLevel.parse(row.permission_level),
            )
            for row in result.scalars().all()
        ]

    async def get_role(self, tenant_id: str, role_id: str) -> RoleWithPermissions:
        role = await self._load_role(tenant_id, role_id)
        permissions = await self._permission_entries(role.id)
        return RoleWithPermissions(
            **RoleResponse.model_validate(role).model_dump(),
            permissions=permissions,
        )

    # ------------------------------------------------------------------
    # Validation helpers
    # ------------------------------------------------------------------

    async def _validate_permissions(
        self,
        module_code: str,
        entries: Iterable[RolePermissionEntry]
    ) -> list[RolePermissionEntry]:
        entries = list(entries)
        codes = [entry.resource_code for entry in entries]
        duplicates = sorted({code for code in codes if codes.count(code) > 1})
        if duplicates:
            raise ValidationError(
                "Duplicate resource codes in permission set",
                resource_codes=duplicates,
            )
        existing = await self.catalog.existing_codes(module_code, codes)
        unknown = sorted(set(codes) - existing)
        if unknown:
            raise ValidationError(
                f"Unknown resources for module '{module_code}'",
                module_code=module_code,
                resource_codes=unknown,
            )
        return entries

    @staticmethod
    def _validate_name(name: Optional[str]) -> str:
        if name is None or not name.strip():
            raise ValidationError("Role name is required")
        return name.strip()

    async def _replace_permissions(self, role_id: str, entries: list[RolePermissionEntry]) -> None:
        """Delete-then-insert; caller owns the transaction."""
        await self.db.execute(delete(RolePermission).where(RolePermission.role_id == role_id))
        if entries:
            await self.db.execute(
                insert(RolePermission),
                [
                    {
                        "role_id": role_id,
                        "resource_code": entry.resource_code,
                        "permission_level": entry.permission_level.value,
                    }
                    for entry in entries
                ],
            )

    # ------------------------------------------------------------------
    # Role writes
    # ------------------------------------------------------------------

    async def create_role(self, tenant_id: str, data: RoleCreate, is_custom: bool = True) -> RoleWithPermissions:
        """Insert a role and its initial permission set in one transaction."""
        name = self._validate_name(data.name)
        await self.catalog.get_module(data.module_code)
        if data.based_on_template:
            await self.get_template(data.based_on_template)
        entries = await self._validate_permissions(data.module_code, data.permissions or [])

        role = Role(
            id=generate_ulid(),
            tenant_id=tenant_id,
            module_code=data.module_code,
            name=name,
            description=data.description,
            is_custom=is_custom,
            based_on_template=data.based_on_template,
        )
        async with atomic(self.db):
            self.db.add(role)
            await self.db.flush()
            await self._replace_permissions(role.id, entries)

        await self.db.refresh(role)
        log.info(
            f"Created role {role.id} ({name!r}) in module {data.module_code} "
            f"for tenant {tenant_id} with {len(entries)} permission(s)"
        )
        return await self.get_role(tenant_id, role.id)

    async def create_from_template(
        self,
        tenant_id: str,
        template_id: str,
        custom_name: Optional[str] = None
    ) -> RoleWithPermissions:
        """Instantiate a template; its default permissions are copied verbatim."""
        template = await self.get_template(template_id)
        data = RoleCreate(
            name=custom_name or template.display_name,
            module_code=template.module_code,
            description=template.description,
            based_on_template=template.id,
            permissions=list(template.default_permissions),
        )
        return await self.create_role(tenant_id, data, is_custom=custom_name is not None)

    async def update_role(self, tenant_id: str, role_id: str, data: RoleUpdate) -> RoleWithPermissions:
        """Update name/description; a provided permission list replaces the whole set."""
        role = await self._load_role(tenant_id, role_id)
        updates = data.model_dump(exclude_unset=True, exclude={"permissions"})
        if "name" in updates:
            updates["name"] = self._validate_name(updates["name"])

        entries = None
        if data.permissions is not None:
            entries = await self._validate_permissions(role.module_code, data.permissions)

        async with atomic(self.db):
            for field, value in updates.items():
                setattr(role, field, value)
            if entries is not None:
                await self._replace_permissions(role.id, entries)

        log.info(f"Updated role {role_id} for tenant {tenant_id}: {sorted(updates)}")
        await self.db.refresh(role)
        return await self.get_role(tenant_id, role_id)

    async def set_role_permissions(
        self,
        tenant_id: str,
        role_id: str,
        entries: Iterable[RolePermissionEntry]
    ) -> list[RolePermissionEntry]:
        """Atomically replace a role's permission set."""
        role = await self._load_role(tenant_id, role_id)
        entries = await self._validate_permissions(role.module_code, entries)

        async with atomic(self.db):
            await self._replace_permissions(role.id, entries)

        log.info(f"Replaced permissions of role {role_id}: {len(entries)} entries")
        return await self._permission_entries(role.id)

    async def clone_role(
        self,
        tenant_id: str,
        role_id: str,
        name: str,
        description: Optional[str] = None
    ) -> RoleWithPermissions:
        """Copy a role and its permission set under a new name in the same module."""
        source = await self.get_role(tenant_id, role_id)
        data = RoleCreate(
            name=name,
            module_code=source.module_code,
            description=description if description is not None else source.description,
            based_on_template=source.based_on_template,
            permissions=list(source.permissions),
        )
        return await self.create_role(tenant_id, data, is_custom=True)

    async def delete_role(self, tenant_id: str, role_id: str) -> None:
        """
        Delete a role and its permissions.

        A role with any assignment raises ConflictError and is left intact.
        The usage count is read first; an assignment committed after that read
        still blocks the delete through the RESTRICT foreign key, which
        ``atomic`` turns into ConflictError after rolling back.
        """
        async with atomic(self.db):
            role = await self._load_role(tenant_id, role_id, for_update=True)
            in_use = await self.db.scalar(
                select(func.count())
                .select_from(UserModuleRole)
                .where(UserModuleRole.role_id == role.id, UserModuleRole.tenant_id == tenant_id)
            )
            if in_use:
                raise ConflictError(
                    f"Role '{role.name}' is assigned to {in_use} user(s)",
                    role_id=role_id,
                    assignments=in_use,
                )
            await self.db.execute(delete(RolePermission).where(RolePermission.role_id == role.id))
            await self.db.delete(role)

        log.info(f"Deleted role {role_id} for tenant {tenant_id}")

    # ------------------------------------------------------------------
    # Templates
    # ------------------------------------------------------------------

    async def list_templates(self, module_code: Optional[str] = None) -> list[RoleTemplateResponse]:
        stmt = select(RoleTemplate).where(RoleTemplate.is_active.is_(True))
        if module_code:
            stmt = stmt.where(RoleTemplate.module_code == module_code)
        stmt = stmt.order_by(RoleTemplate.module_code, RoleTemplate.template_name)

        async with storage_errors():
            result = await self.db.execute(stmt)
        return [RoleTemplateResponse.model_validate(t) for t in result.scalars().all()]

    async def get_template(self, template_id: str) -> RoleTemplateResponse:
        async with storage_errors():
            template = await self.db.get(RoleTemplate, template_id)
        if template is None or not template.is_active:
            raise NotFoundError(f"Role template '{template_id}' not found", template_id=template_id)
        return RoleTemplateResponse.model_validate(template)

    # ------------------------------------------------------------------
    # Assignments
    # ------------------------------------------------------------------

    async def assign_user_role(
        self,
        tenant_id: str,
        user_id: str,
        role_id: str,
        assigned_by: Optional[str] = None,
        valid_until: Optional[datetime] = None
    ) -> UserModuleRoleResponse:
        """Assign a role to a user in the role's module. Re-assigning raises ConflictError."""
        if valid_until is not None and as_utc(valid_until) <= utcnow():
            raise ValidationError("valid_until must be in the future", valid_until=valid_until.isoformat())

        assignment = UserModuleRole(
            id=generate_ulid(),
            tenant_id=tenant_id,
            user_id=user_id,
            role_id=role_id,
            assigned_by=assigned_by,
            assigned_at=utcnow(),
            valid_until=valid_until,
        )
        async with atomic(self.db):
            role = await self._load_role(tenant_id, role_id, for_update=True)
            assignment.module_code = role.module_code
            self.db.add(assignment)

        log.info(
            f"Assigned role {role_id} to user {user_id} in module {assignment.module_code} "
            f"(tenant {tenant_id}, until {valid_until})"
        )
        return UserModuleRoleResponse.model_validate(assignment)

    async def remove_user_role(self, tenant_id: str, user_id: str, role_id: str) -> None:
        async with atomic(self.db):
            result = await self.db.execute(
                delete(UserModuleRole).where(
                    UserModuleRole.tenant_id == tenant_id,
                    UserModuleRole.user_id == user_id,
                    UserModuleRole.role_id == role_id,
                )
            )
            if result.rowcount == 0:
                raise NotFoundError(
                    f"User '{user_id}' does not hold role '{role_id}'",
                    user_id=user_id,
                    role_id=role_id,
                )
        log.info(f"Removed role {role_id} from user {user_id} (tenant {tenant_id})")

    async def user_module_roles(
        self,
        tenant_id: str,
        user_id: str,
        module_code: Optional[str] = None,
        include_expired: bool = False
    ) -> list[UserModuleRoleResponse]:
        stmt = select(UserModuleRole).where(
            UserModuleRole.tenant_id == tenant_id,
            UserModuleRole.user_id == user_id,
        )
        if module_code:
            stmt = stmt.where(UserModuleRole.module_code == module_code)
        stmt = stmt.order_by(UserModuleRole.module_code, UserModuleRole.assigned_at)

        async with storage_errors():
            result = await self.db.execute(stmt)
        now = utcnow()
        return [
            UserModuleRoleResponse.model_validate(row)
            for row in result.scalars().all()
            if include_expired or row.is_active(now)
        ]

    async def expire_temporary_assignments(self, tenant_id: Optional[str] = None) -> int:
        """Delete assignments whose valid_until has passed. Returns the count removed."""
        stmt = select(UserModuleRole).where(UserModuleRole.valid_until.is_not(None))
        if tenant_id:
            stmt = stmt.where(UserModuleRole.tenant_id == tenant_id)

        now = utcnow()
        async with atomic(self.db):
            result = await self.db.execute(stmt)
            expired = [row.id for row in result.scalars().all() if not row.is_active(now)]
            if expired:
                await self.db.execute(delete(UserModuleRole).where(UserModuleRole.id.in_(expired)))

        if expired:
            log.info(f"Expired {len(expired)} temporary role assignment(s)")
        return len(expired)

    async def active_grants(
        self,
        tenant_id: str,
        user_id: str,
        module_code: Optional[str] = None,
        resource_codes: Optional[Iterable[str]] = None
    ) -> list[RoleGrant]:
        """
        Every role-permission row reachable from the user's active assignments.

        Expired temporary assignments are skipped. Rows are ordered by role
        name so callers that pick a maximum resolve ties the same way each time.
        """
        stmt = (
            select(
                Role.id,
                Role.name,
                Role.module_code,
                RolePermission.resource_code,
                RolePermission.permission_level,
                UserModuleRole.valid_until,
            )
            .select_from(UserModuleRole)
            .join(Role, Role.id == UserModuleRole.role_id)
            .join(RolePermission, RolePermission.role_id == Role.id)
            .where(
                UserModuleRole.tenant_id == tenant_id,
                UserModuleRole.user_id == user_id,
                Role.tenant_id == tenant_id,
            )
            .order_by(Role.name, Role.id, RolePermission.resource_code)
        )
        if module_code:
            stmt = stmt.where(Role.module_code == module_code)
        if resource_codes is not None:
            stmt = stmt.where(RolePermission.resource_code.in_(list(resource_codes)))

        async with storage_errors():
            result = await self.db.execute(stmt)

        now = utcnow()
        grants = []
        for role_id, role_name, role_module, resource_code, level, valid_until in result.all():
            if valid_until is not None and as_utc(valid_until) <= now:
                continue
            grants.append(
                RoleGrant(
                    role_id=role_id,
                    role_name=role_name,
                    module_code=role_module,
                    resource_code=resource_code,
                    permission_level=PermissionLevel.parse(level),
                )
            )
        return grants

    async def active_module_codes(self, tenant_id: str, user_id: str) -> list[str]:
        """Distinct modules in which the user holds at least one active assignment."""
        assignments = await self.user_module_roles(tenant_id, user_id)
        return sorted({a.module_code for a in assignments})

    async def active_role_names(self, tenant_id: str, user_id: str) -> list[str]:
        """Names of the roles the user currently holds, across modules."""
        stmt = (
            select(Role.name, UserModuleRole.valid_until)
            .select_from(UserModuleRole)
            .join(Role, Role.id == UserModuleRole.role_id)
            .where(
                UserModuleRole.tenant_id == tenant_id,
                UserModuleRole.user_id == user_id,
                Role.tenant_id == tenant_id,
            )
        )
        async with storage_errors():
            result = await self.db.execute(stmt)
        now = utcnow()
        return sorted({
            name for name, valid_until in result.all()
            if valid_until is None or as_utc(valid_until) > now
        })
