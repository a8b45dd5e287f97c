"""
Permission resolution over role assignments.

Implements:
- Effective level per resource (highest level across the user's roles wins)
- Hierarchical and ancestor-inherited checks
- require_any / require_all combinators
- Effective permission cache materialization
- Menu trees and endpoint access validation

Every check is default deny and fails closed: no grant, unknown resource or a
storage fault all resolve to ``allowed=False``. Super-admin bypass belongs to
the transport layer and never happens here.
"""
from collections.abc import Iterable, Mapping
from typing import Optional, Sequence, Union
from sqlalchemy import select, delete, insert
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import atomic, storage_errors
from authz.core.errors import StorageError, ValidationError
from authz.features.audit.schemas import AuditEvent, AuditSeverity, AuditStatus
from authz.features.audit.sink import AuditSink, LoggingAuditSink, emit_safely
from authz.features.permissions.endpoints import required_level_for, resource_for_endpoint
from authz.features.permissions.models import UserEffectivePermission
from authz.features.permissions.schemas import (
    CachedEffectivePermission,
    CombinedCheck,
    EffectivePermission,
    MenuPermission,
    PermissionCheck,
    PermissionLevel,
    RoleGrant,
)
from authz.features.resources.catalog import ResourceCatalog
from authz.features.resources.schemas import ResourceType
from authz.features.roles.models import utcnow
from authz.features.roles.store import RoleStore
from authz.utils import get_logger


log = get_logger(__name__)

LevelLike = Union[PermissionLevel, str]


def strongest_grant(grants: Iterable[RoleGrant]) -> Optional[RoleGrant]:
    """
    Highest-level grant. On equal levels the first grant seen is kept, so
    input ordered by role name resolves ties deterministically.
    """
    best: Optional[RoleGrant] = None
    for grant in grants:
        if best is None or grant.permission_level > best.permission_level:
            best = grant
    return best


def evaluate_grants(
    grants: Iterable[RoleGrant],
    resource_code: str,
    required: PermissionLevel
) -> PermissionCheck:
    """Pure decision for one resource from the grants that name it."""
    best = strongest_grant(g for g in grants if g.resource_code == resource_code)
    if best is None:
        return PermissionCheck.deny(resource_code, "no_grant")

    allowed = best.permission_level.meets(required)
    return PermissionCheck(
        allowed=allowed,
        level=best.permission_level,
        resource_code=resource_code,
        granted_by_role=best.role_name,
        reason=None if allowed else "insufficient_level",
    )


class PermissionResolver:
    """
    Usage:
        resolver = PermissionResolver(db)
        check = await resolver.check_permission(tenant_id, user_id, "wms_inventory_tracking", "manage")
        if not check.allowed:
            ...
    """

    def __init__(
        self,
        db: AsyncSession,
        store: Optional[RoleStore] = None,
        catalog: Optional[ResourceCatalog] = None,
        sink: Optional[AuditSink] = None,
        endpoint_map: Optional[Mapping[tuple[str, str], str]] = None
    ):
        self.db = db
        self.catalog = catalog or ResourceCatalog(db)
        self.store = store or RoleStore(db, self.catalog)
        self.sink = sink if sink is not None else LoggingAuditSink()
        self.endpoint_map = endpoint_map

    # ------------------------------------------------------------------
    # Audit helpers
    # ------------------------------------------------------------------

    async def _audit_denial(
        self,
        tenant_id: str,
        user_id: str,
        check: PermissionCheck,
        required: PermissionLevel,
        action: str = "permission_check"
    ) -> None:
        failed = check.reason == "storage_error"
        await emit_safely(self.sink, AuditEvent(
            tenant_id=tenant_id,
            user_id=user_id,
            action=action,
            resource_type="resource",
            resource_id=check.resource_code,
            permission_required=required.value,
            status=AuditStatus.ERROR if failed else AuditStatus.DENIED,
            severity=AuditSeverity.ERROR if failed else AuditSeverity.INFO,
            details={"reason": check.reason, "level": check.level.value},
        ))

    async def _grants_or_none(
        self,
        tenant_id: str,
        user_id: str,
        resource_codes: Sequence[str]
    ) -> Optional[list[RoleGrant]]:
        """Grants for the codes, or None when storage failed (caller denies)."""
        try:
            return await self.store.active_grants(tenant_id, user_id, resource_codes=resource_codes)
        except StorageError:
            log.error(
                f"Permission lookup failed for user {user_id} in tenant {tenant_id}; denying",
                exc_info=True
            )
            return None

    async def _decide(
        self,
        tenant_id: str,
        user_id: str,
        resource_code: str,
        required: PermissionLevel,
        grants: Optional[list[RoleGrant]]
    ) -> PermissionCheck:
        if grants is None:
            check = PermissionCheck.deny(resource_code, "storage_error")
        else:
            check = evaluate_grants(grants, resource_code, required)

        log.debug(
            f"User {user_id} {'granted' if check.allowed else 'denied'} {required.value} on "
            f"{resource_code} (level={check.level.value}, role={check.granted_by_role}) "
            f"in tenant {tenant_id}"
        )
        return check

    # ------------------------------------------------------------------
    # Single checks
    # ------------------------------------------------------------------

    async def check_permission(
        self,
        tenant_id: str,
        user_id: str,
        resource_code: str,
        required_level: LevelLike = PermissionLevel.VIEW_ONLY
    ) -> PermissionCheck:
        """
        Resolve the user's level on one resource.

        Raises:
            ValidationError: required_level is not a known level
        """
        required = PermissionLevel.parse(required_level)
        grants = await self._grants_or_none(tenant_id, user_id, [resource_code])
        check = await self._decide(tenant_id, user_id, resource_code, required, grants)
        if not check.allowed:
            await self._audit_denial(tenant_id, user_id, check, required)
        return check

    async def check_module_access(self, tenant_id: str, user_id: str, module_code: str) -> bool:
        """True if the user holds at least one active role in the module."""
        try:
            assignments = await self.store.user_module_roles(tenant_id, user_id, module_code)
        except StorageError:
            log.error(f"Module access lookup failed for user {user_id}; denying", exc_info=True)
            return False
        return bool(assignments)

    async def check_hierarchical(
        self,
        tenant_id: str,
        user_id: str,
        parent_resource: str,
        child_resource: str,
        required_level: LevelLike = PermissionLevel.VIEW_ONLY
    ) -> PermissionCheck:
        """
        Check the child first, then fall back to the parent.

        A parent grant is returned with ``inherited_by`` naming the child.
        """
        required = PermissionLevel.parse(required_level)
        grants = await self._grants_or_none(tenant_id, user_id, [child_resource, parent_resource])

        child = await self._decide(tenant_id, user_id, child_resource, required, grants)
        if child.allowed:
            return child

        parent = await self._decide(tenant_id, user_id, parent_resource, required, grants)
        if parent.allowed:
            return parent.model_copy(update={"inherited_by": child_resource})

        await self._audit_denial(tenant_id, user_id, child, required)
        return child

    async def check_with_inheritance(
        self,
        tenant_id: str,
        user_id: str,
        module_code: str,
        resource_code: str,
        required_level: LevelLike = PermissionLevel.VIEW_ONLY
    ) -> PermissionCheck:
        """Like check_hierarchical, but walks every ancestor nearest first."""
        required = PermissionLevel.parse(required_level)
        try:
            ancestors = await self.catalog.ancestors(module_code, resource_code)
        except StorageError:
            log.error(f"Ancestor lookup failed for {resource_code}; denying", exc_info=True)
            ancestors = []

        chain = [resource_code, *ancestors]
        grants = await self._grants_or_none(tenant_id, user_id, chain)

        own = await self._decide(tenant_id, user_id, resource_code, required, grants)
        if own.allowed:
            return own
        for ancestor in ancestors:
            check = await self._decide(tenant_id, user_id, ancestor, required, grants)
            if check.allowed:
                return check.model_copy(update={"inherited_by": resource_code})

        await self._audit_denial(tenant_id, user_id, own, required)
        return own

    # ------------------------------------------------------------------
    # Combinators
    # ------------------------------------------------------------------

    async def require_any(
        self,
        tenant_id: str,
        user_id: str,
        resource_codes: Sequence[str],
        required_level: LevelLike = PermissionLevel.VIEW_ONLY
    ) -> CombinedCheck:
        """Allowed as soon as one resource passes, checked in the given order."""
        if not resource_codes:
            raise ValidationError("require_any needs at least one resource code")
        required = PermissionLevel.parse(required_level)
        grants = await self._grants_or_none(tenant_id, user_id, list(resource_codes))

        checks = []
        for code in resource_codes:
            check = await self._decide(tenant_id, user_id, code, required, grants)
            checks.append(check)
            if check.allowed:
                return CombinedCheck(allowed=True, checks=checks)

        combined = CombinedCheck(allowed=False, checks=checks, reason="none_granted")
        await self._audit_denial(tenant_id, user_id, checks[0], required, action="permission_check_any")
        return combined

    async def require_all(
        self,
        tenant_id: str,
        user_id: str,
        resource_codes: Sequence[str],
        required_level: LevelLike = PermissionLevel.VIEW_ONLY
    ) -> CombinedCheck:
        """Every resource must pass; stops at and names the first one that fails."""
        if not resource_codes:
            raise ValidationError("require_all needs at least one resource code")
        required = PermissionLevel.parse(required_level)
        grants = await self._grants_or_none(tenant_id, user_id, list(resource_codes))

        checks = []
        for code in resource_codes:
            check = await self._decide(tenant_id, user_id, code, required, grants)
            checks.append(check)
            if not check.allowed:
                await self._audit_denial(tenant_id, user_id, check, required, action="permission_check_all")
                return CombinedCheck(allowed=False, checks=checks, missing=code, reason=check.reason)

        return CombinedCheck(allowed=True, checks=checks)

    # ------------------------------------------------------------------
    # Bulk views
    # ------------------------------------------------------------------

    async def effective_permissions(
        self,
        tenant_id: str,
        user_id: str,
        module_code: Optional[str] = None
    ) -> list[EffectivePermission]:
        """
        One row per resource with the highest level across the user's roles.

        Storage faults propagate as StorageError; this is a listing, not a check.
        """
        grants = await self.store.active_grants(tenant_id, user_id, module_code=module_code)

        by_resource: dict[tuple[str, str], list[RoleGrant]] = {}
        for grant in grants:
            by_resource.setdefault((grant.module_code, grant.resource_code), []).append(grant)

        permissions = []
        for (grant_module, resource_code), resource_grants in sorted(by_resource.items()):
            best = strongest_grant(resource_grants)
            permissions.append(EffectivePermission(
                user_id=user_id,
                module_code=grant_module,
                resource_code=resource_code,
                permission_level=best.permission_level,
                granted_by_role=best.role_name,
            ))
        return permissions

    async def accessible_modules(self, tenant_id: str, user_id: str) -> list[str]:
        """Distinct, sorted module codes where the user holds an active role."""
        return await self.store.active_module_codes(tenant_id, user_id)

    async def menu_permissions(self, tenant_id: str, user_id: str, module_code: str) -> list[MenuPermission]:
        """Menu resources of a module in tree order, each with the user's level."""
        nodes = await self.catalog.hierarchy(module_code)
        grants = await self.store.active_grants(tenant_id, user_id, module_code=module_code)

        menu = []
        for node in nodes:
            if node.resource_type != ResourceType.MENU:
                continue
            best = strongest_grant(g for g in grants if g.resource_code == node.code)
            menu.append(MenuPermission(
                resource_code=node.code,
                resource_name=node.name,
                parent_code=node.parent_code,
                is_leaf=node.is_leaf,
                level=node.level,
                path=node.path,
                permission_level=best.permission_level if best else PermissionLevel.NO_ACCESS,
                granted_by_role=best.role_name if best else None,
            ))
        return menu

    async def validate_endpoint_access(
        self,
        tenant_id: str,
        user_id: str,
        endpoint: str,
        method: str
    ) -> PermissionCheck:
        """Map an API call to its resource and check it. Unmapped endpoints are denied."""
        resource_code = resource_for_endpoint(endpoint, method, self.endpoint_map)
        required = required_level_for(method)
        if resource_code is None:
            check = PermissionCheck.deny(None, "unmapped_endpoint")
            log.info(f"No resource mapped for {method.upper()} {endpoint}; denying user {user_id}")
            await emit_safely(self.sink, AuditEvent(
                tenant_id=tenant_id,
                user_id=user_id,
                action="endpoint_access",
                resource_type="endpoint",
                resource_id=f"{method.upper()} {endpoint}",
                permission_required=required.value,
                status=AuditStatus.DENIED,
                severity=AuditSeverity.WARNING,
                details={"reason": check.reason},
            ))
            return check
        return await self.check_permission(tenant_id, user_id, resource_code, required)

    # ------------------------------------------------------------------
    # Effective permission cache
    # ------------------------------------------------------------------

    async def calculate_effective_permissions(self, tenant_id: str, user_id: str) -> list[EffectivePermission]:
        """
        Rebuild the user's cached rows in one transaction.

        Idempotent; concurrent recomputes converge on the last writer.
        """
        permissions = await self.effective_permissions(tenant_id, user_id)
        calculated_at = utcnow()

        async with atomic(self.db):
            await self.db.execute(
                delete(UserEffectivePermission).where(
                    UserEffectivePermission.tenant_id == tenant_id,
                    UserEffectivePermission.user_id == user_id,
                )
            )
            if permissions:
                await self.db.execute(
                    insert(UserEffectivePermission),
                    [
                        {
                            "tenant_id": tenant_id,
                            "user_id": user_id,
                            "module_code": p.module_code,
                            "resource_code": p.resource_code,
                            "permission_level": p.permission_level.value,
                            "granted_by_role": p.granted_by_role,
                            "calculated_at": calculated_at,
                        }
                        for p in permissions
                    ],
                )

        log.info(f"Cached {len(permissions)} effective permission(s) for user {user_id} in tenant {tenant_id}")
        return permissions

    async def cached_effective_permissions(
        self,
        tenant_id: str,
        user_id: str,
        module_code: Optional[str] = None
    ) -> list[CachedEffectivePermission]:
        stmt = select(UserEffectivePermission).where(
            UserEffectivePermission.tenant_id == tenant_id,
            UserEffectivePermission.user_id == user_id,
        )
        if module_code:
            stmt = stmt.where(UserEffectivePermission.module_code == module_code)
        stmt = stmt.order_by(UserEffectivePermission.module_code, UserEffectivePermission.resource_code)

        async with storage_errors():
            result = await self.db.execute(stmt)
        return [
            CachedEffectivePermission(
                user_id=row.user_id,
                module_code=row.module_code,
                resource_code=row.resource_code,
                permission_level=PermissionLevel.parse(row.permission_level),
                granted_by_role=row.granted_by_role,
                calculated_at=row.calculated_at,
            )
            for row in result.scalars().all()
        ]
