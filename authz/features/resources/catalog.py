"""
Resource catalog: read-only access to modules and their resource trees.

The tree is modelled as an arena of resources indexed by code with a
parent -> children index. Traversal is an explicit-stack pre-order walk, so a
malformed parent graph (orphans, cycles) can never recurse without bound.
"""
from collections import defaultdict
from collections.abc import Iterable
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import storage_errors
from authz.core.errors import NotFoundError
from authz.features.resources.models import Module, PermissionResource
from authz.features.resources.schemas import (
    ModuleResponse,
    ResourceNode,
    ResourceResponse,
    ResourceType,
)
from authz.utils import get_logger


log = get_logger(__name__)


def _sibling_key(resource: ResourceResponse) -> tuple[int, str]:
    return resource.display_order, resource.code


def build_hierarchy(resources: Iterable[ResourceResponse]) -> list[ResourceNode]:
    """
    Compute level and path for every resource reachable from a root.

    Roots are resources whose ``parent_code`` is None. Each child's path is its
    parent's path with its own ``display_order`` appended, so a stable sort by
    path reproduces the returned pre-order.

    Resources whose parent is missing, or that sit on a parent cycle, are not
    reachable from any root and are left out of the result.
    """
    resources = list(resources)
    by_code = {resource.code: resource for resource in resources}
    children: dict[str, list[ResourceResponse]] = defaultdict(list)
    roots: list[ResourceResponse] = []

    for resource in resources:
        if resource.parent_code is None:
            roots.append(resource)
        elif resource.parent_code in by_code:
            children[resource.parent_code].append(resource)
        else:
            log.warning(
                "Resource %s references unknown parent %s; skipping",
                resource.code, resource.parent_code
            )

    # Reverse-sorted pushes keep the lowest display_order on top of the stack
    stack: list[tuple[ResourceResponse, int, tuple[int, ...]]] = [
        (root, 0, (root.display_order,))
        for root in sorted(roots, key=_sibling_key, reverse=True)
    ]
    visited: set[str] = set()
    nodes: list[ResourceNode] = []

    while stack:
        resource, level, path = stack.pop()
        if resource.code in visited:
            continue
        visited.add(resource.code)
        nodes.append(
            ResourceNode(**resource.model_dump(), level=level, path=list(path))
        )
        for child in sorted(children[resource.code], key=_sibling_key, reverse=True):
            stack.append((child, level + 1, path + (child.display_order,)))

    unreachable = len(by_code) - len(visited)
    if unreachable:
        log.warning("%d resource(s) unreachable from any root were omitted", unreachable)

    return nodes


def ancestor_codes(resources: Iterable[ResourceResponse], code: str) -> list[str]:
    """Return the parent chain of ``code``, nearest parent first."""
    by_code = {resource.code: resource for resource in resources}
    ancestors: list[str] = []
    seen = {code}
    current = by_code.get(code)

    while current is not None and current.parent_code is not None:
        parent_code = current.parent_code
        if parent_code in seen:
            log.warning("Parent cycle detected at resource %s", parent_code)
            break
        seen.add(parent_code)
        ancestors.append(parent_code)
        current = by_code.get(parent_code)

    return ancestors


class ResourceCatalog:
    """
    Read-only view over modules and permission resources.

    Usage:
        catalog = ResourceCatalog(db)
        tree = await catalog.hierarchy("wms")
    """

    def __init__(self, db: AsyncSession):
        self.db = db

    async def list_modules(self, active_only: bool = True) -> list[ModuleResponse]:
        stmt = select(Module).order_by(Module.code)
        if active_only:
            stmt = stmt.where(Module.is_active.is_(True))

        async with storage_errors():
            result = await self.db.execute(stmt)
        return [ModuleResponse.model_validate(module) for module in result.scalars().all()]

    async def get_module(self, module_code: str) -> ModuleResponse:
        async with storage_errors():
            module = await self.db.get(Module, module_code)
        if module is None:
            raise NotFoundError(f"Module '{module_code}' not found", module_code=module_code)
        return ModuleResponse.model_validate(module)

    async def list_resources(
        self,
        module_code: str,
        include_non_leaf: bool = False
    ) -> list[ResourceResponse]:
        """List a module's resources ordered by display_order."""
        await self.get_module(module_code)

        stmt = select(PermissionResource).where(PermissionResource.module_code == module_code)
        if not include_non_leaf:
            stmt = stmt.where(PermissionResource.is_leaf.is_(True))
        stmt = stmt.order_by(PermissionResource.display_order, PermissionResource.code)

        async with storage_errors():
            result = await self.db.execute(stmt)
        return [ResourceResponse.model_validate(r) for r in result.scalars().all()]

    async def hierarchy(self, module_code: str) -> list[ResourceNode]:
        """Return the module tree in pre-order with computed level and path."""
        resources = await self.list_resources(module_code, include_non_leaf=True)
        return build_hierarchy(resources)

    async def get_resource(self, resource_code: str, module_code: Optional[str] = None) -> ResourceResponse:
        stmt = select(PermissionResource).where(PermissionResource.code == resource_code)
        if module_code:
            stmt = stmt.where(PermissionResource.module_code == module_code)

        async with storage_errors():
            result = await self.db.execute(stmt)
        resource = result.scalars().first()
        if resource is None:
            raise NotFoundError(f"Resource '{resource_code}' not found", resource_code=resource_code)
        return ResourceResponse.model_validate(resource)

    async def ancestors(self, module_code: str, resource_code: str) -> list[str]:
        """Parent chain of a resource within its module, nearest first."""
        resources = await self.list_resources(module_code, include_non_leaf=True)
        return ancestor_codes(resources, resource_code)

    async def scopeable_resources(self, module_code: str) -> list[ResourceResponse]:
        """Leaf data resources, i.e. the ones data-scope rules can target."""
        resources = await self.list_resources(module_code)
        return [r for r in resources if r.resource_type == ResourceType.DATA]

    async def existing_codes(self, module_code: str, codes: Iterable[str]) -> set[str]:
        """Subset of ``codes`` that exist in the module."""
        codes = set(codes)
        if not codes:
            return set()
        stmt = select(PermissionResource.code).where(
            PermissionResource.module_code == module_code,
            PermissionResource.code.in_(codes),
        )
        async with storage_errors():
            result = await self.db.execute(stmt)
        return set(result.scalars().all())
