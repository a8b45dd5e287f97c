"""
Resource catalog API routes (read-only).
"""
from typing import Annotated, List
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import get_db
from authz.features.resources.catalog import ResourceCatalog
from authz.features.resources.schemas import ModuleResponse, ResourceNode, ResourceResponse
from authz.features.users.dependencies import get_caller
from authz.features.users.schemas import Caller


router = APIRouter()


async def get_catalog(db: Annotated[AsyncSession, Depends(get_db)]) -> ResourceCatalog:
    return ResourceCatalog(db)


CatalogDep = Annotated[ResourceCatalog, Depends(get_catalog)]
CallerDep = Annotated[Caller, Depends(get_caller)]


@router.get("/modules", response_model=List[ModuleResponse])
async def list_modules(catalog: CatalogDep, caller: CallerDep, active_only: bool = True):
    return await catalog.list_modules(active_only)


@router.get("/modules/{module_code}", response_model=ModuleResponse)
async def get_module(module_code: str, catalog: CatalogDep, caller: CallerDep):
    return await catalog.get_module(module_code)


@router.get("/modules/{module_code}/resources", response_model=List[ResourceResponse])
async def list_resources(
    module_code: str,
    catalog: CatalogDep,
    caller: CallerDep,
    include_non_leaf: bool = False
):
    """Resources of a module ordered by display_order."""
    return await catalog.list_resources(module_code, include_non_leaf)


@router.get("/modules/{module_code}/hierarchy", response_model=List[ResourceNode])
async def get_hierarchy(module_code: str, catalog: CatalogDep, caller: CallerDep):
    """Module tree in pre-order with level and path."""
    return await catalog.hierarchy(module_code)


@router.get("/modules/{module_code}/scopeable", response_model=List[ResourceResponse])
async def list_scopeable_resources(module_code: str, catalog: CatalogDep, caller: CallerDep):
    """Leaf data resources that data scope rules can target."""
    return await catalog.scopeable_resources(module_code)


@router.get("/{resource_code}", response_model=ResourceResponse)
async def get_resource(resource_code: str, catalog: CatalogDep, caller: CallerDep):
    return await catalog.get_resource(resource_code)
