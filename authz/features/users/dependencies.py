"""
FastAPI dependencies for caller identity.
"""
from typing import Annotated
from fastapi import Depends, Header, HTTPException, status
from starlette.requests import Request

from authz.core import config
from authz.features.users.schemas import Caller


async def get_tenant_id(
    x_tenant_id: Annotated[str | None, Header()] = None
) -> str:
    """
    Tenant of the request, from the ``X-Tenant-ID`` header.

    Usage:
        @router.get("/roles")
        async def list_roles(tenant_id: str = Depends(get_tenant_id)):
            ...
    """
    tenant_id = (x_tenant_id or "").strip()
    if not tenant_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="X-Tenant-ID header is required",
        )
    return tenant_id


async def get_caller(
    tenant_id: Annotated[str, Depends(get_tenant_id)],
    x_user_id: Annotated[str | None, Header()] = None
) -> Caller:
    """
    Get the calling user from the ``X-User-ID`` header.

    Identity is asserted by the upstream gateway; this service does not verify
    tokens.
    """
    user_id = (x_user_id or "").strip()
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="X-User-ID header is required",
        )
    return Caller(
        tenant_id=tenant_id,
        user_id=user_id,
        is_super_admin=user_id in config.SUPER_ADMIN_USER_IDS,
    )


def get_caller_key(request: Request) -> str:
    """
    Rate limit key: tenant and user headers, else the client address.
    Used with slowapi Limiter.
    """
    tenant_id = request.headers.get("X-Tenant-ID", "")
    user_id = request.headers.get("X-User-ID", "")
    if tenant_id and user_id:
        return f"{tenant_id}:{user_id}"
    return request.client.host if request.client else "anonymous"
