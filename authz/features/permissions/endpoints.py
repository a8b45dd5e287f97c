"""
API endpoint -> resource code mapping used by endpoint access validation.

Reads (GET, HEAD) need ``view_only``; every other method needs ``manage``.
Paths match exactly, or by the longest registered prefix followed by ``/``,
so ``/api/wms/inventory/42`` resolves like ``/api/wms/inventory``.
"""
from typing import Mapping, Optional

from authz.features.permissions.schemas import PermissionLevel


READ_METHODS = frozenset({"GET", "HEAD"})

DEFAULT_ENDPOINT_RESOURCES: dict[tuple[str, str], str] = {
    # WMS
    ("POST", "/api/wms/inbound"): "wms_inbound_operations",
    ("GET", "/api/wms/inbound"): "wms_inbound_operations",
    ("POST", "/api/wms/outbound"): "wms_outbound_operations",
    ("GET", "/api/wms/outbound"): "wms_outbound_operations",
    ("GET", "/api/wms/inventory"): "wms_inventory_tracking",
    ("PUT", "/api/wms/inventory"): "wms_inventory_tracking",
    ("GET", "/api/wms/reports"): "wms_reports_analytics",
    ("GET", "/api/wms/dashboard"): "wms_dashboard",

    # Core
    ("GET", "/api/users"): "core_user_management",
    ("POST", "/api/users"): "core_user_management",
    ("PUT", "/api/users"): "core_user_management",
    ("DELETE", "/api/users"): "core_user_management",
    ("GET", "/api/settings"): "core_general_settings",
    ("PUT", "/api/settings"): "core_general_settings",
}


def normalize_endpoint(endpoint: str) -> str:
    """Drop the query string and trailing slash."""
    path = endpoint.split("?", 1)[0].strip()
    if len(path) > 1:
        path = path.rstrip("/")
    return path or "/"


def required_level_for(method: str) -> PermissionLevel:
    if method.upper() in READ_METHODS:
        return PermissionLevel.VIEW_ONLY
    return PermissionLevel.MANAGE


def resource_for_endpoint(
    endpoint: str,
    method: str,
    mapping: Optional[Mapping[tuple[str, str], str]] = None
) -> Optional[str]:
    """Resource code guarding ``method endpoint``, or None when unmapped."""
    mapping = DEFAULT_ENDPOINT_RESOURCES if mapping is None else mapping
    method = method.upper()
    path = normalize_endpoint(endpoint)

    exact = mapping.get((method, path))
    if exact is not None:
        return exact

    best: Optional[tuple[int, str]] = None
    for (mapped_method, mapped_path), resource_code in mapping.items():
        if mapped_method != method or not path.startswith(mapped_path + "/"):
            continue
        if best is None or len(mapped_path) > best[0]:
            best = (len(mapped_path), resource_code)
    return best[1] if best else None
