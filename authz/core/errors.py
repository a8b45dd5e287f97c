"""
Error taxonomy for the authorization engine.

Authorization decisions are ordinary return values. These exceptions cover
structural failures only: unknown records, conflicting writes, invalid input
and storage faults. ``AuthorizationDenied`` is raised by transport
dependencies that must turn a negative decision into a 403, and by writes
only a super admin may perform (granting the global data scope).
"""
from typing import Any, Optional


class AuthzError(Exception):
    """Base class for all engine errors. Carries an HTTP-equivalent status."""

    status_code: int = 500
    error: str = "internal_error"

    def __init__(self, detail: str, **context: Any):
        super().__init__(detail)
        self.detail = detail
        self.context = context

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"error": self.error, "detail": self.detail}
        if self.context:
            payload["context"] = self.context
        return payload


class NotFoundError(AuthzError):
    """Unknown module, resource, role or template."""

    status_code = 404
    error = "not_found"


class ConflictError(AuthzError):
    """Role still in use, or a duplicate unique key."""

    status_code = 409
    error = "conflict"


class ValidationError(AuthzError):
    """Missing or malformed input (role name, scope list, permission level...)."""

    status_code = 400
    error = "validation_error"


class StorageError(AuthzError):
    """Wraps any failure raised by the storage layer."""

    status_code = 503
    error = "storage_error"


class AuthorizationDenied(AuthzError):
    """A negative decision converted to an exception at the transport boundary."""

    status_code = 403
    error = "insufficient_permission"

    def __init__(self, detail: str, resource_code: Optional[str] = None, **context: Any):
        if resource_code is not None:
            context["resource_code"] = resource_code
        super().__init__(detail, **context)
        self.resource_code = resource_code
