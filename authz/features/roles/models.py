"""
Role, RolePermission, RoleTemplate and UserModuleRole models.

Every tenant-owned row carries ``tenant_id``; every store query filters on it.
Templates are central seed data shared by all tenants.
"""
from datetime import datetime, timezone
from typing import Any, Optional
from sqlalchemy import String, ForeignKey, JSON, Text, DateTime, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from authz.core.database.base import Base, TimestampMixin, generate_ulid


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: datetime) -> datetime:
    """SQLite hands datetimes back naive; treat those as UTC."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class RoleTemplate(Base, TimestampMixin):
    """
    Seed definition a tenant can instantiate as a role.

    default_permissions example:
        [{"resource_code": "wms_inventory_tracking", "permission_level": "view_only"}]
    """
    __tablename__ = "role_templates"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    module_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("modules.code", ondelete="CASCADE"),
        nullable=False,
        index=True
    )
    template_name: Mapped[str] = mapped_column(String(100), nullable=False)
    display_name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    default_permissions: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False, default=list)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<RoleTemplate(id={self.id!r}, module={self.module_code})>"


class Role(Base, TimestampMixin):
    """
    Tenant role scoped to exactly one module.

    Examples: "WMS Viewer", "Finance Analyst"
    """
    __tablename__ = "roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "module_code", "name", name="uq_roles_tenant_module_name"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    module_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("modules.code", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )

    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_custom: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    based_on_template: Mapped[str | None] = mapped_column(
        String(100),
        ForeignKey("role_templates.id", ondelete="SET NULL"),
        nullable=True
    )

    # Permissions are loaded explicitly through RoleStore; a replace is a
    # delete-then-insert and must not go through a cached collection.

    def __repr__(self) -> str:
        return f"<Role(id={self.id}, name={self.name!r}, module={self.module_code}, tenant={self.tenant_id})>"


class RolePermission(Base):
    """
    Permission level a role grants on one resource.

    At most one row per (role_id, resource_code).
    """
    __tablename__ = "role_permissions"

    role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        primary_key=True
    )
    resource_code: Mapped[str] = mapped_column(String(100), primary_key=True)
    permission_level: Mapped[str] = mapped_column(String(20), nullable=False)

    def __repr__(self) -> str:
        return f"<RolePermission(role={self.role_id}, resource={self.resource_code}, level={self.permission_level})>"


class UserModuleRole(Base):
    """
    Assignment of a role to a user within the role's module.

    A user may hold several roles in the same module; precedence is resolved
    when permissions are read. ``valid_until`` makes an assignment temporary.
    """
    __tablename__ = "user_module_roles"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", "role_id", name="uq_user_module_roles_assignment"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    module_code: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    role_id: Mapped[str] = mapped_column(
        String(26),
        ForeignKey("roles.id", ondelete="RESTRICT"),
        nullable=False,
        index=True
    )
    assigned_by: Mapped[str | None] = mapped_column(String(64), nullable=True)
    assigned_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False, default=utcnow)
    valid_until: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    def is_active(self, now: Optional[datetime] = None) -> bool:
        if self.valid_until is None:
            return True
        return as_utc(self.valid_until) > (now or utcnow())

    def __repr__(self) -> str:
        return f"<UserModuleRole(user={self.user_id}, module={self.module_code}, role={self.role_id})>"
