"""
Module and permission resource models.

Resources are central (not tenant-owned): every tenant sees the same tree for
a module. Roles reference resources by code.
"""
from sqlalchemy import String, ForeignKey, Text, Integer, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from authz.core.database.base import Base, TimestampMixin, generate_ulid


class Module(Base, TimestampMixin):
    """
    A named functional area (e.g. "wms", "finance") that scopes roles and resources.
    """
    __tablename__ = "modules"

    code: Mapped[str] = mapped_column(String(50), primary_key=True)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Module(code={self.code!r}, active={self.is_active})>"


class PermissionResource(Base, TimestampMixin):
    """
    A permission-checkable unit inside a module.

    Examples:
    - code="wms_inventory", resource_type="menu", is_leaf=False
    - code="wms_inventory_tracking", parent_code="wms_inventory", resource_type="data"
    """
    __tablename__ = "permission_resources"
    __table_args__ = (
        UniqueConstraint("module_code", "code", name="uq_permission_resources_module_code"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    code: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(150), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    module_code: Mapped[str] = mapped_column(
        String(50),
        ForeignKey("modules.code", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    # Null parent means the resource is a root of its module tree
    parent_code: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    resource_type: Mapped[str] = mapped_column(String(20), nullable=False)
    is_leaf: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)
    display_order: Mapped[int] = mapped_column(Integer, default=0, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<PermissionResource(code={self.code!r}, module={self.module_code}, "
            f"parent={self.parent_code}, leaf={self.is_leaf})>"
        )
