"""
Derived cache of resolved permission levels.

Rows are rebuilt wholesale per user by
``PermissionResolver.calculate_effective_permissions`` and are never read for
enforcement.
"""
from datetime import datetime
from sqlalchemy import String, DateTime, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from authz.core.database.base import Base, generate_ulid


class UserEffectivePermission(Base):
    __tablename__ = "user_effective_permissions"
    __table_args__ = (
        UniqueConstraint(
            "tenant_id", "user_id", "module_code", "resource_code",
            name="uq_user_effective_permissions_resource"
        ),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    module_code: Mapped[str] = mapped_column(String(50), nullable=False)
    resource_code: Mapped[str] = mapped_column(String(100), nullable=False)
    permission_level: Mapped[str] = mapped_column(String(20), nullable=False)
    granted_by_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    calculated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)

    def __repr__(self) -> str:
        return (
            f"<UserEffectivePermission(user={self.user_id}, resource={self.resource_code}, "
            f"level={self.permission_level})>"
        )
