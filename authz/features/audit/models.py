"""
Audit log model.
"""
from typing import Any, Dict
from sqlalchemy import String, JSON
from sqlalchemy.orm import Mapped, mapped_column

from authz.core.database.base import Base, TimestampMixin, generate_ulid


class AuditLog(Base, TimestampMixin):
    """
    Audit log for permission decisions and role administration.

    Tracks who did what, in which tenant and module, and whether it was allowed.
    """
    __tablename__ = "audit_logs"

    # Primary key using ULID
    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)

    # Actor
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)

    # Action details
    action: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_type: Mapped[str] = mapped_column(String(50), nullable=False, index=True)
    resource_id: Mapped[str | None] = mapped_column(String(100), nullable=True, index=True)
    module_code: Mapped[str | None] = mapped_column(String(50), nullable=True, index=True)
    permission_required: Mapped[str | None] = mapped_column(String(20), nullable=True)

    # Outcome
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="success")
    severity: Mapped[str] = mapped_column(String(20), nullable=False, default="info")
    details: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)

    def __repr__(self) -> str:
        return f"<AuditLog(id={self.id}, user_id={self.user_id}, action={self.action}, status={self.status})>"
