"""
Data scope rule and user data scope models.
"""
from typing import Any, Dict, List
from sqlalchemy import String, JSON, Integer, Boolean, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from authz.core.database.base import Base, TimestampMixin, generate_ulid


class DataScopeRuleRecord(Base, TimestampMixin):
    """
    Scope rule for one (resource, action).

    ``tenant_id`` NULL marks a central rule visible to every tenant; a tenant
    row adds a rule for that tenant only.

    scopes example: ["tenant", "department", "team"]
    """
    __tablename__ = "data_scope_rules"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    resource: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    action: Mapped[str] = mapped_column(String(50), nullable=False)
    scopes: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    conditions: Mapped[Dict[str, Any] | None] = mapped_column(JSON, nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<DataScopeRuleRecord(id={self.id!r}, resource={self.resource}, action={self.action})>"


class UserDataScopeRecord(Base, TimestampMixin):
    """A user's organizational position and broad scope entitlements within a tenant."""
    __tablename__ = "user_data_scopes"
    __table_args__ = (
        UniqueConstraint("tenant_id", "user_id", name="uq_user_data_scopes_user"),
    )

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=generate_ulid)
    tenant_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    user_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    department_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    team_id: Mapped[str | None] = mapped_column(String(64), nullable=True)
    managed_departments: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    managed_teams: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    direct_reports: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    scopes: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)

    def __repr__(self) -> str:
        return f"<UserDataScopeRecord(user={self.user_id}, tenant={self.tenant_id}, scopes={self.scopes})>"
