"""
Field rule model.
"""
from typing import List
from sqlalchemy import String, JSON, Integer, Boolean
from sqlalchemy.orm import Mapped, mapped_column

from authz.core.database.base import Base, TimestampMixin


class FieldRuleRecord(Base, TimestampMixin):
    """
    Access rule for one field of a resource.

    Requirement lists are OR-sets; an empty list places no requirement.
    ``tenant_id`` NULL marks a central rule.
    """
    __tablename__ = "field_rules"

    id: Mapped[str] = mapped_column(String(100), primary_key=True)
    tenant_id: Mapped[str | None] = mapped_column(String(64), nullable=True, index=True)
    resource: Mapped[str] = mapped_column(String(100), nullable=False, index=True)
    field: Mapped[str] = mapped_column(String(100), nullable=False)
    required_permissions: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    required_roles: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    required_scopes: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    access_level: Mapped[str] = mapped_column(String(20), nullable=False)
    masking_strategy: Mapped[str | None] = mapped_column(String(20), nullable=True)
    custom_mask: Mapped[str | None] = mapped_column(String(100), nullable=True)
    priority: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    category: Mapped[str] = mapped_column(String(50), nullable=False, default="general")
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<FieldRuleRecord(id={self.id!r}, {self.resource}.{self.field} -> {self.access_level})>"
