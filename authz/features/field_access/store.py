"""
Storage for field rules.
"""
from typing import Optional
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import storage_errors
from authz.features.field_access.models import FieldRuleRecord
from authz.features.field_access.schemas import FieldRule


class FieldRuleStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_rules(self, tenant_id: Optional[str] = None, resource: Optional[str] = None) -> list[FieldRule]:
        """Active central rules plus the tenant's own, highest priority first."""
        stmt = select(FieldRuleRecord).where(FieldRuleRecord.is_active.is_(True))
        if tenant_id:
            stmt = stmt.where(or_(FieldRuleRecord.tenant_id.is_(None), FieldRuleRecord.tenant_id == tenant_id))
        else:
            stmt = stmt.where(FieldRuleRecord.tenant_id.is_(None))
        if resource:
            stmt = stmt.where(FieldRuleRecord.resource == resource)
        stmt = stmt.order_by(FieldRuleRecord.priority.desc(), FieldRuleRecord.id)

        async with storage_errors():
            result = await self.db.execute(stmt)
        return [FieldRule.model_validate(row) for row in result.scalars().all()]
