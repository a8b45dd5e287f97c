"""
Storage for data scope rules and per-user data scopes.
"""
from typing import Optional
from sqlalchemy import select, or_
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import atomic, storage_errors
from authz.core.errors import AuthorizationDenied, ValidationError
from authz.features.data_scopes.models import DataScopeRuleRecord, UserDataScopeRecord
from authz.features.data_scopes.resolver import DataScopeResolver
from authz.features.data_scopes.schemas import (
    DataScopeLevel,
    DataScopeRule,
    UserDataScope,
    UserDataScopeUpdate,
)
from authz.utils import get_logger


log = get_logger(__name__)


def validate_user_scope(scope: UserDataScopeUpdate) -> None:
    """
    Reject scope records that cannot mean what they say.

    Raises:
        ValidationError: empty scope list, ``none`` mixed with other scopes,
            or a department/team scope with no department/team to anchor it
    """
    scopes = set(scope.scopes)
    if not scopes:
        raise ValidationError("At least one scope is required")
    if DataScopeLevel.NONE in scopes and len(scopes) > 1:
        raise ValidationError("Scope 'none' cannot be combined with other scopes")
    if DataScopeLevel.DEPARTMENT in scopes and not (scope.department_id or scope.managed_departments):
        raise ValidationError("Department scope requires department_id or managed_departments")
    if DataScopeLevel.TEAM in scopes and not (scope.team_id or scope.managed_teams):
        raise ValidationError("Team scope requires team_id or managed_teams")


class DataScopeStore:
    def __init__(self, db: AsyncSession):
        self.db = db

    async def load_rules(self, tenant_id: Optional[str] = None) -> list[DataScopeRule]:
        """Active central rules plus the tenant's own, highest priority first."""
        stmt = select(DataScopeRuleRecord).where(DataScopeRuleRecord.is_active.is_(True))
        if tenant_id:
            stmt = stmt.where(or_(
                DataScopeRuleRecord.tenant_id.is_(None),
                DataScopeRuleRecord.tenant_id == tenant_id,
            ))
        else:
            stmt = stmt.where(DataScopeRuleRecord.tenant_id.is_(None))
        stmt = stmt.order_by(DataScopeRuleRecord.priority.desc(), DataScopeRuleRecord.id)

        async with storage_errors():
            result = await self.db.execute(stmt)
        return [DataScopeRule.model_validate(row) for row in result.scalars().all()]

    async def resolver(self, tenant_id: Optional[str] = None) -> DataScopeResolver:
        return DataScopeResolver(await self.load_rules(tenant_id))

    async def _load_record(self, tenant_id: str, user_id: str) -> Optional[UserDataScopeRecord]:
        stmt = select(UserDataScopeRecord).where(
            UserDataScopeRecord.tenant_id == tenant_id,
            UserDataScopeRecord.user_id == user_id,
        )
        async with storage_errors():
            result = await self.db.execute(stmt)
        return result.scalar_one_or_none()

    async def get_user_data_scope(self, tenant_id: str, user_id: str) -> Optional[UserDataScope]:
        """Stored scope for the user, or None (which resolves to scope ``none``)."""
        record = await self._load_record(tenant_id, user_id)
        if record is None:
            return None
        return UserDataScope.model_validate(record)

    async def set_user_data_scope(
        self,
        tenant_id: str,
        user_id: str,
        scope: UserDataScopeUpdate,
        allow_global: bool = False
    ) -> UserDataScope:
        """
        Create or replace the user's scope record in one transaction.

        ``global`` crosses tenant boundaries, so only callers passing
        ``allow_global`` (super admins) may grant it.

        Raises:
            ValidationError: the scope record is inconsistent
            AuthorizationDenied: ``global`` requested without ``allow_global``
        """
        validate_user_scope(scope)
        if DataScopeLevel.GLOBAL in scope.scopes and not allow_global:
            raise AuthorizationDenied(
                "Only super admins may grant the global data scope",
                user_id=user_id,
                scope=DataScopeLevel.GLOBAL.value,
            )
        values = scope.model_dump(mode="json")

        async with atomic(self.db):
            record = await self._load_record(tenant_id, user_id)
            if record is None:
                record = UserDataScopeRecord(tenant_id=tenant_id, user_id=user_id)
                self.db.add(record)
            for field, value in values.items():
                setattr(record, field, value)

        log.info(f"Set data scope for user {user_id} in tenant {tenant_id}: {values['scopes']}")
        return UserDataScope(tenant_id=tenant_id, user_id=user_id, **values)
