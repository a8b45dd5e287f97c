"""
DataScopeResolver: allowed scopes, record checks and filter compilation.

Rules are held as a list sorted by priority (highest first) and evaluated
top-down; only the first rule matching (resource, action) is consulted.
Everything here is pure: the resolver never touches storage.

Scope ``none`` always compiles to a filter matching zero rows, never to an
empty (unrestricted) filter.
"""
from collections.abc import Iterable, Mapping
from typing import Any, Optional, TypeVar

from authz.features.data_scopes.schemas import (
    DataFilter,
    DataScopeLevel,
    DataScopeRule,
    FilterBranch,
    UserDataScope,
)
from authz.utils import get_logger


log = get_logger(__name__)

T = TypeVar("T")

_NONE = [DataScopeLevel.NONE]

# Record attributes recognised for each concept, camelCase and snake_case
_TENANT_KEYS = ("tenant_id", "tenantId")
_DEPARTMENT_KEYS = ("department_id", "departmentId")
_TEAM_KEYS = ("team_id", "teamId")
_USER_KEYS = ("user_id", "userId")
_CREATOR_KEYS = ("created_by", "createdBy")
_OWNER_KEYS = ("owner_id", "ownerId")


def record_value(record: Any, keys: Iterable[str]) -> Any:
    """First non-None value under any of ``keys``; works on mappings and objects."""
    for key in keys:
        if isinstance(record, Mapping):
            value = record.get(key)
        else:
            value = getattr(record, key, None)
        if value is not None:
            return value
    return None


class DataScopeResolver:
    """
    Usage:
        resolver = DataScopeResolver(rules)
        data_filter = resolver.compile_filter("documents", "read", user_scope)
        stmt = select(Document).where(data_filter.to_clause(Document))
    """

    def __init__(self, rules: Iterable[DataScopeRule]):
        # Stable sort keeps load order among equal priorities
        self.rules = sorted(rules, key=lambda rule: rule.priority, reverse=True)

    def rule_for(self, resource: str, action: str) -> Optional[DataScopeRule]:
        for rule in self.rules:
            if rule.resource == resource and rule.action == action:
                return rule
        return None

    def rules_for(self, resource: Optional[str] = None, action: Optional[str] = None) -> list[DataScopeRule]:
        return [
            rule for rule in self.rules
            if (resource is None or rule.resource == resource)
            and (action is None or rule.action == action)
        ]

    def allowed_scopes(
        self,
        resource: str,
        action: str,
        user_scope: Optional[UserDataScope]
    ) -> list[DataScopeLevel]:
        """
        The highest-priority rule's scopes intersected with the user's scopes,
        in rule order. No user scope, no rule, or an empty intersection gives
        ``[none]``.
        """
        if user_scope is None:
            return list(_NONE)

        rule = self.rule_for(resource, action)
        if rule is None:
            log.debug(f"No data scope rule for {resource}:{action}")
            return list(_NONE)

        granted = set(user_scope.scopes)
        allowed = [scope for scope in rule.scopes if scope in granted and scope != DataScopeLevel.NONE]
        return allowed or list(_NONE)

    def can_access(
        self,
        resource: str,
        action: str,
        user_scope: Optional[UserDataScope],
        record: Any
    ) -> bool:
        """Check one record against the user's allowed scopes; stops at the first scope that matches."""
        if user_scope is None or record is None:
            return False

        allowed = self.allowed_scopes(resource, action, user_scope)
        if DataScopeLevel.NONE in allowed:
            return False
        if DataScopeLevel.GLOBAL in allowed:
            return True

        if DataScopeLevel.TENANT in allowed:
            if record_value(record, _TENANT_KEYS) == user_scope.tenant_id:
                return True

        if DataScopeLevel.DEPARTMENT in allowed:
            department = record_value(record, _DEPARTMENT_KEYS)
            if department is not None:
                if user_scope.department_id and department == user_scope.department_id:
                    return True
                if department in user_scope.managed_departments:
                    return True

        if DataScopeLevel.TEAM in allowed:
            team = record_value(record, _TEAM_KEYS)
            if team is not None:
                if user_scope.team_id and team == user_scope.team_id:
                    return True
                if team in user_scope.managed_teams:
                    return True

        if DataScopeLevel.OWN in allowed:
            owner_values = (
                record_value(record, _USER_KEYS),
                record_value(record, _CREATOR_KEYS),
                record_value(record, _OWNER_KEYS),
            )
            if user_scope.user_id in owner_values:
                return True
            if record_value(record, _USER_KEYS) in user_scope.direct_reports:
                return True

        return False

    def compile_filter(
        self,
        resource: str,
        action: str,
        user_scope: Optional[UserDataScope]
    ) -> DataFilter:
        """
        Translate the allowed scopes into a declarative filter.

        global -> no restriction; tenant -> tenant equality; otherwise the OR
        of department, team and own branches. Values travel in ``params`` and
        are referenced from ``conditions`` as ``:name`` placeholders.

        A tenant scope replaces the narrower branches, so the filter only
        returns rows of the user's own tenant. ``can_access`` is per record and
        still accepts an owned record from another tenant through ``own``.
        """
        allowed = self.allowed_scopes(resource, action, user_scope)

        if DataScopeLevel.NONE in allowed:
            return _matches_nothing(resource, allowed)

        if DataScopeLevel.GLOBAL in allowed:
            return DataFilter(resource=resource, scopes=allowed)

        if DataScopeLevel.TENANT in allowed:
            return DataFilter(
                resource=resource,
                scopes=allowed,
                filters={"tenant_id": user_scope.tenant_id},
                conditions=["tenant_id = :tenant_id"],
                params={"tenant_id": user_scope.tenant_id},
                branches=[FilterBranch(field="tenant_id", operator="eq", value=user_scope.tenant_id)],
            )

        branches: list[FilterBranch] = []
        terms: list[str] = []
        params: dict[str, Any] = {}
        filters: dict[str, Any] = {}

        def add(field: str, param: str, value: Any) -> None:
            if isinstance(value, list):
                branches.append(FilterBranch(field=field, operator="in", value=value))
                terms.append(f"{field} IN :{param}")
            else:
                branches.append(FilterBranch(field=field, operator="eq", value=value))
                terms.append(f"{field} = :{param}")
            params[param] = value

        if DataScopeLevel.DEPARTMENT in allowed:
            if user_scope.department_id:
                add("department_id", "department_id", user_scope.department_id)
            if user_scope.managed_departments:
                add("department_id", "managed_departments", list(user_scope.managed_departments))

        if DataScopeLevel.TEAM in allowed:
            if user_scope.team_id:
                add("team_id", "team_id", user_scope.team_id)
            if user_scope.managed_teams:
                add("team_id", "managed_teams", list(user_scope.managed_teams))

        if DataScopeLevel.OWN in allowed:
            add("user_id", "user_id", user_scope.user_id)
            add("created_by", "created_by", user_scope.user_id)
            add("owner_id", "owner_id", user_scope.user_id)
            if user_scope.direct_reports:
                add("user_id", "direct_reports", list(user_scope.direct_reports))
            filters["user_id"] = user_scope.user_id

        if not branches:
            return _matches_nothing(resource, allowed)

        return DataFilter(
            resource=resource,
            scopes=allowed,
            filters=filters,
            conditions=[f"({' OR '.join(terms)})"],
            params=params,
            branches=branches,
        )

    def apply_scoping(
        self,
        records: Iterable[T],
        resource: str,
        action: str,
        user_scope: Optional[UserDataScope]
    ) -> list[T]:
        """
        In-memory filter for small, already-fetched result sets.

        Large listings should push ``compile_filter(...).to_clause(model)``
        into the query instead.
        """
        if user_scope is None:
            return []
        return [record for record in records if self.can_access(resource, action, user_scope, record)]

    @staticmethod
    def describe(scope: DataScopeLevel) -> str:
        return DataScopeLevel(scope).description

    @staticmethod
    def scope_hierarchy() -> list[DataScopeLevel]:
        return DataScopeLevel.hierarchy()


def _matches_nothing(resource: str, scopes: list[DataScopeLevel]) -> DataFilter:
    return DataFilter(
        resource=resource,
        scopes=scopes,
        filters={"_impossible_condition": True},
        conditions=["FALSE"],
        matches_nothing=True,
    )
