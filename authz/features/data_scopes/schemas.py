"""
Pydantic schemas for data scopes.

``DataFilter`` is the declarative output of filter compilation. Storage layers
either read ``filters``/``conditions``/``params`` directly or call
``to_clause`` to get a SQLAlchemy boolean expression for a mapped model.
"""
from enum import Enum
from typing import Any, Dict, List, Literal, Optional
from pydantic import BaseModel, ConfigDict, Field, field_validator
from sqlalchemy import ColumnElement, false, or_, true


class DataScopeLevel(str, Enum):
    """Totally ordered: global > tenant > department > team > own > none."""
    GLOBAL = "global"
    TENANT = "tenant"
    DEPARTMENT = "department"
    TEAM = "team"
    OWN = "own"
    NONE = "none"

    @property
    def rank(self) -> int:
        return _SCOPE_RANKS[self]

    @property
    def description(self) -> str:
        return _SCOPE_DESCRIPTIONS[self]

    @classmethod
    def hierarchy(cls) -> List["DataScopeLevel"]:
        """Every level, broadest first."""
        return sorted(cls, key=lambda scope: scope.rank, reverse=True)


_SCOPE_RANKS = {
    DataScopeLevel.GLOBAL: 6,
    DataScopeLevel.TENANT: 5,
    DataScopeLevel.DEPARTMENT: 4,
    DataScopeLevel.TEAM: 3,
    DataScopeLevel.OWN: 2,
    DataScopeLevel.NONE: 1,
}

_SCOPE_DESCRIPTIONS = {
    DataScopeLevel.GLOBAL: "Global - All tenants and data",
    DataScopeLevel.TENANT: "Tenant - All data within tenant",
    DataScopeLevel.DEPARTMENT: "Department - Department-level data",
    DataScopeLevel.TEAM: "Team - Team-level data",
    DataScopeLevel.OWN: "Own - Only personal data",
    DataScopeLevel.NONE: "None - No data access",
}


# ============================================================================
# Rules and User Scopes
# ============================================================================

class DataScopeRule(BaseModel):
    """Scopes allowed for (resource, action). Higher priority wins outright."""
    id: str
    resource: str
    action: str
    scopes: List[DataScopeLevel]
    conditions: Dict[str, Any] = {}
    priority: int = 0

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @field_validator('conditions', mode='before')
    @classmethod
    def default_conditions(cls, v):
        return v or {}


class UserDataScopeBase(BaseModel):
    department_id: Optional[str] = None
    team_id: Optional[str] = None
    managed_departments: List[str] = []
    managed_teams: List[str] = []
    direct_reports: List[str] = []
    scopes: List[DataScopeLevel] = []


class UserDataScope(UserDataScopeBase):
    """A user's organizational position within one tenant."""
    user_id: str
    tenant_id: str

    model_config = ConfigDict(from_attributes=True, frozen=True)


class UserDataScopeUpdate(UserDataScopeBase):
    """Schema for setting a user's data scope (replaces the stored record)."""
    scopes: List[DataScopeLevel] = Field(..., description="Scopes the user is broadly entitled to")


class ScopeLevelInfo(BaseModel):
    scope: DataScopeLevel
    rank: int
    description: str


# ============================================================================
# Filters
# ============================================================================

class FilterBranch(BaseModel):
    """One alternative of the compiled filter: ``field = value`` or ``field IN values``."""
    field: str
    operator: Literal["eq", "in"]
    value: Any

    model_config = ConfigDict(frozen=True)


class DataFilter(BaseModel):
    """
    Compiled row filter for one (resource, action, user).

    ``branches`` are OR-combined. ``matches_nothing`` marks the always-false
    filter produced for the ``none`` scope; an empty branch list without it
    means unrestricted (global) access.
    """
    resource: str
    scopes: List[DataScopeLevel]
    filters: Dict[str, Any] = {}
    conditions: List[str] = []
    params: Dict[str, Any] = {}
    branches: List[FilterBranch] = []
    matches_nothing: bool = False

    model_config = ConfigDict(frozen=True)

    def to_clause(self, model) -> ColumnElement[bool]:
        """
        Build a SQLAlchemy WHERE clause against a mapped model.

        Branches naming a column the model lacks are dropped; if none remain
        the clause is ``false()``.

        Usage:
            stmt = select(Document).where(data_filter.to_clause(Document))
        """
        if self.matches_nothing:
            return false()
        if not self.branches:
            return true()

        clauses = []
        for branch in self.branches:
            column = getattr(model, branch.field, None)
            if column is None:
                continue
            if branch.operator == "in":
                clauses.append(column.in_(list(branch.value)))
            else:
                clauses.append(column == branch.value)

        if not clauses:
            return false()
        return or_(*clauses)


class AllowedScopesResponse(BaseModel):
    resource: str
    action: str
    scopes: List[DataScopeLevel]


class RecordAccessRequest(BaseModel):
    resource: str = Field(..., min_length=1)
    action: str = Field(..., min_length=1)
    record: Dict[str, Any]


class RecordAccessResponse(BaseModel):
    allowed: bool
