import pytest
from sqlalchemy import Column, MetaData, String, Table, select

from authz.core.errors import AuthorizationDenied, ValidationError
from authz.features.data_scopes.resolver import DataScopeResolver, record_value
from authz.features.data_scopes.schemas import (
    DataScopeLevel as S,
    DataScopeRule,
    UserDataScope,
    UserDataScopeUpdate,
)
from authz.features.data_scopes.store import DataScopeStore, validate_user_scope

from conftest import OTHER_TENANT, TENANT


def rule(rule_id, resource, action, scopes, priority=0):
    return DataScopeRule(id=rule_id, resource=resource, action=action, scopes=scopes, priority=priority)


def scope(**kwargs):
    defaults = dict(user_id="u1", tenant_id=TENANT)
    defaults.update(kwargs)
    return UserDataScope(**defaults)


RULES = [
    rule("docs_low", "documents", "read", [S.OWN], priority=10),
    rule("docs_high", "documents", "read", [S.TENANT, S.DEPARTMENT, S.TEAM, S.OWN], priority=50),
    rule("budgets", "budgets", "read", [S.OWN], priority=60),
    rule("reports", "reports", "read", [S.GLOBAL, S.TENANT], priority=100),
]

documents = Table(
    "documents",
    MetaData(),
    Column("id", String, primary_key=True),
    Column("tenant_id", String),
    Column("department_id", String),
    Column("team_id", String),
    Column("user_id", String),
    Column("created_by", String),
    Column("owner_id", String),
)


# ----------------------------------------------------------------------
# Allowed scopes
# ----------------------------------------------------------------------

def test_only_highest_priority_rule_is_consulted():
    resolver = DataScopeResolver(RULES)
    assert resolver.rule_for("documents", "read").id == "docs_high"

    user = scope(scopes=[S.DEPARTMENT, S.OWN], department_id="ops")
    assert resolver.allowed_scopes("documents", "read", user) == [S.DEPARTMENT, S.OWN]


def test_allowed_scopes_fail_closed():
    resolver = DataScopeResolver(RULES)

    assert resolver.allowed_scopes("documents", "read", None) == [S.NONE]
    assert resolver.allowed_scopes("documents", "delete", scope(scopes=[S.GLOBAL])) == [S.NONE]
    assert resolver.allowed_scopes("budgets", "read", scope(scopes=[S.TENANT])) == [S.NONE]


def test_scope_hierarchy_broadest_first():
    assert DataScopeResolver.scope_hierarchy() == [S.GLOBAL, S.TENANT, S.DEPARTMENT, S.TEAM, S.OWN, S.NONE]
    assert DataScopeResolver.describe(S.TEAM).startswith("Team")


# ----------------------------------------------------------------------
# Record checks
# ----------------------------------------------------------------------

def test_own_scope_matches_any_ownership_key():
    resolver = DataScopeResolver(RULES)
    user = scope(scopes=[S.OWN], direct_reports=["u7"])

    assert resolver.can_access("budgets", "read", user, {"userId": "u1"})
    assert resolver.can_access("budgets", "read", user, {"created_by": "u1"})
    assert resolver.can_access("budgets", "read", user, {"owner_id": "u1"})
    assert resolver.can_access("budgets", "read", user, {"user_id": "u7"})
    assert not resolver.can_access("budgets", "read", user, {"user_id": "u2"})


def test_department_and_team_membership_or_management():
    resolver = DataScopeResolver(RULES)
    user = scope(
        scopes=[S.DEPARTMENT, S.TEAM],
        department_id="ops",
        managed_departments=["finance"],
        team_id="blue",
    )

    assert resolver.can_access("documents", "read", user, {"department_id": "ops"})
    assert resolver.can_access("documents", "read", user, {"departmentId": "finance"})
    assert resolver.can_access("documents", "read", user, {"team_id": "blue"})
    assert not resolver.can_access("documents", "read", user, {"department_id": "hr", "team_id": "red"})


def test_tenant_and_global_scopes():
    resolver = DataScopeResolver(RULES)

    tenant_user = scope(scopes=[S.TENANT])
    assert resolver.can_access("reports", "read", tenant_user, {"tenant_id": TENANT})
    assert not resolver.can_access("reports", "read", tenant_user, {"tenant_id": OTHER_TENANT})

    global_user = scope(scopes=[S.GLOBAL])
    assert resolver.can_access("reports", "read", global_user, {"tenant_id": OTHER_TENANT})


def test_missing_scope_record_or_record_denies():
    resolver = DataScopeResolver(RULES)
    assert not resolver.can_access("budgets", "read", None, {"user_id": "u1"})
    assert not resolver.can_access("budgets", "read", scope(scopes=[S.OWN]), None)


def test_apply_scoping_filters_objects_and_mappings():
    class Budget:
        def __init__(self, owner_id):
            self.owner_id = owner_id

    resolver = DataScopeResolver(RULES)
    records = [Budget("u1"), Budget("u2"), {"ownerId": "u1"}]

    kept = resolver.apply_scoping(records, "budgets", "read", scope(scopes=[S.OWN]))

    assert kept == [records[0], records[2]]
    assert resolver.apply_scoping(records, "budgets", "read", None) == []


def test_record_value_prefers_first_present_key():
    assert record_value({"team_id": None, "teamId": "blue"}, ("team_id", "teamId")) == "blue"
    assert record_value(object(), ("team_id",)) is None


# ----------------------------------------------------------------------
# Filter compilation
# ----------------------------------------------------------------------

def test_none_scope_compiles_to_impossible_filter():
    resolver = DataScopeResolver(RULES)

    data_filter = resolver.compile_filter("budgets", "read", scope(scopes=[S.TENANT]))

    assert data_filter.matches_nothing
    assert data_filter.scopes == [S.NONE]
    assert data_filter.filters == {"_impossible_condition": True}
    assert data_filter.conditions == ["FALSE"]
    assert str(data_filter.to_clause(documents.c)) == "false"


def test_global_filter_is_unrestricted():
    resolver = DataScopeResolver(RULES)
    data_filter = resolver.compile_filter("reports", "read", scope(scopes=[S.GLOBAL, S.TENANT]))

    assert data_filter.scopes == [S.GLOBAL, S.TENANT]
    assert data_filter.filters == {}
    assert data_filter.conditions == []
    assert str(data_filter.to_clause(documents.c)) == "true"


def test_tenant_filter_uses_placeholders():
    resolver = DataScopeResolver(RULES)
    data_filter = resolver.compile_filter("reports", "read", scope(scopes=[S.TENANT]))

    assert data_filter.filters == {"tenant_id": TENANT}
    assert data_filter.conditions == ["tenant_id = :tenant_id"]
    assert data_filter.params == {"tenant_id": TENANT}


def test_department_team_own_filter_is_an_or():
    resolver = DataScopeResolver(RULES)
    user = scope(
        scopes=[S.DEPARTMENT, S.TEAM, S.OWN],
        department_id="ops",
        managed_teams=["blue", "green"],
        direct_reports=["u7"],
    )

    data_filter = resolver.compile_filter("documents", "read", user)

    assert data_filter.conditions == [
        "(department_id = :department_id OR team_id IN :managed_teams OR user_id = :user_id "
        "OR created_by = :created_by OR owner_id = :owner_id OR user_id IN :direct_reports)"
    ]
    assert data_filter.params["managed_teams"] == ["blue", "green"]
    assert data_filter.params["user_id"] == "u1"
    assert data_filter.filters == {"user_id": "u1"}
    assert len(data_filter.branches) == 6


def test_filter_clause_selects_the_same_rows_as_can_access():
    resolver = DataScopeResolver(RULES)
    user = scope(scopes=[S.TEAM, S.OWN], team_id="blue")
    data_filter = resolver.compile_filter("documents", "read", user)

    stmt = select(documents.c.id).where(data_filter.to_clause(documents.c))
    sql = str(stmt.compile(compile_kwargs={"literal_binds": True}))

    assert "documents.team_id = 'blue'" in sql
    assert "documents.owner_id = 'u1'" in sql
    assert " OR " in sql


def test_tenant_scope_filter_keeps_only_the_tenant_branch():
    resolver = DataScopeResolver(RULES)
    user = scope(scopes=[S.TENANT, S.OWN])
    owned_elsewhere = {"tenant_id": OTHER_TENANT, "owner_id": "u1"}

    data_filter = resolver.compile_filter("documents", "read", user)

    assert data_filter.conditions == ["tenant_id = :tenant_id"]
    assert [b.field for b in data_filter.branches] == ["tenant_id"]
    # Record checks still honour ownership outside the tenant
    assert resolver.can_access("documents", "read", user, owned_elsewhere)


def test_filter_clause_is_false_when_model_lacks_every_column():
    narrow = Table("narrow", MetaData(), Column("id", String, primary_key=True))
    resolver = DataScopeResolver(RULES)
    data_filter = resolver.compile_filter("documents", "read", scope(scopes=[S.OWN]))

    assert str(data_filter.to_clause(narrow.c)) == "false"


def test_team_scope_without_team_compiles_to_nothing():
    resolver = DataScopeResolver(RULES)
    data_filter = resolver.compile_filter("documents", "read", scope(scopes=[S.TEAM]))
    assert data_filter.matches_nothing


# ----------------------------------------------------------------------
# Storage
# ----------------------------------------------------------------------

@pytest.mark.parametrize("update", [
    UserDataScopeUpdate(scopes=[]),
    UserDataScopeUpdate(scopes=[S.NONE, S.OWN]),
    UserDataScopeUpdate(scopes=[S.DEPARTMENT]),
    UserDataScopeUpdate(scopes=[S.TEAM], department_id="ops"),
])
def test_validate_user_scope_rejects_inconsistent_records(update):
    with pytest.raises(ValidationError):
        validate_user_scope(update)


async def test_user_scope_upsert(db):
    store = DataScopeStore(db)
    assert await store.get_user_data_scope(TENANT, "u1") is None

    await store.set_user_data_scope(TENANT, "u1", UserDataScopeUpdate(scopes=[S.OWN]))
    updated = await store.set_user_data_scope(TENANT, "u1", UserDataScopeUpdate(
        scopes=[S.DEPARTMENT, S.OWN], department_id="ops",
    ))
    stored = await store.get_user_data_scope(TENANT, "u1")

    assert updated == stored
    assert stored.scopes == [S.DEPARTMENT, S.OWN]
    assert stored.department_id == "ops"
    assert await store.get_user_data_scope(OTHER_TENANT, "u1") is None


async def test_global_scope_needs_explicit_permission(db):
    store = DataScopeStore(db)

    with pytest.raises(AuthorizationDenied):
        await store.set_user_data_scope(TENANT, "u1", UserDataScopeUpdate(scopes=[S.GLOBAL]))
    assert await store.get_user_data_scope(TENANT, "u1") is None

    granted = await store.set_user_data_scope(
        TENANT, "u1", UserDataScopeUpdate(scopes=[S.GLOBAL]), allow_global=True
    )
    assert granted.scopes == [S.GLOBAL]


async def test_seeded_rules_load_by_priority(catalog_db):
    resolver = await DataScopeStore(catalog_db).resolver(TENANT)

    assert resolver.rule_for("users", "read").id == "users_read_global"
    ids = [r.id for r in resolver.rules_for("financial_reports")]
    assert ids == ["financial_reports_global", "financial_reports_department"]
