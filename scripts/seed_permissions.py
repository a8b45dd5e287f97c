"""
Seed script to populate the central authorization catalog.

Run this script after database initialization to create:
- Modules and their permission resource trees
- Role templates tenants can instantiate
- Default data scope rules
- Default field rules

Tenant roles and assignments are not seeded; tenants create them from the
templates.

Usage:
    uv run python -m scripts.seed_permissions
"""
import asyncio
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from authz.core.database.engine import get_db, init_db
from authz.features.data_scopes.models import DataScopeRuleRecord
from authz.features.field_access.models import FieldRuleRecord
from authz.features.resources.models import Module, PermissionResource
from authz.features.roles.models import RoleTemplate
from authz.utils import get_logger


log = get_logger(__name__)


DEFAULT_MODULES = [
    # (code, name, description)
    ("core", "Core Platform", "User, role and tenant administration"),
    ("wms", "Warehouse Management", "Inbound, outbound and inventory operations"),
]


DEFAULT_RESOURCES = [
    # (code, name, module, parent, type, is_leaf, display_order)

    # Core dashboard
    ("core_dashboard", "Dashboard", "core", None, "menu", False, 1),
    ("core_kpi_overview", "KPI Overview", "core", "core_dashboard", "widget", True, 1),
    ("core_recent_activity", "Recent Activity", "core", "core_dashboard", "widget", True, 2),
    ("core_quick_actions", "Quick Actions", "core", "core_dashboard", "widget", True, 3),

    # Core administration
    ("core_administration", "Administration", "core", None, "menu", False, 2),
    ("core_user_management", "User Management", "core", "core_administration", "menu", True, 1),
    ("core_role_management", "Role Management", "core", "core_administration", "menu", True, 2),
    ("core_general_settings", "General Settings", "core", "core_administration", "menu", True, 3),
    ("core_audit_logs", "Audit Logs", "core", "core_administration", "report", True, 4),

    # Core analytics
    ("core_analytics", "Analytics", "core", None, "menu", False, 3),
    ("core_user_analytics", "User Analytics", "core", "core_analytics", "report", True, 1),
    ("core_system_metrics", "System Metrics", "core", "core_analytics", "report", True, 2),

    # Core data
    ("core_user_records", "User Records", "core", None, "data", True, 4),
    ("core_hr_records", "HR Records", "core", None, "data", True, 5),

    # WMS
    ("wms_dashboard", "WMS Dashboard", "wms", None, "menu", True, 1),
    ("wms_warehouse_operations", "Warehouse Operations", "wms", None, "menu", False, 2),
    ("wms_inbound_operations", "Inbound Operations", "wms", "wms_warehouse_operations", "menu", True, 1),
    ("wms_outbound_operations", "Outbound Operations", "wms", "wms_warehouse_operations", "menu", True, 2),
    ("wms_inventory_tracking", "Inventory Tracking", "wms", "wms_warehouse_operations", "menu", True, 3),
    ("wms_reports_analytics", "Reports & Analytics", "wms", None, "report", True, 3),
    ("wms_inventory_data", "Inventory Records", "wms", None, "data", True, 4),
    ("wms_shipment_data", "Shipment Records", "wms", None, "data", True, 5),
]


def _levels(level: str, *codes: str) -> list[dict[str, str]]:
    return [{"resource_code": code, "permission_level": level} for code in codes]


WMS_LEAVES = (
    "wms_dashboard", "wms_inbound_operations", "wms_outbound_operations",
    "wms_inventory_tracking", "wms_reports_analytics", "wms_inventory_data", "wms_shipment_data",
)

DEFAULT_TEMPLATES = {
    "wms_warehouse_admin": {
        "module_code": "wms",
        "display_name": "Warehouse Admin",
        "description": "Full control of warehouse operations and reporting",
        "permissions": _levels("manage", *WMS_LEAVES),
    },
    "wms_warehouse_manager": {
        "module_code": "wms",
        "display_name": "Warehouse Manager",
        "description": "Runs daily operations; read-only reporting",
        "permissions": (
            _levels("manage", "wms_inbound_operations", "wms_outbound_operations", "wms_inventory_tracking")
            + _levels("view_only", "wms_dashboard", "wms_reports_analytics", "wms_inventory_data")
        ),
    },
    "wms_inventory_worker": {
        "module_code": "wms",
        "display_name": "Inventory Worker",
        "description": "Updates stock levels; sees inbound and outbound queues",
        "permissions": (
            _levels("manage", "wms_inventory_tracking")
            + _levels("view_only", "wms_dashboard", "wms_inbound_operations", "wms_outbound_operations")
        ),
    },
    "wms_viewer": {
        "module_code": "wms",
        "display_name": "WMS Viewer",
        "description": "Read-only access to warehouse data",
        "permissions": _levels("view_only", *WMS_LEAVES),
    },
    "core_tenant_admin": {
        "module_code": "core",
        "display_name": "Tenant Admin",
        "description": "Administers users, roles and settings of the tenant",
        "permissions": (
            _levels(
                "manage", "core_user_management", "core_role_management",
                "core_general_settings", "core_user_records",
            )
            + _levels(
                "view_only", "core_audit_logs", "core_kpi_overview", "core_recent_activity",
                "core_quick_actions", "core_user_analytics", "core_system_metrics",
            )
        ),
    },
    "core_manager": {
        "module_code": "core",
        "display_name": "Manager",
        "description": "Sees users, analytics and the audit trail",
        "permissions": _levels(
            "view_only", "core_user_management", "core_audit_logs", "core_user_analytics",
            "core_kpi_overview", "core_recent_activity", "core_user_records",
        ),
    },
    "core_default": {
        "module_code": "core",
        "display_name": "Default User",
        "description": "Dashboard access for every user",
        "permissions": _levels("view_only", "core_kpi_overview", "core_recent_activity", "core_quick_actions"),
    },
}


DEFAULT_DATA_SCOPE_RULES = [
    # (id, resource, action, scopes, conditions, priority)

    # User management scopes
    ("users_read_global", "users", "read", ["global"], None, 100),
    ("users_read_tenant", "users", "read", ["tenant", "department", "team"], None, 80),
    ("users_create_admin", "users", "create", ["global", "tenant"], None, 90),
    ("users_update_manager", "users", "update", ["tenant", "department", "team"], {"role_hierarchy": True}, 70),

    # Financial data scopes
    ("financial_reports_global", "financial_reports", "read", ["global", "tenant"], None, 100),
    ("financial_reports_department", "financial_reports", "read", ["department"], {"department_access": True}, 80),
    ("budgets_own_only", "budgets", "read", ["own"], None, 60),
    ("budgets_team_manager", "budgets", "update", ["team", "department"], {"manager_access": True}, 80),

    # Document scopes
    ("documents_read_scope", "documents", "read", ["global", "tenant", "department", "team", "own"], None, 50),
    ("documents_create_scope", "documents", "create", ["tenant", "department", "team", "own"], None, 60),

    # Audit logs - restricted access
    ("audit_logs_admin", "audit_logs", "read", ["global", "tenant"], {"admin_role": True}, 100),
]


DEFAULT_FIELD_RULES = [
    # User PII fields
    dict(id="user_email_basic", resource="users", field="email",
         required_permissions=["core_user_management.manage"], access_level="full", category="pii", priority=100),
    dict(id="user_email_partial", resource="users", field="email",
         required_permissions=["core_user_management"], access_level="partial", masking_strategy="domain",
         category="pii", priority=80),
    dict(id="user_phone_admin", resource="users", field="phone",
         required_permissions=["core_user_management.manage"], access_level="full", category="pii", priority=100),
    dict(id="user_phone_masked", resource="users", field="phone",
         required_permissions=["core_user_management"], access_level="masked", masking_strategy="partial",
         category="pii", priority=80),
    dict(id="user_ssn_hr", resource="users", field="ssn",
         required_permissions=["core_hr_records"], access_level="full", category="pii", priority=100),
    dict(id="user_ssn_masked", resource="users", field="ssn",
         required_permissions=["core_user_management.manage"], access_level="masked", masking_strategy="partial",
         category="pii", priority=90),
    dict(id="user_ssn_denied", resource="users", field="ssn",
         required_permissions=[], access_level="denied", category="pii", priority=0),

    # Financial fields
    dict(id="salary_hr_full", resource="users", field="salary",
         required_permissions=["core_hr_records.manage"], access_level="full", category="financial", priority=100),
    dict(id="salary_manager_read", resource="users", field="salary",
         required_permissions=["core_user_analytics"], required_scopes=["department", "team"],
         access_level="read", category="financial", priority=90),
    dict(id="salary_masked", resource="users", field="salary",
         required_permissions=["core_user_management"], access_level="masked", masking_strategy="currency",
         category="financial", priority=50),

    # Financial report fields
    dict(id="revenue_full", resource="financial_reports", field="revenue",
         required_permissions=["core_system_metrics"], access_level="full", category="financial", priority=100),
    dict(id="revenue_executive", resource="financial_reports", field="revenue",
         required_roles=["Executive", "CFO"], access_level="full", category="financial", priority=95),
    dict(id="revenue_manager", resource="financial_reports", field="revenue",
         required_permissions=["core_kpi_overview"], required_scopes=["department"],
         access_level="partial", masking_strategy="currency", category="financial", priority=80),
    dict(id="profit_margin_sensitive", resource="financial_reports", field="profit_margin",
         required_permissions=["core_system_metrics.manage"], access_level="full", category="confidential",
         priority=100),
    dict(id="profit_margin_hidden", resource="financial_reports", field="profit_margin",
         required_permissions=[], access_level="hidden", category="confidential", priority=0),

    # Document fields
    dict(id="document_content_owner", resource="documents", field="content",
         required_scopes=["own"], access_level="full", category="content", priority=100),
    dict(id="document_content_team", resource="documents", field="content",
         required_scopes=["team"], access_level="read", category="content", priority=80),
    dict(id="document_content_preview", resource="documents", field="content",
         required_permissions=["core_user_records"], access_level="partial", masking_strategy="partial",
         category="content", priority=60),
]


async def seed_modules(db: AsyncSession):
    """Create modules and their resource trees; existing rows are left untouched."""
    log.info("Creating modules and resources...")

    for code, name, description in DEFAULT_MODULES:
        if await db.get(Module, code):
            log.debug(f"Module '{code}' already exists, skipping")
            continue
        db.add(Module(code=code, name=name, description=description))
        log.info(f"Created module: {code}")
    await db.flush()

    result = await db.execute(select(PermissionResource.code))
    existing = set(result.scalars().all())

    created = 0
    for code, name, module_code, parent_code, resource_type, is_leaf, display_order in DEFAULT_RESOURCES:
        if code in existing:
            continue
        db.add(PermissionResource(
            code=code,
            name=name,
            module_code=module_code,
            parent_code=parent_code,
            resource_type=resource_type,
            is_leaf=is_leaf,
            display_order=display_order,
        ))
        created += 1

    await db.commit()
    log.info(f"Created {created} resources")


async def seed_templates(db: AsyncSession):
    log.info("Creating role templates...")

    for template_id, template in DEFAULT_TEMPLATES.items():
        if await db.get(RoleTemplate, template_id):
            log.debug(f"Template '{template_id}' already exists, skipping")
            continue
        db.add(RoleTemplate(
            id=template_id,
            module_code=template["module_code"],
            template_name=template_id,
            display_name=template["display_name"],
            description=template["description"],
            default_permissions=template["permissions"],
        ))
        log.info(f"Created template '{template_id}' with {len(template['permissions'])} permissions")

    await db.commit()


async def seed_rules(db: AsyncSession):
    """Create central data scope and field rules."""
    log.info("Creating data scope and field rules...")

    for rule_id, resource, action, scopes, conditions, priority in DEFAULT_DATA_SCOPE_RULES:
        if await db.get(DataScopeRuleRecord, rule_id):
            continue
        db.add(DataScopeRuleRecord(
            id=rule_id,
            resource=resource,
            action=action,
            scopes=scopes,
            conditions=conditions,
            priority=priority,
        ))

    for rule in DEFAULT_FIELD_RULES:
        if await db.get(FieldRuleRecord, rule["id"]):
            continue
        db.add(FieldRuleRecord(**{
            "required_permissions": [],
            "required_roles": [],
            "required_scopes": [],
            **rule,
        }))

    await db.commit()
    log.info(
        f"Seeded {len(DEFAULT_DATA_SCOPE_RULES)} data scope rules and {len(DEFAULT_FIELD_RULES)} field rules"
    )


async def main():
    """Main function to seed the authorization catalog."""
    log.info("Starting catalog seeding...")

    # Initialize database tables first
    log.info("Initializing database tables...")
    await init_db()

    # Get database session
    async for db in get_db():
        try:
            await seed_modules(db)
            await seed_templates(db)
            await seed_rules(db)

            log.info("Catalog seeding completed successfully!")
            log.info("")
            log.info("Role templates available:")
            for template_id, template in DEFAULT_TEMPLATES.items():
                log.info(f"  - {template_id}: {template['description']}")

        except Exception as e:
            log.error(f"Error seeding catalog: {e}", exc_info=True)
            await db.rollback()
            raise

        break  # Only use first session


if __name__ == "__main__":
    asyncio.run(main())
