"""
FieldAccessResolver: per-field access levels and record masking.

Rules for a (resource, field) are evaluated highest priority first and the
first rule whose permission, role and scope requirements all pass decides the
level. A field with no rules is ``full``: field rules only ever redact on top
of resource access that was already granted. A field whose rules all fail is
``denied``.
"""
from collections.abc import Iterable, Mapping
from typing import Any, Optional

from authz.features.data_scopes.resolver import DataScopeResolver
from authz.features.data_scopes.schemas import DataScopeLevel
from authz.features.field_access.masking import CustomMask, apply_masking
from authz.features.field_access.schemas import (
    FieldAccessContext,
    FieldAccessLevel,
    FieldMaskingResult,
    FieldRule,
    MaskingStrategy,
)
from authz.utils import get_logger


log = get_logger(__name__)


class FieldAccessResolver:
    """
    Usage:
        resolver = FieldAccessResolver(rules, scope_resolver)
        safe = resolver.mask_object("users", user_record, context)
    """

    def __init__(
        self,
        rules: Iterable[FieldRule],
        scope_resolver: Optional[DataScopeResolver] = None,
        custom_masks: Optional[Mapping[str, CustomMask]] = None
    ):
        self.rules = sorted(rules, key=lambda rule: rule.priority, reverse=True)
        self.scope_resolver = scope_resolver
        self.custom_masks = dict(custom_masks or {})

    def register_mask(self, name: str, mask: CustomMask) -> None:
        self.custom_masks[name] = mask

    def rules_for(self, resource: str, field: Optional[str] = None) -> list[FieldRule]:
        return [
            rule for rule in self.rules
            if rule.resource == resource and (field is None or rule.field == field)
        ]

    def _allowed_scopes(self, resource: str, context: FieldAccessContext) -> set[DataScopeLevel]:
        if context.user_scope is None:
            return set()
        if self.scope_resolver is None:
            scopes = context.user_scope.scopes
        else:
            scopes = self.scope_resolver.allowed_scopes(resource, context.action, context.user_scope)
        return {scope for scope in scopes if scope != DataScopeLevel.NONE}

    def _passes(self, rule: FieldRule, context: FieldAccessContext) -> bool:
        if rule.required_permissions and not context.permissions.intersection(rule.required_permissions):
            return False
        if rule.required_roles and not context.roles.intersection(rule.required_roles):
            return False
        if rule.required_scopes:
            allowed = self._allowed_scopes(rule.resource, context)
            if not allowed.intersection(rule.required_scopes):
                return False
        return True

    def _resolve(
        self,
        resource: str,
        field: str,
        context: FieldAccessContext
    ) -> tuple[FieldAccessLevel, Optional[FieldRule]]:
        rules = self.rules_for(resource, field)
        if not rules:
            return FieldAccessLevel.FULL, None
        for rule in rules:
            if self._passes(rule, context):
                return rule.access_level, rule
        log.debug(f"No field rule passed for {resource}.{field}; denying")
        return FieldAccessLevel.DENIED, None

    def field_access(self, resource: str, field: str, context: FieldAccessContext) -> FieldAccessLevel:
        level, _rule = self._resolve(resource, field, context)
        return level

    def mask_field(self, resource: str, field: str, value: Any, context: FieldAccessContext) -> FieldMaskingResult:
        """Resolve the level and apply the deciding rule's masking strategy in one pass."""
        level, rule = self._resolve(resource, field, context)

        if level.removes_field:
            return FieldMaskingResult(
                access_level=level,
                is_original=False,
                masking_applied=["hidden"],
                reason="Access denied" if level == FieldAccessLevel.DENIED else "Field hidden",
            )

        if level.masks_value:
            strategy = (rule.masking_strategy if rule else None) or MaskingStrategy.ASTERISK
            display_value = apply_masking(
                strategy, value, rule.custom_mask if rule else None, self.custom_masks
            )
            return FieldMaskingResult(
                display_value=display_value,
                access_level=level,
                is_original=False,
                masking_applied=[strategy.value],
                reason=f"Masked using {strategy.value} strategy",
            )

        return FieldMaskingResult(
            value=value,
            display_value="" if value is None else str(value),
            access_level=level,
            is_original=True,
        )

    def mask_object(self, resource: str, obj: Mapping[str, Any], context: FieldAccessContext) -> dict[str, Any]:
        """
        Copy of a flat record with hidden/denied keys deleted and masked
        values replaced by their display value.
        """
        masked: dict[str, Any] = {}
        for field, value in obj.items():
            result = self.mask_field(resource, field, value, context)
            if result.access_level.removes_field:
                continue
            masked[field] = value if result.is_original else result.display_value
        return masked

    def mask_records(
        self,
        resource: str,
        records: Iterable[Mapping[str, Any]],
        context: FieldAccessContext
    ) -> list[dict[str, Any]]:
        return [self.mask_object(resource, record, context) for record in records]

    def visible_fields(self, resource: str, fields: Iterable[str], context: FieldAccessContext) -> list[str]:
        return [
            field for field in fields
            if not self.field_access(resource, field, context).removes_field
        ]

    def can_edit_field(self, resource: str, field: str, context: FieldAccessContext) -> bool:
        """Only ``full`` access allows editing."""
        return self.field_access(resource, field, context) == FieldAccessLevel.FULL

    def field_categories(self, resource: str) -> dict[str, list[str]]:
        """Fields of a resource grouped by rule category."""
        categories: dict[str, list[str]] = {}
        for rule in self.rules_for(resource):
            fields = categories.setdefault(rule.category or "general", [])
            if rule.field not in fields:
                fields.append(rule.field)
        return categories
