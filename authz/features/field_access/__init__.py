"""
Field access feature module.

Field-level redaction on top of resource permissions: per-field rules decide
whether a value is shown, masked, or removed before a record leaves the
service.
"""
