"""
Role management feature module.

Tenant-scoped roles bound to one module each, their per-resource permission
levels, centrally maintained role templates, and user role assignments.
"""
