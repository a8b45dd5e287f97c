"""
Resource catalog feature module.

Holds the module registry and the per-module tree of permission-checkable
resources (menus, APIs, reports, widgets, data objects).
"""
