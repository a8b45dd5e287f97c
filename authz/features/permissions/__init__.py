"""
Permission resolution feature module.

Resolves a user's effective level on module resources from their role
assignments and exposes it to routes as FastAPI dependencies.
"""
