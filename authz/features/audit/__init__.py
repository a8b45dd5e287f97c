"""
Audit feature module.

Fire-and-forget decision and administration events, persisted per tenant.
"""
