"""
Caller identity feature module.

Authentication happens upstream; requests arrive with a tenant id and a user
id that this module turns into a ``Caller``.
"""
