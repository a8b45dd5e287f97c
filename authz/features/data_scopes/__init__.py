"""
Data scope feature module.

Row-level visibility: which records of a resource a user may see, derived
from priority-ordered scope rules and the user's position in the tenant
(department, team, direct reports).
"""
