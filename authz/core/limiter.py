"""
Shared slowapi limiter, applied to decision endpoints.
"""
from slowapi import Limiter

from authz.features.users.dependencies import get_caller_key


limiter = Limiter(key_func=get_caller_key)
