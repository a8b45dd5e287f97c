"""
Pydantic schemas for the request caller.
"""
from pydantic import BaseModel, ConfigDict, Field


class Caller(BaseModel):
    """Identity of the user making the request, within one tenant."""
    tenant_id: str = Field(..., min_length=1)
    user_id: str = Field(..., min_length=1)
    is_super_admin: bool = False

    model_config = ConfigDict(frozen=True)
