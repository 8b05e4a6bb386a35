"""Authorization domain schemas - Pydantic models for validation"""

from pydantic import BaseModel


class UserRolesResponse(BaseModel):
    """Schema for a user's active roles"""

    userId: str
    roles: list[str]


class RoleChangeResponse(BaseModel):
    userId: str
    role: str
    isActive: bool
    changed: bool
