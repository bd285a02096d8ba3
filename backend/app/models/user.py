"""Admin principal data models."""

from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from app.utils.helpers import utcnow


class AdminRole(str, Enum):
    ADMIN = "admin"
    SUPER_ADMIN = "super_admin"


class AdminBase(BaseModel):
    """Base admin model."""

    email: EmailStr
    firstName: str = Field(..., min_length=1, max_length=100)
    lastName: str = Field(..., min_length=1, max_length=100)
    role: AdminRole = AdminRole.ADMIN


class AdminInDB(AdminBase):
    """Admin model as stored in database.

    Only the SHA-256 hash of the API key is persisted.
    """

    apiKeyHash: str
    isActive: bool = True
    lastLogin: Optional[datetime] = None
    createdAt: datetime = Field(default_factory=utcnow)


class AdminPrincipal(BaseModel):
    """The authenticated operator behind an admin request."""

    email: EmailStr
    role: AdminRole

    @property
    def is_super_admin(self) -> bool:
        return self.role == AdminRole.SUPER_ADMIN
