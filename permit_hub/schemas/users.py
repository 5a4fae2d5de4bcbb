import uuid
from typing import List, Optional

from pydantic import EmailStr, Field, field_validator

from .base import CamelModel, blank_to_none


class UserCreate(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6)
    first_name: str = Field(min_length=1)
    last_name: str = Field(min_length=1)
    department: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None


class UserUpdate(CamelModel):
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    department: Optional[str] = None
    phone: Optional[str] = None
    role: Optional[str] = None
    is_active: Optional[bool] = None

    @field_validator("first_name", "last_name", "department", "phone", "role", mode="before")
    @classmethod
    def _blank(cls, v):
        return blank_to_none(v)


class RejectRequest(CamelModel):
    reason: Optional[str] = None


class RoleAssignment(CamelModel):
    role_id: Optional[uuid.UUID] = None
    role: Optional[str] = None


class RoleCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    display_name: Optional[str] = None
    description: Optional[str] = None
    permissions: List[str] = []


class RoleUpdate(CamelModel):
    display_name: Optional[str] = None
    description: Optional[str] = None
    permissions: Optional[List[str]] = None
