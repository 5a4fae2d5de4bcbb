from typing import Optional

from pydantic import AliasChoices, EmailStr, Field, field_validator

from .base import CamelModel, blank_to_none


class RegisterRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=6)
    first_name: str
    last_name: str
    department: Optional[str] = None
    phone: Optional[str] = None
    # Role the user asks for; anything but the default waits for an admin
    requested_role: Optional[str] = Field(
        default=None,
        validation_alias=AliasChoices("requestedRole", "requested_role", "role"),
    )
    otp: Optional[str] = None

    @field_validator("first_name", "last_name")
    @classmethod
    def _name(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v

    @field_validator("department", "phone", "requested_role", "otp", mode="before")
    @classmethod
    def _blank(cls, v):
        return blank_to_none(v)


class LoginRequest(CamelModel):
    email: EmailStr
    password: str = Field(min_length=1)


class ChangePasswordRequest(CamelModel):
    current_password: str = Field(min_length=1)
    new_password: str = Field(min_length=6)


class SendOtpRequest(CamelModel):
    email: Optional[EmailStr] = None
    phone: Optional[str] = None

    @field_validator("phone", mode="before")
    @classmethod
    def _phone(cls, v):
        return blank_to_none(v)


class VerifyOtpRequest(SendOtpRequest):
    otp: str = Field(min_length=4, max_length=12)
