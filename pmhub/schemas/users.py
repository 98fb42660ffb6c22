from typing import Dict, Optional

from pydantic import EmailStr, Field, field_validator

from .common import CamelModel


class UserUpdate(CamelModel):
    first_name: Optional[str] = Field(default=None, min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: Optional[EmailStr] = None
    phone_number: Optional[str] = None
    image: Optional[str] = None
    password: Optional[str] = Field(default=None, min_length=8)


class RoleCreate(CamelModel):
    name: str = Field(min_length=1, max_length=100)
    description: Optional[str] = None
    permissions: Dict[str, bool] = Field(default_factory=dict)

    @field_validator("name")
    @classmethod
    def normalize_name(cls, v: str) -> str:
        return v.strip().lower()


class RolePermissionsUpdate(CamelModel):
    permissions: Dict[str, bool]
    replace: bool = False


class RoleAssign(CamelModel):
    user_id: int
    role_name: str

    @field_validator("role_name")
    @classmethod
    def normalize_role(cls, v: str) -> str:
        return v.strip().lower()
