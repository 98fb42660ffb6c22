from pydantic import EmailStr, Field
from typing import Optional

from .common import CamelModel


class RegisterRequest(CamelModel):
    first_name: str = Field(min_length=1, max_length=100)
    last_name: Optional[str] = Field(default=None, max_length=100)
    email: EmailStr
    password: str = Field(min_length=8)
    phone_number: Optional[str] = None


class LoginRequest(CamelModel):
    email: EmailStr
    password: str


class EmailRequest(CamelModel):
    email: EmailStr


class VerifyEmailRequest(CamelModel):
    email: EmailStr
    otp: str = Field(min_length=1)


class ResetPasswordRequest(CamelModel):
    email: EmailStr
    otp: str = Field(min_length=1)
    password: str = Field(min_length=8)
