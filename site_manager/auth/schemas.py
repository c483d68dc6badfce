"""Auth Pydantic schemas for request / response validation."""


import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field

from site_manager.common.constants import EmailProvider, UserRole


# ── Requests ────────────────────────────────────────────────────────

class RegisterRequest(BaseModel):
    first_name: str = Field(..., min_length=1, max_length=50)
    last_name: str = Field(..., min_length=1, max_length=50)
    email: EmailStr
    password: str = Field(..., min_length=6, max_length=128)
    role: UserRole = UserRole.worker
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=255)


class VerifyOtpRequest(BaseModel):
    email: EmailStr
    otp: str = Field(..., min_length=6, max_length=6, pattern=r"^\d{6}$")


class ResendOtpRequest(BaseModel):
    email: EmailStr


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)


class ChangePasswordRequest(BaseModel):
    current_password: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=6, max_length=128)


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=255)
    profile_image: Optional[str] = Field(None, max_length=500)


# ── Embedded / Shared ──────────────────────────────────────────────

class UserInfo(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    last_name: str
    full_name: str
    email: str
    role: UserRole
    phone: Optional[str] = None
    address: Optional[str] = None
    profile_image: Optional[str] = None
    email_provider: EmailProvider
    is_active: bool
    last_login: Optional[datetime] = None
    assigned_site_ids: list[uuid.UUID] = []


# ── Responses ───────────────────────────────────────────────────────

class RegisterResponse(BaseModel):
    email: str
    expires_in: str
    attempts_left: int


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int
    user: UserInfo


class MessageResponse(BaseModel):
    message: str
