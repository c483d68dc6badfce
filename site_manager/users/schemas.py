"""User Pydantic schemas."""


import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from site_manager.auth.schemas import UserInfo
from site_manager.common.constants import UserRole


class UserBrief(BaseModel):
    """Compact user embedded in other responses."""

    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    first_name: str
    last_name: str
    email: str
    role: UserRole
    profile_image: Optional[str] = None


class ContactOut(UserBrief):
    phone: Optional[str] = None
    last_login: Optional[datetime] = None


class UserDetail(UserInfo):
    created_at: datetime
    updated_at: datetime


class UserUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=1, max_length=50)
    last_name: Optional[str] = Field(None, min_length=1, max_length=50)
    phone: Optional[str] = Field(None, max_length=30)
    address: Optional[str] = Field(None, max_length=255)
    is_active: Optional[bool] = None
    role: Optional[UserRole] = None
    assigned_site_ids: Optional[list[uuid.UUID]] = None


class UserStatusUpdate(BaseModel):
    is_active: bool
