"""Site Pydantic schemas."""


import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

from site_manager.common.constants import SitePriority, SiteStatus
from site_manager.users.schemas import UserBrief


class SiteBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    address: str = Field(..., min_length=1, max_length=200)
    city: str = Field(..., min_length=1, max_length=50)
    postal_code: str = Field(..., pattern=r"^\d{5}$")
    start_date: date
    expected_end_date: date
    status: SiteStatus = SiteStatus.planning
    budget: Decimal = Field(..., ge=0)
    priority: SitePriority = SitePriority.medium
    client_name: Optional[str] = Field(None, max_length=100)
    client_contact: Optional[str] = Field(None, max_length=30)
    client_email: Optional[EmailStr] = None


class SiteCreate(SiteBase):
    project_manager_id: uuid.UUID
    assigned_user_ids: list[uuid.UUID] = []

    @model_validator(mode="after")
    def _check_dates(self) -> "SiteCreate":
        if self.expected_end_date < self.start_date:
            raise ValueError("expected_end_date must be on or after start_date")
        return self


class SiteUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=500)
    address: Optional[str] = Field(None, min_length=1, max_length=200)
    city: Optional[str] = Field(None, min_length=1, max_length=50)
    postal_code: Optional[str] = Field(None, pattern=r"^\d{5}$")
    start_date: Optional[date] = None
    expected_end_date: Optional[date] = None
    actual_end_date: Optional[date] = None
    status: Optional[SiteStatus] = None
    budget: Optional[Decimal] = Field(None, ge=0)
    current_cost: Optional[Decimal] = Field(None, ge=0)
    priority: Optional[SitePriority] = None
    project_manager_id: Optional[uuid.UUID] = None
    client_name: Optional[str] = Field(None, max_length=100)
    client_contact: Optional[str] = Field(None, max_length=30)
    client_email: Optional[EmailStr] = None


class AssignUserRequest(BaseModel):
    user_id: uuid.UUID


class SiteBrief(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    name: str
    city: str
    status: SiteStatus


class SiteOut(SiteBase):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    actual_end_date: Optional[date] = None
    current_cost: Decimal
    client_email: Optional[str] = None
    project_manager: UserBrief
    assigned_users: list[UserBrief] = []
    created_at: datetime
    updated_at: datetime
