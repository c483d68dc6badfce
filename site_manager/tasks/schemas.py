"""Task Pydantic schemas."""


import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from site_manager.common.constants import TaskCategory, TaskPriority, TaskStatus
from site_manager.sites.schemas import SiteBrief
from site_manager.users.schemas import UserBrief


class Material(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    quantity: Decimal = Field(..., ge=0)
    unit: str = Field(..., min_length=1, max_length=20)
    cost: Optional[Decimal] = Field(None, ge=0)


class TaskBase(BaseModel):
    title: str = Field(..., min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    status: TaskStatus = TaskStatus.not_started
    priority: TaskPriority = TaskPriority.medium
    category: TaskCategory = TaskCategory.other
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    estimated_hours: Optional[Decimal] = Field(None, ge=0)
    location: Optional[str] = Field(None, max_length=100)
    tags: list[str] = []
    materials: list[Material] = []


class TaskCreate(TaskBase):
    site_id: uuid.UUID
    assigned_user_ids: list[uuid.UUID] = []

    @model_validator(mode="after")
    def _check_dates(self) -> "TaskCreate":
        if self.start_date and self.due_date and self.due_date < self.start_date:
            raise ValueError("due_date must be on or after start_date")
        return self


class TaskUpdate(BaseModel):
    title: Optional[str] = Field(None, min_length=1, max_length=100)
    description: Optional[str] = Field(None, max_length=1000)
    status: Optional[TaskStatus] = None
    priority: Optional[TaskPriority] = None
    category: Optional[TaskCategory] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    estimated_hours: Optional[Decimal] = Field(None, ge=0)
    actual_hours: Optional[Decimal] = Field(None, ge=0)
    location: Optional[str] = Field(None, max_length=100)
    tags: Optional[list[str]] = None
    materials: Optional[list[Material]] = None


class TaskStatusUpdate(BaseModel):
    status: TaskStatus
    actual_hours: Optional[Decimal] = Field(None, ge=0)


class TaskAssignRequest(BaseModel):
    user_ids: list[uuid.UUID]


class TaskOut(TaskBase):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    site: SiteBrief
    created_by: UserBrief
    assigned_users: list[UserBrief] = []
    completed_date: Optional[datetime] = None
    actual_hours: Optional[Decimal] = None
    is_overdue: bool
    duration_days: Optional[int] = None
    created_at: datetime
    updated_at: datetime
