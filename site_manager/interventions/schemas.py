"""Intervention Pydantic schemas."""


import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from site_manager.common.constants import InterventionPriority, InterventionStatus
from site_manager.sites.schemas import SiteBrief
from site_manager.users.schemas import UserBrief


# ── Requests ────────────────────────────────────────────────────────

class InterventionCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=200)
    description: str = Field(..., min_length=1, max_length=2000)
    priority: InterventionPriority = InterventionPriority.medium
    site_id: Optional[uuid.UUID] = None
    equipment_location: Optional[str] = Field(None, max_length=300)
    equipment_details: Optional[str] = Field(None, max_length=500)
    is_emergency: bool = False
    attachments: list[str] = Field(default_factory=list, max_length=10)


class StatusUpdate(BaseModel):
    status: InterventionStatus
    notes: Optional[str] = Field(None, max_length=500)
    workshop_notes: Optional[str] = Field(None, max_length=2000)
    estimated_completion_date: Optional[datetime] = None
    rejection_reason: Optional[str] = Field(None, max_length=500)


class AssignRequest(BaseModel):
    user_id: uuid.UUID
    notes: Optional[str] = Field(None, max_length=500)


class CommentCreate(BaseModel):
    text: str = Field(..., max_length=1000)


# ── Responses ───────────────────────────────────────────────────────

class LogEntryOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    action: str
    performed_by: Optional[UserBrief] = None
    notes: Optional[str] = None
    timestamp: datetime


class CommentOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user: UserBrief
    text: str
    is_from_workshop: bool
    created_at: datetime


class InterventionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    title: str
    description: str
    priority: InterventionPriority
    status: InterventionStatus
    requested_by: UserBrief
    site: Optional[SiteBrief] = None
    equipment_location: Optional[str] = None
    equipment_details: Optional[str] = None
    is_emergency: bool
    attachments: list[str] = []
    workshop_transferred_at: Optional[datetime] = None
    assigned_to: Optional[UserBrief] = None
    estimated_completion_date: Optional[datetime] = None
    actual_completion_date: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    workshop_notes: Optional[str] = None
    is_overdue: bool
    created_at: datetime
    updated_at: datetime


class InterventionDetail(InterventionOut):
    log: list[LogEntryOut] = []
    comments: list[CommentOut] = []


class InterventionStats(BaseModel):
    total: int
    by_status: dict[str, int]
    by_priority: dict[str, int]
    recent: list[InterventionOut]
