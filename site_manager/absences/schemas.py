"""Absence Pydantic schemas."""


import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator

from site_manager.common.constants import AbsenceRequestType, AbsenceStatus, AbsenceType
from site_manager.users.schemas import UserBrief

_TIME_PATTERN = r"^([01]\d|2[0-3]):[0-5]\d$"


class AbsenceBase(BaseModel):
    type: AbsenceType
    start_date: date
    end_date: date
    is_full_day: bool = True
    start_time: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    day_count: Optional[Decimal] = Field(None, ge=Decimal("0.5"))
    reason: Optional[str] = Field(None, max_length=500)
    request_type: AbsenceRequestType = AbsenceRequestType.request

    @model_validator(mode="after")
    def _check_range(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must be on or after start_date")
        if not self.is_full_day and not (self.start_time and self.end_time):
            raise ValueError("start_time and end_time are required for partial-day absences")
        if self.start_time and self.end_time and self.start_date == self.end_date:
            if self.end_time <= self.start_time:
                raise ValueError("end_time must be after start_time")
        return self


class AbsenceCreate(AbsenceBase):
    pass


class AbsenceDeclare(AbsenceBase):
    user_id: uuid.UUID
    request_type: AbsenceRequestType = AbsenceRequestType.declaration


class AbsenceUpdate(BaseModel):
    type: Optional[AbsenceType] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    is_full_day: Optional[bool] = None
    start_time: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    end_time: Optional[str] = Field(None, pattern=_TIME_PATTERN)
    day_count: Optional[Decimal] = Field(None, ge=Decimal("0.5"))
    reason: Optional[str] = Field(None, max_length=500)
    request_type: Optional[AbsenceRequestType] = None
    # Reviewer-only fields
    status: Optional[AbsenceStatus] = None
    rejection_reason: Optional[str] = Field(None, max_length=500)


class RejectRequest(BaseModel):
    rejection_reason: Optional[str] = Field(None, max_length=500)


class AbsenceOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    user_id: uuid.UUID
    user: UserBrief
    type: AbsenceType
    start_date: date
    end_date: date
    is_full_day: bool
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    day_count: Decimal
    reason: Optional[str] = None
    status: AbsenceStatus
    request_type: AbsenceRequestType
    approved_by: Optional[UserBrief] = None
    approved_at: Optional[datetime] = None
    rejection_reason: Optional[str] = None
    created_at: datetime
    updated_at: datetime


class HistoryEntry(AbsenceOut):
    origin: Literal["admin", "user"]


class HistoryStats(BaseModel):
    total_absences: int
    total_days: Decimal
    this_month: int


class CalendarDay(BaseModel):
    date: date
    color: str
    absent: bool = False
    absence_id: Optional[uuid.UUID] = None
    absence_type: Optional[AbsenceType] = None
    status: Optional[AbsenceStatus] = None
    reason: Optional[str] = None


class AbsenceHistory(BaseModel):
    user: UserBrief
    absences: list[HistoryEntry]
    stats: HistoryStats
    calendar: list[CalendarDay]

