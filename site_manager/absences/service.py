"""Absence service layer — request lifecycle, history and calendar views."""

from __future__ import annotations

import calendar
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Iterable, Optional

from sqlalchemy import and_, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.absences.models import Absence
from site_manager.absences.schemas import (
    AbsenceBase,
    AbsenceHistory,
    AbsenceOut,
    CalendarDay,
    HistoryEntry,
    HistoryStats,
)
from site_manager.common.constants import (
    ADMIN_HR_ROLES,
    AbsenceRequestType,
    AbsenceStatus,
    UserRole,
)
from site_manager.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from site_manager.common.filters import apply_filters
from site_manager.common.pagination import PaginatedResponse, PaginationParams, paginate
from site_manager.realtime.manager import manager
from site_manager.users.models import User
from site_manager.users.schemas import UserBrief
from site_manager.users.service import UserService

logger = logging.getLogger(__name__)

ABSENT_COLOR = "#ff4444"
WORKING_COLOR = "#22c55e"

HISTORY_DAYS_BACK = 90
HISTORY_DAYS_AHEAD = 30
CALENDAR_MONTHS_WINDOW = 3

CONFIRMED_STATUSES = (AbsenceStatus.approved, AbsenceStatus.declared)
PARTIAL_DAY = Decimal("0.5")

# Fields an owner may change on their own pending request
OWNER_EDITABLE_FIELDS = frozenset({
    "type",
    "start_date",
    "end_date",
    "reason",
    "request_type",
    "is_full_day",
    "start_time",
    "end_time",
    "day_count",
})

# Non-nullable columns; explicit nulls sent for these are ignored
REQUIRED_FIELDS = frozenset({
    "type", "start_date", "end_date", "is_full_day", "day_count", "request_type", "status",
})


# ── Date helpers ────────────────────────────────────────────────────

def inclusive_day_span(start: date, end: date) -> int:
    return (end - start).days + 1


def shift_months(value: date, months: int) -> date:
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return date(year, month, day)


def iter_weekdays(start: date, end: date) -> Iterable[date]:
    current = start
    while current <= end:
        if current.weekday() < 5:
            yield current
        current += timedelta(days=1)


def build_calendar(
    absences: Iterable[Absence],
    window_start: date,
    window_end: date,
    *,
    clip_to_window: bool,
) -> list[CalendarDay]:
    """Mark absent weekdays red and remaining weekdays in the window green."""
    days: dict[date, CalendarDay] = {}
    for absence in absences:
        start, end = absence.start_date, absence.end_date
        if clip_to_window:
            start, end = max(start, window_start), min(end, window_end)
        for day in iter_weekdays(start, end):
            days[day] = CalendarDay(
                date=day,
                color=ABSENT_COLOR,
                absent=True,
                absence_id=absence.id,
                absence_type=absence.type,
                status=absence.status,
                reason=absence.reason,
            )

    for day in iter_weekdays(window_start, window_end):
        days.setdefault(day, CalendarDay(date=day, color=WORKING_COLOR))

    return [days[d] for d in sorted(days)]


def _is_reviewer(user: User) -> bool:
    return user.role in ADMIN_HR_ROLES


def _default_day_count(data: dict[str, Any]) -> Decimal:
    return Decimal(inclusive_day_span(data["start_date"], data["end_date"]))


def _time_errors(
    is_full_day: bool,
    start: date,
    end: date,
    start_time: Optional[str],
    end_time: Optional[str],
) -> dict[str, list[str]]:
    """Same time rules as ``AbsenceBase`` applied to an edited absence."""
    if not is_full_day and not (start_time and end_time):
        return {"start_time": ["start_time and end_time are required for partial-day absences"]}
    if start_time and end_time and start == end and end_time <= start_time:
        return {"end_time": ["end_time must be after start_time"]}
    return {}


# ── Service ─────────────────────────────────────────────────────────

class AbsenceService:
    """Business logic for absence requests."""

    @staticmethod
    async def get_absence(db: AsyncSession, absence_id: uuid.UUID) -> Absence:
        result = await db.execute(select(Absence).where(Absence.id == absence_id))
        absence = result.scalars().first()
        if absence is None:
            raise NotFoundException("Absence", absence_id)
        return absence

    @staticmethod
    def check_access(absence: Absence, user: User) -> None:
        if absence.user_id != user.id and not _is_reviewer(user):
            raise ForbiddenException("You don't have access to this absence request.")

    @staticmethod
    async def list_absences(
        db: AsyncSession,
        params: PaginationParams,
        *,
        filters: dict[str, Any],
    ) -> PaginatedResponse:
        query = apply_filters(select(Absence), Absence, filters)
        query = query.order_by(Absence.created_at.desc())
        return await paginate(db, query, params, schema=AbsenceOut)

    @staticmethod
    async def create_absence(
        db: AsyncSession,
        user: User,
        body: AbsenceBase,
        *,
        for_user_id: Optional[uuid.UUID] = None,
        declared: bool = False,
    ) -> Absence:
        data = body.model_dump(exclude={"user_id"})
        if data.get("day_count") is None:
            data["day_count"] = _default_day_count(data)

        absence = Absence(user_id=for_user_id or user.id, **data)
        if declared:
            absence.status = AbsenceStatus.declared
            absence.request_type = AbsenceRequestType.declaration
            absence.approved_by_id = user.id
            absence.approved_at = datetime.now(timezone.utc)
        else:
            absence.status = AbsenceStatus.pending

        db.add(absence)
        await db.flush()
        return await AbsenceService._reload(db, absence)

    @staticmethod
    async def _reload(db: AsyncSession, absence: Absence) -> Absence:
        await db.refresh(absence)
        return absence

    @staticmethod
    async def update_absence(
        db: AsyncSession,
        absence: Absence,
        user: User,
        changes: dict[str, Any],
    ) -> Absence:
        reviewer = _is_reviewer(user)
        if not reviewer:
            if absence.user_id != user.id:
                raise ForbiddenException("You can only edit your own absence requests.")
            if absence.status != AbsenceStatus.pending:
                raise ForbiddenException("Only pending absence requests can be edited.")
            changes = {k: v for k, v in changes.items() if k in OWNER_EDITABLE_FIELDS}
        changes = {k: v for k, v in changes.items() if v is not None or k not in REQUIRED_FIELDS}

        start = changes.get("start_date", absence.start_date)
        end = changes.get("end_date", absence.end_date)
        if end < start:
            raise ValidationException({"end_date": ["end_date must be on or after start_date"]})

        is_full_day = changes.get("is_full_day", absence.is_full_day)
        errors = _time_errors(
            is_full_day,
            start,
            end,
            changes.get("start_time", absence.start_time),
            changes.get("end_time", absence.end_time),
        )
        if errors:
            raise ValidationException(errors)

        span_changed = "start_date" in changes or "end_date" in changes
        if (span_changed or is_full_day != absence.is_full_day) and changes.get("day_count") is None:
            span = Decimal(inclusive_day_span(start, end))
            changes["day_count"] = span if is_full_day else span * PARTIAL_DAY

        for field, value in changes.items():
            setattr(absence, field, value)
        await db.flush()
        return await AbsenceService._reload(db, absence)

    @staticmethod
    async def review(
        db: AsyncSession,
        absence: Absence,
        reviewer: User,
        *,
        approve: bool,
        rejection_reason: Optional[str] = None,
    ) -> Absence:
        if absence.status != AbsenceStatus.pending:
            verb = "approved" if approve else "rejected"
            raise ValidationException(
                {"status": [f"Only pending absence requests can be {verb}"]}
            )

        absence.status = AbsenceStatus.approved if approve else AbsenceStatus.rejected
        absence.approved_by_id = reviewer.id
        absence.approved_at = datetime.now(timezone.utc)
        if not approve:
            absence.rejection_reason = rejection_reason or "No reason provided"
        await db.flush()
        return await AbsenceService._reload(db, absence)

    @staticmethod
    async def delete_absence(db: AsyncSession, absence: Absence, user: User) -> None:
        is_owner_pending = absence.user_id == user.id and absence.status == AbsenceStatus.pending
        if user.role != UserRole.administrator and not is_owner_pending:
            raise ForbiddenException("Only administrators or the owner of a pending request can delete it.")
        await db.delete(absence)
        await db.flush()

    # ── Views ───────────────────────────────────────────────────────

    @staticmethod
    async def _confirmed_for_user(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        window: Optional[tuple[date, date]] = None,
    ) -> list[Absence]:
        query = select(Absence).where(
            Absence.user_id == user_id,
            Absence.status.in_(CONFIRMED_STATUSES),
        )
        if window is not None:
            start, end = window
            query = query.where(
                or_(
                    Absence.start_date.between(start, end),
                    Absence.end_date.between(start, end),
                    and_(Absence.start_date <= start, Absence.end_date >= end),
                )
            )
        result = await db.execute(query.order_by(Absence.start_date.desc()))
        return list(result.scalars().all())

    @staticmethod
    async def history(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        today: Optional[date] = None,
    ) -> AbsenceHistory:
        target = await UserService.get_user(db, user_id)
        today = today or date.today()
        absences = await AbsenceService._confirmed_for_user(db, user_id)

        entries = [
            HistoryEntry(
                **AbsenceOut.model_validate(a).model_dump(),
                origin="admin" if a.request_type == AbsenceRequestType.declaration else "user",
            )
            for a in absences
        ]
        stats = HistoryStats(
            total_absences=len(absences),
            total_days=sum((a.day_count for a in absences), Decimal("0")),
            this_month=sum(
                1 for a in absences
                if a.start_date.year == today.year and a.start_date.month == today.month
            ),
        )
        days = build_calendar(
            absences,
            today - timedelta(days=HISTORY_DAYS_BACK),
            today + timedelta(days=HISTORY_DAYS_AHEAD),
            clip_to_window=False,
        )
        return AbsenceHistory(
            user=UserBrief.model_validate(target),
            absences=entries,
            stats=stats,
            calendar=days,
        )

    @staticmethod
    async def calendar(
        db: AsyncSession,
        user_id: uuid.UUID,
        *,
        start: Optional[date] = None,
        end: Optional[date] = None,
    ) -> list[CalendarDay]:
        today = date.today()
        start = start or shift_months(today, -CALENDAR_MONTHS_WINDOW)
        end = end or shift_months(today, CALENDAR_MONTHS_WINDOW)
        if end < start:
            raise ValidationException({"end_date": ["end_date must be on or after start_date"]})
        absences = await AbsenceService._confirmed_for_user(db, user_id, window=(start, end))
        return build_calendar(absences, start, end, clip_to_window=True)

    # ── Notifications ───────────────────────────────────────────────

    @staticmethod
    async def notify_new_request(db: AsyncSession, absence: Absence) -> None:
        """Push ``absence:new`` to every active reviewer."""
        reviewers = await UserService.list_active_by_role(db, *ADMIN_HR_ROLES)
        payload = {
            "absence": AbsenceOut.model_validate(absence).model_dump(),
            "message": f"New absence request from {absence.user.full_name}",
        }
        await manager.emit_to_users((r.id for r in reviewers), "absence:new", payload)

    @staticmethod
    async def notify_reviewed(absence: Absence) -> None:
        event = "absence:approved" if absence.status == AbsenceStatus.approved else "absence:rejected"
        payload = {
            "absence": AbsenceOut.model_validate(absence).model_dump(),
            "message": f"Your absence request has been {absence.status.value}",
        }
        await manager.emit_to_user(absence.user_id, event, payload)
