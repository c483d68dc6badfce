"""Absences router — requests, declarations, review, history and calendar.

NOTE: static routes (``/my-absences``, ``/pending``, ``/declare``, ...) are
declared before ``/{absence_id}``.
"""

from __future__ import annotations

import uuid
from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.absences.schemas import (
    AbsenceCreate,
    AbsenceDeclare,
    AbsenceHistory,
    AbsenceOut,
    AbsenceUpdate,
    CalendarDay,
    RejectRequest,
)
from site_manager.absences.service import AbsenceService
from site_manager.auth.dependencies import get_current_user, is_admin_or_hr, require_role
from site_manager.common.audit import client_info, create_audit_entry
from site_manager.common.constants import ADMIN_HR_ROLES, AbsenceStatus, AbsenceType
from site_manager.common.exceptions import ForbiddenException
from site_manager.common.pagination import PaginatedResponse, PaginationParams, pagination
from site_manager.database import get_db
from site_manager.users.models import User
from site_manager.users.service import UserService

router = APIRouter(prefix="", tags=["absences"])


def _ensure_self_or_reviewer(user: User, user_id: uuid.UUID) -> None:
    if user.id != user_id and not is_admin_or_hr(user):
        raise ForbiddenException("Not authorized to view this user's absences.")


# ── GET / — all absences (Admin/HR) ──────────────────────────────────

@router.get("/", response_model=PaginatedResponse[AbsenceOut])
async def list_absences(
    status: Optional[AbsenceStatus] = Query(None),
    type: Optional[AbsenceType] = Query(None),
    user_id: Optional[uuid.UUID] = Query(None),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(require_role(*ADMIN_HR_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await AbsenceService.list_absences(
        db,
        params,
        filters={
            "status": status,
            "type": type,
            "user_id": user_id,
            "start_date__from": start_date,
            "end_date__to": end_date,
        },
    )


# ── GET /my-absences ─────────────────────────────────────────────────

@router.get("/my-absences", response_model=PaginatedResponse[AbsenceOut])
async def my_absences(
    status: Optional[AbsenceStatus] = Query(None),
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await AbsenceService.list_absences(
        db, params, filters={"user_id": user.id, "status": status},
    )


# ── GET /pending (Admin/HR) ──────────────────────────────────────────

@router.get("/pending", response_model=PaginatedResponse[AbsenceOut])
async def pending_absences(
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(require_role(*ADMIN_HR_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await AbsenceService.list_absences(
        db, params, filters={"status": AbsenceStatus.pending},
    )


# ── GET /user/{user_id} ──────────────────────────────────────────────

@router.get("/user/{user_id}", response_model=PaginatedResponse[AbsenceOut])
async def user_absences(
    user_id: uuid.UUID,
    status: Optional[AbsenceStatus] = Query(None),
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    _ensure_self_or_reviewer(user, user_id)
    return await AbsenceService.list_absences(
        db, params, filters={"user_id": user_id, "status": status},
    )


# ── GET /history/{user_id} ───────────────────────────────────────────

@router.get("/history/{user_id}", response_model=AbsenceHistory)
async def absence_history(
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    _ensure_self_or_reviewer(user, user_id)
    return await AbsenceService.history(db, user_id)


# ── GET /calendar/{user_id} ──────────────────────────────────────────

@router.get("/calendar/{user_id}", response_model=list[CalendarDay])
async def absence_calendar(
    user_id: uuid.UUID,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    _ensure_self_or_reviewer(user, user_id)
    return await AbsenceService.calendar(db, user_id, start=start_date, end=end_date)


# ── POST / — submit a request ────────────────────────────────────────

@router.post("/", response_model=AbsenceOut, status_code=201)
async def create_absence(
    body: AbsenceCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    absence = await AbsenceService.create_absence(db, user, body)
    await db.commit()
    await AbsenceService.notify_new_request(db, absence)
    return AbsenceOut.model_validate(absence)


# ── POST /declare — record an absence on someone's behalf ────────────

@router.post("/declare", response_model=AbsenceOut, status_code=201)
async def declare_absence(
    body: AbsenceDeclare,
    request: Request,
    user: User = Depends(require_role(*ADMIN_HR_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    await UserService.get_user(db, body.user_id)
    absence = await AbsenceService.create_absence(
        db, user, body, for_user_id=body.user_id, declared=True,
    )
    ip, user_agent = client_info(request)
    await create_audit_entry(
        db,
        action="declare",
        entity_type="absence",
        entity_id=absence.id,
        actor_id=user.id,
        new_values={"user_id": str(body.user_id), "status": absence.status.value},
        ip_address=ip,
        user_agent=user_agent,
    )
    return AbsenceOut.model_validate(absence)


# ── GET /{absence_id} ────────────────────────────────────────────────

@router.get("/{absence_id}", response_model=AbsenceOut)
async def get_absence(
    absence_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    absence = await AbsenceService.get_absence(db, absence_id)
    AbsenceService.check_access(absence, user)
    return AbsenceOut.model_validate(absence)


# ── PUT /{absence_id} ────────────────────────────────────────────────

@router.put("/{absence_id}", response_model=AbsenceOut)
async def update_absence(
    absence_id: uuid.UUID,
    body: AbsenceUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    absence = await AbsenceService.get_absence(db, absence_id)
    absence = await AbsenceService.update_absence(
        db, absence, user, body.model_dump(exclude_unset=True),
    )
    return AbsenceOut.model_validate(absence)


# ── PUT /{absence_id}/approve ────────────────────────────────────────

@router.put("/{absence_id}/approve", response_model=AbsenceOut)
async def approve_absence(
    absence_id: uuid.UUID,
    request: Request,
    user: User = Depends(require_role(*ADMIN_HR_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    absence = await AbsenceService.get_absence(db, absence_id)
    absence = await AbsenceService.review(db, absence, user, approve=True)
    ip, user_agent = client_info(request)
    await create_audit_entry(
        db,
        action="approve",
        entity_type="absence",
        entity_id=absence.id,
        actor_id=user.id,
        old_values={"status": AbsenceStatus.pending.value},
        new_values={"status": absence.status.value},
        ip_address=ip,
        user_agent=user_agent,
    )
    await db.commit()
    await AbsenceService.notify_reviewed(absence)
    return AbsenceOut.model_validate(absence)


# ── PUT /{absence_id}/reject ─────────────────────────────────────────

@router.put("/{absence_id}/reject", response_model=AbsenceOut)
async def reject_absence(
    absence_id: uuid.UUID,
    request: Request,
    body: Optional[RejectRequest] = None,
    user: User = Depends(require_role(*ADMIN_HR_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    absence = await AbsenceService.get_absence(db, absence_id)
    absence = await AbsenceService.review(
        db,
        absence,
        user,
        approve=False,
        rejection_reason=body.rejection_reason if body else None,
    )
    ip, user_agent = client_info(request)
    await create_audit_entry(
        db,
        action="reject",
        entity_type="absence",
        entity_id=absence.id,
        actor_id=user.id,
        old_values={"status": AbsenceStatus.pending.value},
        new_values={
            "status": absence.status.value,
            "rejection_reason": absence.rejection_reason,
        },
        ip_address=ip,
        user_agent=user_agent,
    )
    await db.commit()
    await AbsenceService.notify_reviewed(absence)
    return AbsenceOut.model_validate(absence)


# ── DELETE /{absence_id} ─────────────────────────────────────────────

@router.delete("/{absence_id}")
async def delete_absence(
    absence_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    absence = await AbsenceService.get_absence(db, absence_id)
    await AbsenceService.delete_absence(db, absence, user)
    return {"message": "Absence deleted successfully"}
