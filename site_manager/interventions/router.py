"""Interventions router — workshop request submission and follow-up.

NOTE: ``/stats`` is declared before ``/{request_id}``.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.auth.dependencies import get_current_user, require_role
from site_manager.common.audit import client_info, create_audit_entry
from site_manager.common.constants import (
    INTERVENTION_SUBMITTER_ROLES,
    InterventionPriority,
    InterventionStatus,
    UserRole,
)
from site_manager.common.pagination import PaginatedResponse, PaginationParams, pagination
from site_manager.database import get_db
from site_manager.interventions.schemas import (
    AssignRequest,
    CommentCreate,
    CommentOut,
    InterventionCreate,
    InterventionDetail,
    InterventionOut,
    InterventionStats,
    StatusUpdate,
)
from site_manager.interventions.service import InterventionService
from site_manager.interventions.workshop import announce_new_request, email_workshop_team
from site_manager.users.models import User

router = APIRouter(prefix="", tags=["interventions"])

_WORKSHOP_ROLES = (UserRole.workshop, UserRole.administrator)


# ── POST / — submit a request ────────────────────────────────────────

@router.post("/", response_model=InterventionDetail, status_code=201)
async def create_intervention(
    body: InterventionCreate,
    user: User = Depends(require_role(*INTERVENTION_SUBMITTER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    intervention = await InterventionService.create_request(db, user, body)
    await db.commit()
    await email_workshop_team(db, intervention, user)
    await announce_new_request(db, intervention)
    return InterventionDetail.model_validate(intervention)


# ── GET / ────────────────────────────────────────────────────────────

@router.get("/", response_model=PaginatedResponse[InterventionOut])
async def list_interventions(
    status: Optional[InterventionStatus] = Query(None),
    priority: Optional[InterventionPriority] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await InterventionService.list_requests(
        db, user, params, status=status, priority=priority, search=search,
    )


# ── GET /stats ───────────────────────────────────────────────────────

@router.get("/stats", response_model=InterventionStats)
async def intervention_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await InterventionService.stats(db, user)


# ── GET /{request_id} ────────────────────────────────────────────────

@router.get("/{request_id}", response_model=InterventionDetail)
async def get_intervention(
    request_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    intervention = await InterventionService.get_request(db, request_id)
    InterventionService.check_access(intervention, user)
    return InterventionDetail.model_validate(intervention)


# ── PUT /{request_id}/status ─────────────────────────────────────────

@router.put("/{request_id}/status", response_model=InterventionDetail)
async def update_intervention_status(
    request_id: uuid.UUID,
    body: StatusUpdate,
    request: Request,
    user: User = Depends(require_role(*_WORKSHOP_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    intervention = await InterventionService.get_request(db, request_id)
    previous = intervention.status
    intervention = await InterventionService.update_status(db, intervention, user, body)
    ip, user_agent = client_info(request)
    await create_audit_entry(
        db,
        action="status_update",
        entity_type="intervention_request",
        entity_id=intervention.id,
        actor_id=user.id,
        old_values={"status": previous.value},
        new_values={"status": intervention.status.value},
        ip_address=ip,
        user_agent=user_agent,
    )
    await db.commit()
    await InterventionService.notify_status_change(intervention, user)
    return InterventionDetail.model_validate(intervention)


# ── PUT /{request_id}/assign ─────────────────────────────────────────

@router.put("/{request_id}/assign", response_model=InterventionDetail)
async def assign_intervention(
    request_id: uuid.UUID,
    body: AssignRequest,
    user: User = Depends(require_role(*_WORKSHOP_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    intervention = await InterventionService.get_request(db, request_id)
    intervention = await InterventionService.assign(
        db, intervention, user, body.user_id, body.notes,
    )
    await db.commit()
    await InterventionService.notify_assignment(intervention, user)
    return InterventionDetail.model_validate(intervention)


# ── POST /{request_id}/comments ──────────────────────────────────────

@router.post("/{request_id}/comments", response_model=CommentOut, status_code=201)
async def add_intervention_comment(
    request_id: uuid.UUID,
    body: CommentCreate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    intervention = await InterventionService.get_request(db, request_id)
    InterventionService.check_access(intervention, user)
    comment = await InterventionService.add_comment(db, intervention, user, body.text)
    await db.commit()
    await InterventionService.notify_comment(intervention, comment, user)
    return CommentOut.model_validate(comment)
