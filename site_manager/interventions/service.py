"""Intervention service layer — submission, role-scoped queries, workshop updates."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Select, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.common.constants import (
    INTERVENTION_STATUS_LABELS,
    WORKSHOP_VISIBLE_STATUSES,
    InterventionPriority,
    InterventionStatus,
    UserRole,
)
from site_manager.common.exceptions import (
    BadRequestException,
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from site_manager.common.filters import apply_filters, apply_search
from site_manager.common.pagination import PaginatedResponse, PaginationParams, paginate
from site_manager.interventions.models import InterventionComment, InterventionRequest
from site_manager.interventions.schemas import (
    CommentOut,
    InterventionCreate,
    InterventionOut,
    InterventionStats,
    StatusUpdate,
)
from site_manager.interventions.workshop import add_log_entry, transfer_to_workshop
from site_manager.realtime.manager import manager
from site_manager.sites.models import Site
from site_manager.users.models import User

logger = logging.getLogger(__name__)

_OWN_REQUESTS_ONLY = (UserRole.worker, UserRole.conductor_of_work)


def visible_to(query: Select, user: User) -> Select:
    """Restrict *query* to the requests *user* may list."""
    if user.role in _OWN_REQUESTS_ONLY:
        return query.where(InterventionRequest.requested_by_id == user.id)
    if user.role == UserRole.project_manager:
        managed_sites = select(Site.id).where(Site.project_manager_id == user.id)
        return query.where(
            or_(
                InterventionRequest.requested_by_id == user.id,
                InterventionRequest.site_id.in_(managed_sites),
            )
        )
    if user.role == UserRole.workshop:
        return query.where(InterventionRequest.status.in_(WORKSHOP_VISIBLE_STATUSES))
    return query


class InterventionService:
    """Business logic for intervention requests."""

    @staticmethod
    async def get_request(db: AsyncSession, request_id: uuid.UUID) -> InterventionRequest:
        result = await db.execute(
            select(InterventionRequest)
            .where(InterventionRequest.id == request_id)
            .execution_options(populate_existing=True)
        )
        request = result.scalars().unique().first()
        if request is None:
            raise NotFoundException("Intervention request", request_id)
        return request

    @staticmethod
    def check_access(request: InterventionRequest, user: User) -> None:
        if user.role in (UserRole.administrator, UserRole.workshop):
            return
        if request.requested_by_id == user.id:
            return
        if (
            user.role == UserRole.project_manager
            and request.site is not None
            and request.site.project_manager_id == user.id
        ):
            return
        raise ForbiddenException("Not authorized to access this intervention request.")

    @staticmethod
    async def create_request(
        db: AsyncSession,
        user: User,
        body: InterventionCreate,
    ) -> InterventionRequest:
        site: Optional[Site] = None
        if body.site_id is not None:
            site = (await db.execute(select(Site).where(Site.id == body.site_id))).scalars().first()
            if site is None:
                raise ValidationException({"site_id": ["Site not found."]})

        request = InterventionRequest(
            **body.model_dump(),
            status=InterventionStatus.submitted,
            requested_by_id=user.id,
            requested_by=user,
            site=site,
            log=[],
            comments=[],
        )
        add_log_entry(
            request,
            "Request Submitted",
            user,
            f"Submitted by {user.full_name} ({user.role.value})",
        )
        transfer_to_workshop(request, user)
        db.add(request)
        await db.flush()
        return await InterventionService.get_request(db, request.id)

    @staticmethod
    async def list_requests(
        db: AsyncSession,
        user: User,
        params: PaginationParams,
        *,
        status: Optional[InterventionStatus] = None,
        priority: Optional[InterventionPriority] = None,
        search: Optional[str] = None,
    ) -> PaginatedResponse:
        query = visible_to(select(InterventionRequest), user)
        query = apply_filters(query, InterventionRequest, {"status": status, "priority": priority})
        query = apply_search(
            query, InterventionRequest, search,
            ["title", "description", "equipment_location"],
        )
        query = query.order_by(
            InterventionRequest.is_emergency.desc(),
            InterventionRequest.created_at.desc(),
        )
        return await paginate(db, query, params, schema=InterventionOut)

    @staticmethod
    async def update_status(
        db: AsyncSession,
        request: InterventionRequest,
        actor: User,
        body: StatusUpdate,
    ) -> InterventionRequest:
        request.status = body.status
        if body.workshop_notes is not None:
            request.workshop_notes = body.workshop_notes
        if body.estimated_completion_date is not None:
            request.estimated_completion_date = body.estimated_completion_date
        if body.status == InterventionStatus.completed:
            request.actual_completion_date = datetime.now(timezone.utc)
        if body.status == InterventionStatus.rejected:
            request.rejection_reason = body.rejection_reason or body.notes

        label = INTERVENTION_STATUS_LABELS[body.status]
        add_log_entry(
            request,
            f"Status Updated to {label}",
            actor,
            body.notes or "Status updated by workshop",
        )
        await db.flush()
        return await InterventionService.get_request(db, request.id)

    @staticmethod
    async def assign(
        db: AsyncSession,
        request: InterventionRequest,
        actor: User,
        assignee_id: uuid.UUID,
        notes: Optional[str] = None,
    ) -> InterventionRequest:
        assignee = (await db.execute(select(User).where(User.id == assignee_id))).scalars().first()
        if assignee is None or assignee.role != UserRole.workshop or not assignee.is_active:
            raise ValidationException({"user_id": ["Invalid workshop member assignment"]})

        request.workshop_assigned_to_id = assignee.id
        request.assigned_to = assignee
        request.status = InterventionStatus.in_progress
        add_log_entry(
            request,
            "Assigned to Workshop Member",
            actor,
            notes or f"Assigned to {assignee.full_name}",
        )
        await db.flush()
        return await InterventionService.get_request(db, request.id)

    @staticmethod
    async def add_comment(
        db: AsyncSession,
        request: InterventionRequest,
        actor: User,
        text: str,
    ) -> InterventionComment:
        text = text.strip()
        if not text:
            raise BadRequestException("Comment text is required", code="EMPTY_COMMENT")

        comment = InterventionComment(
            user_id=actor.id,
            user=actor,
            text=text,
            is_from_workshop=actor.role == UserRole.workshop,
        )
        request.comments.append(comment)
        add_log_entry(request, "Comment Added", actor, text[:100])
        await db.flush()
        return comment

    @staticmethod
    async def stats(db: AsyncSession, user: User) -> InterventionStats:
        base = visible_to(select(InterventionRequest), user).subquery()

        status_rows = await db.execute(
            select(base.c.status, func.count()).group_by(base.c.status)
        )
        priority_rows = await db.execute(
            select(base.c.priority, func.count()).group_by(base.c.priority)
        )
        by_status = {s.value: 0 for s in InterventionStatus}
        for status, count in status_rows.all():
            by_status[InterventionStatus(status).value] = count
        by_priority = {p.value: 0 for p in InterventionPriority}
        for priority, count in priority_rows.all():
            by_priority[InterventionPriority(priority).value] = count

        recent_result = await db.execute(
            visible_to(select(InterventionRequest), user)
            .order_by(InterventionRequest.created_at.desc())
            .limit(5)
        )
        recent = [
            InterventionOut.model_validate(r)
            for r in recent_result.scalars().unique().all()
        ]
        return InterventionStats(
            total=sum(by_status.values()),
            by_status=by_status,
            by_priority=by_priority,
            recent=recent,
        )

    # ── Notifications ───────────────────────────────────────────────

    @staticmethod
    async def notify_status_change(request: InterventionRequest, actor: User) -> None:
        payload = {
            "request": InterventionOut.model_validate(request).model_dump(),
            "status": request.status.value,
            "updated_by": {"id": actor.id, "name": actor.full_name},
            "message": f"Intervention request '{request.title}' is now "
                       f"{INTERVENTION_STATUS_LABELS[request.status]}",
        }
        await manager.emit_to_user(request.requested_by_id, "intervention:statusUpdate", payload)
        if request.workshop_assigned_to_id and request.workshop_assigned_to_id != actor.id:
            await manager.emit_to_user(request.workshop_assigned_to_id, "intervention:assigned", payload)

    @staticmethod
    async def notify_assignment(request: InterventionRequest, actor: User) -> None:
        payload = {
            "request": InterventionOut.model_validate(request).model_dump(),
            "assigned_by": {"id": actor.id, "name": actor.full_name},
            "message": f"You have been assigned to '{request.title}'",
        }
        await manager.emit_to_user(request.workshop_assigned_to_id, "intervention:assigned", payload)

    @staticmethod
    async def notify_comment(
        request: InterventionRequest,
        comment: InterventionComment,
        actor: User,
    ) -> None:
        payload = {
            "request_id": request.id,
            "comment": CommentOut.model_validate(comment).model_dump(),
            "message": f"{actor.full_name} commented on '{request.title}'",
        }
        recipients = {request.requested_by_id, request.workshop_assigned_to_id} - {None, actor.id}
        await manager.emit_to_users(recipients, "intervention:comment", payload)
