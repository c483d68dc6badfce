"""Dashboard service — read-only aggregation queries across modules.

Counts run at DB level; every figure is scoped to what the caller may see.
"""

from __future__ import annotations

from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.absences.models import Absence
from site_manager.auth.dependencies import is_admin_or_hr
from site_manager.common.constants import (
    CLOSED_TASK_STATUSES,
    AbsenceStatus,
    InterventionStatus,
    SiteStatus,
)
from site_manager.conversations.service import ConversationService
from site_manager.dashboard.schemas import DashboardStatsResponse, SiteTotals
from site_manager.interventions.models import InterventionRequest
from site_manager.interventions.service import visible_to
from site_manager.sites.models import Site
from site_manager.tasks.models import Task, task_assignments
from site_manager.tasks.service import can_manage_tasks
from site_manager.users.models import User

CLOSED_INTERVENTION_STATUSES = (
    InterventionStatus.completed,
    InterventionStatus.cancelled,
    InterventionStatus.rejected,
)


async def _count(db: AsyncSession, query: Select) -> int:
    count_q = select(func.count()).select_from(query.subquery())
    return (await db.execute(count_q)).scalar_one()


class DashboardService:
    """Async dashboard aggregation queries."""

    @staticmethod
    async def get_stats(db: AsyncSession, user: User) -> DashboardStatsResponse:
        total_sites = await _count(db, select(Site.id))
        active_sites = await _count(db, select(Site.id).where(Site.status == SiteStatus.active))

        absences_q = select(Absence.id).where(Absence.status == AbsenceStatus.pending)
        if not is_admin_or_hr(user):
            absences_q = absences_q.where(Absence.user_id == user.id)

        tasks_q = select(Task.id).where(Task.status.not_in(CLOSED_TASK_STATUSES))
        if not can_manage_tasks(user):
            tasks_q = tasks_q.join(
                task_assignments, task_assignments.c.task_id == Task.id,
            ).where(task_assignments.c.user_id == user.id)

        interventions_q = visible_to(
            select(InterventionRequest.id).where(
                InterventionRequest.status.not_in(CLOSED_INTERVENTION_STATUSES)
            ),
            user,
        )

        return DashboardStatsResponse(
            sites=SiteTotals(total=total_sites, active=active_sites),
            pending_absences=await _count(db, absences_q),
            active_tasks=await _count(db, tasks_q),
            open_interventions=await _count(db, interventions_q),
            unread_messages=await ConversationService.unread_total(db, user.id),
        )
