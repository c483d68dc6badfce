"""Dashboard router — read-only counters for the home screen."""

from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.auth.dependencies import get_current_user
from site_manager.dashboard.schemas import DashboardStatsResponse
from site_manager.dashboard.service import DashboardService
from site_manager.database import get_db
from site_manager.users.models import User

router = APIRouter()


# ── GET /stats ──────────────────────────────────────────────────────

@router.get("/stats", response_model=DashboardStatsResponse)
async def dashboard_stats(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """Site totals, pending absences, active tasks, open interventions and unread messages."""
    return await DashboardService.get_stats(db, user)
