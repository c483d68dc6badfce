"""Dashboard Pydantic v2 schemas."""

from __future__ import annotations

from pydantic import BaseModel, Field


class SiteTotals(BaseModel):
    total: int = Field(..., description="All construction sites")
    active: int = Field(..., description="Sites with status=active")


class DashboardStatsResponse(BaseModel):
    """Headline counters for the home screen, scoped to the caller."""

    sites: SiteTotals
    pending_absences: int = Field(
        ..., description="Pending absence requests (all for Admin/HR, otherwise own)"
    )
    active_tasks: int = Field(
        ..., description="Open tasks (all for task planners, otherwise assigned to the caller)"
    )
    open_interventions: int = Field(
        ..., description="Intervention requests visible to the caller that are still open"
    )
    unread_messages: int = Field(..., description="Unread messages across conversations")
