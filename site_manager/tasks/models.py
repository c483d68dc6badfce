"""Task ORM models: site work items and their assignees."""

from __future__ import annotations

import math
import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from site_manager.common.constants import (
    CLOSED_TASK_STATUSES,
    TaskCategory,
    TaskPriority,
    TaskStatus,
)
from site_manager.common.models import TimestampMixin, as_utc
from site_manager.database import Base

if TYPE_CHECKING:
    from site_manager.sites.models import Site
    from site_manager.users.models import User


task_assignments = sa.Table(
    "task_assignments",
    Base.metadata,
    sa.Column(
        "task_id",
        UUID(as_uuid=True),
        sa.ForeignKey("tasks.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    sa.Column(
        "user_id",
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Task(Base, TimestampMixin):
    """Unit of work planned on a site."""

    __tablename__ = "tasks"
    __table_args__ = (
        sa.CheckConstraint("estimated_hours >= 0", name="ck_tasks_estimated_hours_non_negative"),
        sa.CheckConstraint("actual_hours >= 0", name="ck_tasks_actual_hours_non_negative"),
        sa.Index("ix_tasks_site_id", "site_id"),
        sa.Index("ix_tasks_status", "status"),
        sa.Index("ix_tasks_due_date", "due_date"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    title: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.String(1000))
    site_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("sites.id", ondelete="CASCADE"), nullable=False,
    )
    created_by_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False,
    )
    status: Mapped[TaskStatus] = mapped_column(
        sa.Enum(TaskStatus, name="task_status"),
        nullable=False,
        default=TaskStatus.not_started,
    )
    priority: Mapped[TaskPriority] = mapped_column(
        sa.Enum(TaskPriority, name="task_priority"),
        nullable=False,
        default=TaskPriority.medium,
    )
    category: Mapped[TaskCategory] = mapped_column(
        sa.Enum(TaskCategory, name="task_category"),
        nullable=False,
        default=TaskCategory.other,
    )
    start_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    due_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    completed_date: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    estimated_hours: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(7, 2))
    actual_hours: Mapped[Optional[Decimal]] = mapped_column(sa.Numeric(7, 2))
    location: Mapped[Optional[str]] = mapped_column(sa.String(100))
    tags: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    # [{"name", "quantity", "unit", "cost"}]
    materials: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)

    # ── Relationships ───────────────────────────────────────────────
    site: Mapped[Site] = relationship(lazy="joined")
    created_by: Mapped[User] = relationship(foreign_keys=[created_by_id], lazy="joined")
    assigned_users: Mapped[list[User]] = relationship(
        secondary=task_assignments, lazy="selectin",
    )

    @property
    def is_overdue(self) -> bool:
        if self.due_date is None or self.status in CLOSED_TASK_STATUSES:
            return False
        return date.today() > self.due_date

    @property
    def duration_days(self) -> Optional[int]:
        """Whole days from start to completion, rounded up."""
        if self.start_date is None or self.completed_date is None:
            return None
        start = datetime.combine(self.start_date, datetime.min.time(), as_utc(self.completed_date).tzinfo)
        seconds = (as_utc(self.completed_date) - start).total_seconds()
        return max(0, math.ceil(seconds / 86400))

    def is_assigned(self, user_id: uuid.UUID) -> bool:
        return any(u.id == user_id for u in self.assigned_users)

    def __repr__(self) -> str:
        return f"<Task {self.title!r} ({self.status.value})>"
