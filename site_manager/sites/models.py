"""Site ORM models: Site and the user assignment table."""

from __future__ import annotations

import uuid
from datetime import date
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from site_manager.common.constants import SitePriority, SiteStatus
from site_manager.common.models import TimestampMixin
from site_manager.database import Base

if TYPE_CHECKING:
    from site_manager.users.models import User


site_assignments = sa.Table(
    "site_assignments",
    Base.metadata,
    sa.Column(
        "site_id",
        UUID(as_uuid=True),
        sa.ForeignKey("sites.id", ondelete="CASCADE"),
        primary_key=True,
    ),
    sa.Column(
        "user_id",
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    ),
)


class Site(Base, TimestampMixin):
    """Construction / landscaping site."""

    __tablename__ = "sites"
    __table_args__ = (
        sa.CheckConstraint("budget >= 0", name="ck_sites_budget_non_negative"),
        sa.CheckConstraint("current_cost >= 0", name="ck_sites_cost_non_negative"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    name: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(sa.String(500))
    address: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    city: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    postal_code: Mapped[str] = mapped_column(sa.String(5), nullable=False)
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    expected_end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    actual_end_date: Mapped[Optional[date]] = mapped_column(sa.Date)
    status: Mapped[SiteStatus] = mapped_column(
        sa.Enum(SiteStatus, name="site_status"),
        nullable=False,
        default=SiteStatus.planning,
    )
    budget: Mapped[Decimal] = mapped_column(sa.Numeric(14, 2), nullable=False)
    current_cost: Mapped[Decimal] = mapped_column(
        sa.Numeric(14, 2), nullable=False, default=Decimal("0"),
    )
    priority: Mapped[SitePriority] = mapped_column(
        sa.Enum(SitePriority, name="site_priority"),
        nullable=False,
        default=SitePriority.medium,
    )
    project_manager_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False,
    )
    client_name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    client_contact: Mapped[Optional[str]] = mapped_column(sa.String(30))
    client_email: Mapped[Optional[str]] = mapped_column(sa.String(255))

    # ── Relationships ───────────────────────────────────────────────
    project_manager: Mapped[User] = relationship(
        foreign_keys=[project_manager_id], lazy="joined",
    )
    assigned_users: Mapped[list[User]] = relationship(
        secondary=site_assignments,
        back_populates="assigned_sites",
        lazy="selectin",
    )

    def __repr__(self) -> str:
        return f"<Site {self.name!r} ({self.status.value})>"
