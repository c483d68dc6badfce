"""Absence ORM model."""

from __future__ import annotations

import uuid
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from site_manager.common.constants import AbsenceRequestType, AbsenceStatus, AbsenceType
from site_manager.common.models import TimestampMixin
from site_manager.database import Base

if TYPE_CHECKING:
    from site_manager.users.models import User


class Absence(Base, TimestampMixin):
    """Absence request submitted by a user, or declared on their behalf."""

    __tablename__ = "absences"
    __table_args__ = (
        sa.CheckConstraint("end_date >= start_date", name="ck_absences_date_range"),
        sa.CheckConstraint("day_count >= 0.5", name="ck_absences_day_count"),
        sa.Index("ix_absences_user_start", "user_id", "start_date"),
        sa.Index("ix_absences_status", "status"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    type: Mapped[AbsenceType] = mapped_column(
        sa.Enum(AbsenceType, name="absence_type"), nullable=False,
    )
    start_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    end_date: Mapped[date] = mapped_column(sa.Date, nullable=False)
    is_full_day: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)
    start_time: Mapped[Optional[str]] = mapped_column(sa.String(5))
    end_time: Mapped[Optional[str]] = mapped_column(sa.String(5))
    day_count: Mapped[Decimal] = mapped_column(sa.Numeric(5, 1), nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(sa.String(500))
    status: Mapped[AbsenceStatus] = mapped_column(
        sa.Enum(AbsenceStatus, name="absence_status"),
        nullable=False,
        default=AbsenceStatus.pending,
    )
    request_type: Mapped[AbsenceRequestType] = mapped_column(
        sa.Enum(AbsenceRequestType, name="absence_request_type"),
        nullable=False,
        default=AbsenceRequestType.request,
    )
    approved_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    approved_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.String(500))

    # Relationships
    user: Mapped[User] = relationship(foreign_keys=[user_id], lazy="joined")
    approved_by: Mapped[Optional[User]] = relationship(
        foreign_keys=[approved_by_id], lazy="joined",
    )

    def __repr__(self) -> str:
        return f"<Absence {self.type.value} {self.start_date}..{self.end_date} ({self.status.value})>"
