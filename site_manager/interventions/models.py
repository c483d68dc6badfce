"""Intervention ORM models: InterventionRequest, InterventionLogEntry, InterventionComment.

SQLAlchemy 2.0 async-compatible models.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from site_manager.common.constants import InterventionPriority, InterventionStatus
from site_manager.common.models import TimestampMixin, as_utc, utcnow
from site_manager.database import Base

if TYPE_CHECKING:
    from site_manager.sites.models import Site
    from site_manager.users.models import User


class InterventionRequest(Base, TimestampMixin):
    """Maintenance / repair ticket routed to the workshop team."""

    __tablename__ = "intervention_requests"
    __table_args__ = (
        sa.Index("ix_intervention_requests_status", "status"),
        sa.Index("ix_intervention_requests_requested_by", "requested_by_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    title: Mapped[str] = mapped_column(sa.String(200), nullable=False)
    description: Mapped[str] = mapped_column(sa.String(2000), nullable=False)
    priority: Mapped[InterventionPriority] = mapped_column(
        sa.Enum(InterventionPriority, name="intervention_priority"),
        nullable=False,
        default=InterventionPriority.medium,
    )
    status: Mapped[InterventionStatus] = mapped_column(
        sa.Enum(InterventionStatus, name="intervention_status"),
        nullable=False,
        default=InterventionStatus.submitted,
    )
    requested_by_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False,
    )
    site_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("sites.id", ondelete="SET NULL"),
    )
    equipment_location: Mapped[Optional[str]] = mapped_column(sa.String(300))
    equipment_details: Mapped[Optional[str]] = mapped_column(sa.String(500))
    is_emergency: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    attachments: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    workshop_transferred_at: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )
    workshop_assigned_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    estimated_completion_date: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )
    actual_completion_date: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )
    rejection_reason: Mapped[Optional[str]] = mapped_column(sa.String(500))
    workshop_notes: Mapped[Optional[str]] = mapped_column(sa.String(2000))

    # Relationships
    requested_by: Mapped[User] = relationship(foreign_keys=[requested_by_id], lazy="joined")
    assigned_to: Mapped[Optional[User]] = relationship(
        foreign_keys=[workshop_assigned_to_id], lazy="joined",
    )
    site: Mapped[Optional[Site]] = relationship(lazy="joined")
    log: Mapped[list[InterventionLogEntry]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="InterventionLogEntry.timestamp",
        lazy="selectin",
    )
    comments: Mapped[list[InterventionComment]] = relationship(
        back_populates="request",
        cascade="all, delete-orphan",
        order_by="InterventionComment.created_at",
        lazy="selectin",
    )

    @property
    def is_overdue(self) -> bool:
        if self.estimated_completion_date is None or self.status == InterventionStatus.completed:
            return False
        return as_utc(self.estimated_completion_date) < datetime.now(timezone.utc)

    def __repr__(self) -> str:
        return f"<InterventionRequest '{self.title[:30]}' ({self.status.value})>"


class InterventionLogEntry(Base):
    """Audit line in a request's workshop transfer log."""

    __tablename__ = "intervention_log_entries"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("intervention_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(sa.String(100), nullable=False)
    performed_by_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id", ondelete="SET NULL"),
    )
    notes: Mapped[Optional[str]] = mapped_column(sa.String(500))
    timestamp: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )

    # Relationships
    request: Mapped[InterventionRequest] = relationship(back_populates="log")
    performed_by: Mapped[Optional[User]] = relationship(lazy="joined")


class InterventionComment(Base):
    """Comment exchanged between the requester and the workshop."""

    __tablename__ = "intervention_comments"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    request_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("intervention_requests.id", ondelete="CASCADE"),
        nullable=False,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False,
    )
    text: Mapped[str] = mapped_column(sa.String(1000), nullable=False)
    is_from_workshop: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )

    # Relationships
    request: Mapped[InterventionRequest] = relationship(back_populates="comments")
    user: Mapped[User] = relationship(lazy="joined")
