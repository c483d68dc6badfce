"""User ORM model.

The central identity record: login credentials, role, contact details and
the sites a user is assigned to.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy import event
from sqlalchemy.dialects.postgresql import UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from site_manager.common.constants import EmailProvider, UserRole
from site_manager.common.models import TimestampMixin
from site_manager.database import Base
from site_manager.mail.providers import detect_email_provider

if TYPE_CHECKING:
    from site_manager.auth.models import UserSession
    from site_manager.sites.models import Site


class User(Base, TimestampMixin):
    """Application user (office staff, field workers, workshop team)."""

    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        default=uuid.uuid4,
    )
    first_name: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    last_name: Mapped[str] = mapped_column(sa.String(50), nullable=False)
    email: Mapped[str] = mapped_column(
        sa.String(255), unique=True, index=True, nullable=False,
    )
    password_hash: Mapped[str] = mapped_column(sa.String(255), nullable=False)
    role: Mapped[UserRole] = mapped_column(
        sa.Enum(UserRole, name="user_role"),
        nullable=False,
        default=UserRole.worker,
    )
    phone: Mapped[Optional[str]] = mapped_column(sa.String(30))
    address: Mapped[Optional[str]] = mapped_column(sa.String(255))
    profile_image: Mapped[Optional[str]] = mapped_column(sa.String(500))
    email_provider: Mapped[EmailProvider] = mapped_column(
        sa.Enum(EmailProvider, name="email_provider"),
        nullable=False,
        default=EmailProvider.other,
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, default=True, nullable=False)
    last_login: Mapped[Optional[datetime]] = mapped_column(
        sa.DateTime(timezone=True),
    )

    # ── Relationships ───────────────────────────────────────────────
    sessions: Mapped[list[UserSession]] = relationship(
        back_populates="user", cascade="all, delete-orphan",
    )
    assigned_sites: Mapped[list[Site]] = relationship(
        secondary="site_assignments",
        back_populates="assigned_users",
        lazy="selectin",
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    @property
    def assigned_site_ids(self) -> list[uuid.UUID]:
        return [site.id for site in self.assigned_sites]

    def __repr__(self) -> str:
        return f"<User {self.email!r} ({self.role.value})>"


@event.listens_for(User.email, "set", retval=True)
def _normalise_email(target: User, value: str, oldvalue, initiator) -> str:
    """Store emails lower-cased and keep the provider in sync."""
    if value is None:
        return value
    value = value.strip().lower()
    target.email_provider = detect_email_provider(value)
    return value
