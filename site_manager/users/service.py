"""User service layer — directory listing, profile and status management."""

from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.common.exceptions import NotFoundException, ValidationException
from site_manager.common.filters import apply_filters, apply_search
from site_manager.common.pagination import PaginatedResponse, PaginationParams, paginate
from site_manager.sites.models import Site
from site_manager.users.models import User
from site_manager.users.schemas import UserDetail


class UserService:
    """Business logic for user administration."""

    @staticmethod
    async def get_user(db: AsyncSession, user_id: uuid.UUID) -> User:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalars().first()
        if user is None:
            raise NotFoundException("User", user_id)
        return user

    @staticmethod
    async def list_users(
        db: AsyncSession,
        params: PaginationParams,
        *,
        filters: dict[str, Any],
        search: Optional[str] = None,
    ) -> PaginatedResponse:
        query = select(User)
        query = apply_filters(query, User, filters)
        query = apply_search(query, User, search, ["first_name", "last_name", "email"])
        query = query.order_by(User.last_name.asc(), User.first_name.asc())
        return await paginate(db, query, params, schema=UserDetail)

    @staticmethod
    async def list_contacts(db: AsyncSession, user_id: uuid.UUID) -> list[User]:
        """Active users the caller can start a conversation with."""
        result = await db.execute(
            select(User)
            .where(User.is_active.is_(True), User.id != user_id)
            .order_by(User.first_name.asc(), User.last_name.asc())
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_active_by_role(db: AsyncSession, *roles) -> list[User]:
        result = await db.execute(
            select(User).where(User.is_active.is_(True), User.role.in_(roles))
        )
        return list(result.scalars().all())

    @staticmethod
    async def update_user(
        db: AsyncSession,
        user: User,
        changes: dict[str, Any],
    ) -> User:
        site_ids = changes.pop("assigned_site_ids", None)
        for field, value in changes.items():
            setattr(user, field, value)

        if site_ids is not None:
            result = await db.execute(select(Site).where(Site.id.in_(site_ids)))
            sites = list(result.scalars().all())
            missing = set(site_ids) - {s.id for s in sites}
            if missing:
                raise ValidationException(
                    {"assigned_site_ids": [f"Unknown site id(s): {', '.join(sorted(map(str, missing)))}"]}
                )
            user.assigned_sites = sites

        await db.flush()
        await db.refresh(user)
        return user

    @staticmethod
    async def set_active(
        db: AsyncSession,
        user: User,
        is_active: bool,
        *,
        actor: User,
    ) -> User:
        if user.id == actor.id and not is_active:
            raise ValidationException({"is_active": ["You cannot deactivate your own account."]})
        user.is_active = is_active
        await db.flush()
        return user
