"""Site service layer — CRUD and team assignment."""

from __future__ import annotations

import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.common.exceptions import (
    BadRequestException,
    NotFoundException,
    ValidationException,
)
from site_manager.common.filters import apply_filters, apply_search, apply_sorting
from site_manager.common.pagination import PaginatedResponse, PaginationParams, paginate
from site_manager.sites.models import Site
from site_manager.sites.schemas import SiteCreate, SiteOut
from site_manager.users.models import User


class SiteService:
    """Business logic for sites."""

    @staticmethod
    async def get_site(db: AsyncSession, site_id: uuid.UUID) -> Site:
        result = await db.execute(select(Site).where(Site.id == site_id))
        site = result.scalars().first()
        if site is None:
            raise NotFoundException("Site", site_id)
        return site

    @staticmethod
    async def _get_users(db: AsyncSession, user_ids: list[uuid.UUID]) -> list[User]:
        if not user_ids:
            return []
        result = await db.execute(select(User).where(User.id.in_(user_ids)))
        users = list(result.scalars().all())
        missing = set(user_ids) - {u.id for u in users}
        if missing:
            raise ValidationException(
                {"assigned_user_ids": [f"Unknown user id(s): {', '.join(sorted(map(str, missing)))}"]}
            )
        return users

    @staticmethod
    async def _check_manager(db: AsyncSession, manager_id: uuid.UUID) -> None:
        result = await db.execute(select(User.id).where(User.id == manager_id))
        if result.scalar_one_or_none() is None:
            raise ValidationException({"project_manager_id": ["Project manager not found."]})

    @staticmethod
    async def list_sites(
        db: AsyncSession,
        params: PaginationParams,
        *,
        filters: dict[str, Any],
        search: Optional[str] = None,
        sort: Optional[str] = None,
    ) -> PaginatedResponse:
        query = select(Site)
        query = apply_filters(query, Site, filters)
        query = apply_search(query, Site, search, ["name", "city", "address", "client_name"])
        query = apply_sorting(query, Site, sort, default="-created_at")
        return await paginate(db, query, params, schema=SiteOut)

    @staticmethod
    async def create_site(db: AsyncSession, body: SiteCreate) -> Site:
        await SiteService._check_manager(db, body.project_manager_id)
        data = body.model_dump(exclude={"assigned_user_ids"})
        site = Site(**data)
        site.assigned_users = await SiteService._get_users(db, body.assigned_user_ids)
        db.add(site)
        await db.flush()
        await db.refresh(site)
        return site

    @staticmethod
    async def update_site(db: AsyncSession, site: Site, changes: dict[str, Any]) -> Site:
        if "project_manager_id" in changes and changes["project_manager_id"] is not None:
            await SiteService._check_manager(db, changes["project_manager_id"])

        start = changes.get("start_date", site.start_date)
        end = changes.get("expected_end_date", site.expected_end_date)
        if start and end and end < start:
            raise ValidationException(
                {"expected_end_date": ["expected_end_date must be on or after start_date"]}
            )

        for field, value in changes.items():
            setattr(site, field, value)
        await db.flush()
        await db.refresh(site)
        return site

    @staticmethod
    async def delete_site(db: AsyncSession, site: Site) -> None:
        await db.delete(site)
        await db.flush()

    @staticmethod
    async def assign_user(db: AsyncSession, site: Site, user_id: uuid.UUID) -> Site:
        result = await db.execute(select(User).where(User.id == user_id))
        user = result.scalars().first()
        if user is None:
            raise NotFoundException("User", user_id)
        if any(u.id == user_id for u in site.assigned_users):
            raise BadRequestException("User is already assigned to this site", code="ALREADY_ASSIGNED")
        site.assigned_users.append(user)
        await db.flush()
        return site

    @staticmethod
    async def remove_user(db: AsyncSession, site: Site, user_id: uuid.UUID) -> Site:
        remaining = [u for u in site.assigned_users if u.id != user_id]
        if len(remaining) == len(site.assigned_users):
            raise NotFoundException("Site assignment", user_id)
        site.assigned_users = remaining
        await db.flush()
        return site
