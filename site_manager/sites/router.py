"""Sites router — CRUD and team assignment."""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.auth.dependencies import get_current_user, require_role
from site_manager.common.constants import SITE_MANAGER_ROLES, SitePriority, SiteStatus, UserRole
from site_manager.common.pagination import PaginatedResponse, PaginationParams, pagination
from site_manager.database import get_db
from site_manager.sites.schemas import AssignUserRequest, SiteCreate, SiteOut, SiteUpdate
from site_manager.sites.service import SiteService
from site_manager.users.models import User

router = APIRouter(prefix="", tags=["sites"])


# ── GET / ────────────────────────────────────────────────────────────

@router.get("/", response_model=PaginatedResponse[SiteOut])
async def list_sites(
    status: Optional[SiteStatus] = Query(None),
    priority: Optional[SitePriority] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    sort: Optional[str] = Query(None, description="Column to sort by; prefix with - for descending"),
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await SiteService.list_sites(
        db,
        params,
        filters={"status": status, "priority": priority},
        search=search,
        sort=sort,
    )


# ── POST / ───────────────────────────────────────────────────────────

@router.post("/", response_model=SiteOut, status_code=201)
async def create_site(
    body: SiteCreate,
    user: User = Depends(require_role(*SITE_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    site = await SiteService.create_site(db, body)
    return SiteOut.model_validate(site)


# ── GET /{site_id} ───────────────────────────────────────────────────

@router.get("/{site_id}", response_model=SiteOut)
async def get_site(
    site_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    site = await SiteService.get_site(db, site_id)
    return SiteOut.model_validate(site)


# ── PUT /{site_id} ───────────────────────────────────────────────────

@router.put("/{site_id}", response_model=SiteOut)
async def update_site(
    site_id: uuid.UUID,
    body: SiteUpdate,
    user: User = Depends(require_role(*SITE_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    site = await SiteService.get_site(db, site_id)
    site = await SiteService.update_site(db, site, body.model_dump(exclude_unset=True))
    return SiteOut.model_validate(site)


# ── DELETE /{site_id} ────────────────────────────────────────────────

@router.delete("/{site_id}")
async def delete_site(
    site_id: uuid.UUID,
    user: User = Depends(require_role(UserRole.administrator)),
    db: AsyncSession = Depends(get_db),
):
    site = await SiteService.get_site(db, site_id)
    await SiteService.delete_site(db, site)
    return {"message": "Site deleted successfully"}


# ── POST /{site_id}/assign-user ──────────────────────────────────────

@router.post("/{site_id}/assign-user", response_model=SiteOut)
async def assign_user(
    site_id: uuid.UUID,
    body: AssignUserRequest,
    user: User = Depends(require_role(*SITE_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    site = await SiteService.get_site(db, site_id)
    site = await SiteService.assign_user(db, site, body.user_id)
    return SiteOut.model_validate(site)


# ── DELETE /{site_id}/remove-user/{user_id} ──────────────────────────

@router.delete("/{site_id}/remove-user/{user_id}", response_model=SiteOut)
async def remove_user(
    site_id: uuid.UUID,
    user_id: uuid.UUID,
    user: User = Depends(require_role(*SITE_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    site = await SiteService.get_site(db, site_id)
    site = await SiteService.remove_user(db, site, user_id)
    return SiteOut.model_validate(site)
