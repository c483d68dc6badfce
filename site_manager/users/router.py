"""Users router — directory, contacts, profile and account status.

NOTE: static routes (``/contacts``) are declared before ``/{user_id}``.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.auth.dependencies import get_current_user, is_admin_or_hr, require_role
from site_manager.common.audit import client_info, create_audit_entry
from site_manager.common.constants import ADMIN_HR_ROLES, UserRole
from site_manager.common.exceptions import ForbiddenException, ValidationException
from site_manager.common.pagination import PaginatedResponse, PaginationParams, pagination
from site_manager.database import get_db
from site_manager.users.models import User
from site_manager.users.schemas import (
    ContactOut,
    UserDetail,
    UserStatusUpdate,
    UserUpdate,
)
from site_manager.users.service import UserService

router = APIRouter(prefix="", tags=["users"])


# ── GET / — all users (Admin/HR) ────────────────────────────────────

@router.get("/", response_model=PaginatedResponse[UserDetail])
async def list_users(
    role: Optional[UserRole] = Query(None),
    is_active: Optional[bool] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(require_role(*ADMIN_HR_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await UserService.list_users(
        db,
        params,
        filters={"role": role, "is_active": is_active},
        search=search,
    )


# ── GET /contacts — anyone you can message ──────────────────────────

@router.get("/contacts", response_model=list[ContactOut])
async def list_contacts(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    contacts = await UserService.list_contacts(db, user.id)
    return [ContactOut.model_validate(c) for c in contacts]


# ── GET /{user_id} ──────────────────────────────────────────────────

@router.get("/{user_id}", response_model=UserDetail)
async def get_user(
    user_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if user.id != user_id and not is_admin_or_hr(user):
        raise ForbiddenException("You can only view your own profile.")
    target = await UserService.get_user(db, user_id)
    return UserDetail.model_validate(target)


# ── PUT /{user_id} ──────────────────────────────────────────────────

@router.put("/{user_id}", response_model=UserDetail)
async def update_user(
    user_id: uuid.UUID,
    body: UserUpdate,
    user: User = Depends(require_role(*ADMIN_HR_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    target = await UserService.get_user(db, user_id)
    changes = body.model_dump(exclude_unset=True)
    if target.id == user.id and changes.get("is_active") is False:
        raise ValidationException({"is_active": ["You cannot deactivate your own account."]})
    target = await UserService.update_user(db, target, changes)
    return UserDetail.model_validate(target)


# ── PUT /{user_id}/status ───────────────────────────────────────────

@router.put("/{user_id}/status", response_model=UserDetail)
async def update_status(
    user_id: uuid.UUID,
    body: UserStatusUpdate,
    request: Request,
    user: User = Depends(require_role(*ADMIN_HR_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    target = await UserService.get_user(db, user_id)
    was_active = target.is_active
    target = await UserService.set_active(db, target, body.is_active, actor=user)

    ip, user_agent = client_info(request)
    await create_audit_entry(
        db,
        action="activate" if body.is_active else "deactivate",
        entity_type="user",
        entity_id=target.id,
        actor_id=user.id,
        old_values={"is_active": was_active},
        new_values={"is_active": target.is_active},
        ip_address=ip,
        user_agent=user_agent,
    )
    return UserDetail.model_validate(target)


# ── DELETE /{user_id} — soft delete (Admin) ─────────────────────────

@router.delete("/{user_id}")
async def delete_user(
    user_id: uuid.UUID,
    request: Request,
    user: User = Depends(require_role(UserRole.administrator)),
    db: AsyncSession = Depends(get_db),
):
    target = await UserService.get_user(db, user_id)
    if target.id == user.id:
        raise ValidationException({"user_id": ["You cannot delete your own account."]})
    await UserService.set_active(db, target, False, actor=user)

    ip, user_agent = client_info(request)
    await create_audit_entry(
        db,
        action="delete",
        entity_type="user",
        entity_id=target.id,
        actor_id=user.id,
        new_values={"is_active": False},
        ip_address=ip,
        user_agent=user_agent,
    )
    return {"message": "User deactivated successfully"}
