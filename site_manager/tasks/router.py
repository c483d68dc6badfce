"""Tasks router — site work planning, assignment and progress.

NOTE: ``/my-tasks`` and ``/site/{site_id}`` are declared before ``/{task_id}``.
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.auth.dependencies import get_current_user, require_role
from site_manager.common.constants import (
    TASK_DELETER_ROLES,
    TASK_MANAGER_ROLES,
    TaskCategory,
    TaskPriority,
    TaskStatus,
)
from site_manager.common.pagination import PaginatedResponse, PaginationParams, pagination
from site_manager.database import get_db
from site_manager.sites.service import SiteService
from site_manager.tasks.schemas import (
    TaskAssignRequest,
    TaskCreate,
    TaskOut,
    TaskStatusUpdate,
    TaskUpdate,
)
from site_manager.tasks.service import TaskService
from site_manager.users.models import User

router = APIRouter(prefix="", tags=["tasks"])


# ── GET / ────────────────────────────────────────────────────────────

@router.get("/", response_model=PaginatedResponse[TaskOut])
async def list_tasks(
    status: Optional[TaskStatus] = Query(None),
    priority: Optional[TaskPriority] = Query(None),
    category: Optional[TaskCategory] = Query(None),
    site_id: Optional[uuid.UUID] = Query(None),
    search: Optional[str] = Query(None, max_length=100),
    sort: Optional[str] = Query(None, description="Column to sort by; prefix with - for descending"),
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(require_role(*TASK_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    return await TaskService.list_tasks(
        db,
        params,
        filters={"status": status, "priority": priority, "category": category, "site_id": site_id},
        search=search,
        sort=sort,
    )


# ── GET /my-tasks ────────────────────────────────────────────────────

@router.get("/my-tasks", response_model=PaginatedResponse[TaskOut])
async def my_tasks(
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await TaskService.list_for_user(db, user.id, params)


# ── GET /site/{site_id} ──────────────────────────────────────────────

@router.get("/site/{site_id}", response_model=PaginatedResponse[TaskOut])
async def site_tasks(
    site_id: uuid.UUID,
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await SiteService.get_site(db, site_id)
    return await TaskService.list_for_site(db, site_id, params)


# ── POST / ───────────────────────────────────────────────────────────

@router.post("/", response_model=TaskOut, status_code=201)
async def create_task(
    body: TaskCreate,
    user: User = Depends(require_role(*TASK_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    task = await TaskService.create_task(db, user, body)
    await db.commit()
    await TaskService.notify_assigned(task, body.assigned_user_ids)
    return TaskOut.model_validate(task)


# ── GET /{task_id} ───────────────────────────────────────────────────

@router.get("/{task_id}", response_model=TaskOut)
async def get_task(
    task_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    task = await TaskService.get_task(db, task_id)
    return TaskOut.model_validate(task)


# ── PUT /{task_id} ───────────────────────────────────────────────────

@router.put("/{task_id}", response_model=TaskOut)
async def update_task(
    task_id: uuid.UUID,
    body: TaskUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    task = await TaskService.get_task(db, task_id)
    task = await TaskService.update_task(db, task, user, body.model_dump(exclude_unset=True))
    return TaskOut.model_validate(task)


# ── PUT /{task_id}/status ────────────────────────────────────────────

@router.put("/{task_id}/status", response_model=TaskOut)
async def update_task_status(
    task_id: uuid.UUID,
    body: TaskStatusUpdate,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    task = await TaskService.get_task(db, task_id)
    task = await TaskService.update_status(db, task, user, body.status, body.actual_hours)
    return TaskOut.model_validate(task)


# ── PUT /{task_id}/assign ────────────────────────────────────────────

@router.put("/{task_id}/assign", response_model=TaskOut)
async def assign_task(
    task_id: uuid.UUID,
    body: TaskAssignRequest,
    user: User = Depends(require_role(*TASK_MANAGER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    task = await TaskService.get_task(db, task_id)
    task, added = await TaskService.assign(db, task, body.user_ids)
    await db.commit()
    if added:
        await TaskService.notify_assigned(task, added)
    return TaskOut.model_validate(task)


# ── DELETE /{task_id} ────────────────────────────────────────────────

@router.delete("/{task_id}")
async def delete_task(
    task_id: uuid.UUID,
    user: User = Depends(require_role(*TASK_DELETER_ROLES)),
    db: AsyncSession = Depends(get_db),
):
    task = await TaskService.get_task(db, task_id)
    await TaskService.delete_task(db, task)
    return {"message": "Task deleted successfully"}
