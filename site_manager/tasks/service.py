"""Task service layer — planning, assignment and progress of site work."""

from __future__ import annotations

import logging
import uuid
from typing import Any, Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.common.constants import TASK_MANAGER_ROLES, TaskStatus
from site_manager.common.exceptions import (
    ForbiddenException,
    NotFoundException,
    ValidationException,
)
from site_manager.common.filters import apply_filters, apply_search, apply_sorting
from site_manager.common.models import utcnow
from site_manager.common.pagination import PaginatedResponse, PaginationParams, paginate
from site_manager.realtime.manager import manager
from site_manager.sites.models import Site
from site_manager.tasks.models import Task, task_assignments
from site_manager.tasks.schemas import Material, TaskCreate, TaskOut
from site_manager.users.models import User

logger = logging.getLogger(__name__)


def can_manage_tasks(user: User) -> bool:
    return user.role in TASK_MANAGER_ROLES


def _dump_materials(materials: Iterable[Any]) -> list[dict[str, Any]]:
    # JSONB has no Decimal; amounts are stored as strings
    return [Material.model_validate(m).model_dump(mode="json") for m in materials]


class TaskService:
    """Business logic for site tasks."""

    @staticmethod
    async def get_task(db: AsyncSession, task_id: uuid.UUID) -> Task:
        result = await db.execute(select(Task).where(Task.id == task_id))
        task = result.scalars().first()
        if task is None:
            raise NotFoundException("Task", task_id)
        return task

    @staticmethod
    async def _get_users(db: AsyncSession, user_ids: list[uuid.UUID], field: str) -> list[User]:
        if not user_ids:
            return []
        result = await db.execute(select(User).where(User.id.in_(set(user_ids))))
        users = list(result.scalars().all())
        missing = set(user_ids) - {u.id for u in users}
        if missing:
            raise ValidationException(
                {field: [f"Unknown user id(s): {', '.join(sorted(map(str, missing)))}"]}
            )
        return users

    @staticmethod
    async def list_tasks(
        db: AsyncSession,
        params: PaginationParams,
        *,
        filters: dict[str, Any],
        search: Optional[str] = None,
        sort: Optional[str] = None,
    ) -> PaginatedResponse:
        query = apply_filters(select(Task), Task, filters)
        query = apply_search(query, Task, search, ["title", "description", "location"])
        query = apply_sorting(query, Task, sort, default="-created_at")
        return await paginate(db, query, params, schema=TaskOut)

    @staticmethod
    async def list_for_site(
        db: AsyncSession, site_id: uuid.UUID, params: PaginationParams,
    ) -> PaginatedResponse:
        query = select(Task).where(Task.site_id == site_id).order_by(Task.created_at.desc())
        return await paginate(db, query, params, schema=TaskOut)

    @staticmethod
    async def list_for_user(
        db: AsyncSession, user_id: uuid.UUID, params: PaginationParams,
    ) -> PaginatedResponse:
        """Tasks assigned to *user_id*, soonest due first; undated ones last."""
        query = (
            select(Task)
            .join(task_assignments, task_assignments.c.task_id == Task.id)
            .where(task_assignments.c.user_id == user_id)
            .order_by(Task.due_date.is_(None), Task.due_date.asc(), Task.created_at.desc())
        )
        return await paginate(db, query, params, schema=TaskOut)

    @staticmethod
    async def create_task(db: AsyncSession, user: User, body: TaskCreate) -> Task:
        if await db.get(Site, body.site_id) is None:
            raise ValidationException({"site_id": ["Site not found."]})

        data = body.model_dump(exclude={"assigned_user_ids", "materials"})
        task = Task(created_by_id=user.id, materials=_dump_materials(body.materials), **data)
        if task.status == TaskStatus.completed:
            task.completed_date = utcnow()
        task.assigned_users = await TaskService._get_users(
            db, body.assigned_user_ids, "assigned_user_ids",
        )
        db.add(task)
        await db.flush()
        await db.refresh(task)
        logger.info("Task %s created on site %s by %s", task.id, task.site_id, user.id)
        return task

    @staticmethod
    async def update_task(
        db: AsyncSession, task: Task, user: User, changes: dict[str, Any],
    ) -> Task:
        if not (can_manage_tasks(user) or task.is_assigned(user.id) or task.created_by_id == user.id):
            raise ForbiddenException("Not authorized to update this task.")

        start = changes.get("start_date", task.start_date)
        due = changes.get("due_date", task.due_date)
        if start and due and due < start:
            raise ValidationException({"due_date": ["due_date must be on or after start_date"]})

        if changes.get("materials") is not None:
            changes["materials"] = _dump_materials(changes["materials"])
        for field in ("title", "status", "priority", "category", "tags", "materials"):
            if field in changes and changes[field] is None:
                del changes[field]

        for field, value in changes.items():
            setattr(task, field, value)
        TaskService._stamp_completion(task)
        await db.flush()
        await db.refresh(task)
        return task

    @staticmethod
    async def update_status(
        db: AsyncSession,
        task: Task,
        user: User,
        status: TaskStatus,
        actual_hours: Optional[Any] = None,
    ) -> Task:
        if not (can_manage_tasks(user) or task.is_assigned(user.id)):
            raise ForbiddenException("Not authorized to update task status.")
        task.status = status
        if actual_hours is not None:
            task.actual_hours = actual_hours
        TaskService._stamp_completion(task)
        await db.flush()
        await db.refresh(task)
        return task

    @staticmethod
    def _stamp_completion(task: Task) -> None:
        if task.status == TaskStatus.completed and task.completed_date is None:
            task.completed_date = utcnow()

    @staticmethod
    async def assign(
        db: AsyncSession, task: Task, user_ids: list[uuid.UUID],
    ) -> tuple[Task, list[uuid.UUID]]:
        """Replace the assignees; returns the task and the newly added user ids."""
        previous = {u.id for u in task.assigned_users}
        task.assigned_users = await TaskService._get_users(db, user_ids, "user_ids")
        await db.flush()
        await db.refresh(task)
        added = [u.id for u in task.assigned_users if u.id not in previous]
        return task, added

    @staticmethod
    async def delete_task(db: AsyncSession, task: Task) -> None:
        await db.delete(task)
        await db.flush()

    @staticmethod
    async def notify_assigned(task: Task, user_ids: Iterable[uuid.UUID]) -> None:
        payload = {
            "task": TaskOut.model_validate(task).model_dump(),
            "message": f"You have been assigned to '{task.title}' on {task.site.name}",
        }
        await manager.emit_to_users(user_ids, "task:assigned", payload)
