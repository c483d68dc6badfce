"""Generic pagination utilities for SQLAlchemy async queries."""


import math
from typing import Any, Callable, Generic, Optional, Sequence, TypeVar

from fastapi import Query
from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.common.constants import DEFAULT_PAGE_SIZE, MAX_PAGE_SIZE

T = TypeVar("T")


# ── FastAPI dependency ──────────────────────────────────────────────

class PaginationParams:
    """Page/limit pair; inject with ``Depends(pagination())``."""

    def __init__(self, page: int = 1, limit: int = DEFAULT_PAGE_SIZE) -> None:
        self.page = page
        self.limit = limit

    @property
    def offset(self) -> int:
        return (self.page - 1) * self.limit


def pagination(default_limit: int = DEFAULT_PAGE_SIZE) -> Callable[..., PaginationParams]:
    """Build a dependency whose ``limit`` defaults to *default_limit*.

    Chat history pages hold 50 messages while most lists show 20, so the
    default is chosen per endpoint.
    """

    def _dependency(
        page: int = Query(default=1, ge=1, description="Page number (1-indexed)"),
        limit: int = Query(
            default=default_limit, ge=1, le=MAX_PAGE_SIZE,
            description=f"Items per page (max {MAX_PAGE_SIZE})",
        ),
    ) -> PaginationParams:
        return PaginationParams(page=page, limit=limit)

    return _dependency


# ── Pydantic response models ───────────────────────────────────────

class PaginationMeta(BaseModel):
    """Metadata block embedded in every paginated response."""

    page: int
    limit: int
    total: int
    total_pages: int
    has_next: bool
    has_prev: bool


class PaginatedResponse(BaseModel, Generic[T]):
    """Standard envelope: ``{"data": [...], "meta": {...}}``."""

    data: Sequence[T]
    meta: PaginationMeta


def build_meta(total: int, params: PaginationParams) -> PaginationMeta:
    total_pages = math.ceil(total / params.limit) if total else 0
    return PaginationMeta(
        page=params.page,
        limit=params.limit,
        total=total,
        total_pages=total_pages,
        has_next=params.page < total_pages,
        has_prev=params.page > 1,
    )


# ── SQLAlchemy helper ───────────────────────────────────────────────

async def paginate(
    session: AsyncSession,
    query: Select,
    params: PaginationParams,
    *,
    schema: Optional[Any] = None,
) -> PaginatedResponse:
    """
    Execute *query* with LIMIT/OFFSET derived from *params* and return
    a ``PaginatedResponse`` with data + meta.

    If *schema* is a Pydantic model, rows are validated through it.
    """
    # ── total count (strip ORDER BY for efficiency) ─────────────────
    count_q = select(func.count()).select_from(query.order_by(None).subquery())
    total: int = (await session.execute(count_q)).scalar_one()

    # ── paginated rows ──────────────────────────────────────────────
    rows = (
        await session.execute(
            query.offset(params.offset).limit(params.limit)
        )
    ).scalars().unique().all()

    data = [schema.model_validate(r) for r in rows] if schema else list(rows)
    return PaginatedResponse(data=data, meta=build_meta(total, params))
