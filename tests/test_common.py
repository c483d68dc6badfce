"""Tests for common utilities — filters, sorting, pagination, error bodies."""

from __future__ import annotations

from datetime import date

from fastapi import Request
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.common.constants import SiteStatus, UserRole
from site_manager.common.exceptions import (
    BadRequestException,
    NotFoundException,
    _build_problem_detail,
)
from site_manager.common.filters import _get_column, apply_filters, apply_search, apply_sorting
from site_manager.common.pagination import PaginationParams, build_meta, paginate
from site_manager.sites.models import Site
from site_manager.users.models import User
from tests.conftest import auth_headers_for, make_site, make_user


def _request(path: str = "/api/v1/sites/42") -> Request:
    return Request({"type": "http", "method": "GET", "path": path, "headers": [], "query_string": b""})


async def _names(db: AsyncSession, query) -> list[str]:
    return [s.name for s in (await db.execute(query)).scalars().all()]


# ═════════════════════════════════════════════════════════════════════
# FILTER TESTS
# ═════════════════════════════════════════════════════════════════════


class TestApplyFilters:
    """Tests for apply_filters utility."""

    async def test_equality_and_none_skipped(self, db: AsyncSession, project_manager):
        await make_site(project_manager.id, name="Actif", status=SiteStatus.active)
        await make_site(project_manager.id, name="En pause", status=SiteStatus.on_hold)

        query = apply_filters(select(Site), Site, {"status": SiteStatus.on_hold, "priority": None})
        assert await _names(db, query) == ["En pause"]

    async def test_ilike(self, db: AsyncSession, project_manager):
        await make_site(project_manager.id, name="Square Bellecour")
        await make_site(project_manager.id, name="Parc Blandan")

        query = apply_filters(select(Site), Site, {"name__ilike": "BELLE"})
        assert await _names(db, query) == ["Square Bellecour"]

    async def test_from_to_range(self, db: AsyncSession, project_manager):
        await make_site(project_manager.id, name="Hiver", start_date=date(2026, 1, 5), expected_end_date=date(2026, 2, 1))
        await make_site(project_manager.id, name="Printemps", start_date=date(2026, 4, 1))
        await make_site(project_manager.id, name="Automne", start_date=date(2026, 10, 1), expected_end_date=date(2026, 12, 1))

        query = apply_filters(select(Site), Site, {
            "start_date__from": date(2026, 3, 1),
            "start_date__to": date(2026, 6, 30),
        })
        assert await _names(db, query) == ["Printemps"]

    async def test_in(self, db: AsyncSession, project_manager):
        await make_site(project_manager.id, name="A", status=SiteStatus.active)
        await make_site(project_manager.id, name="B", status=SiteStatus.completed)
        await make_site(project_manager.id, name="C", status=SiteStatus.cancelled)

        query = apply_filters(select(Site), Site, {
            "status__in": [SiteStatus.active, SiteStatus.cancelled],
        })
        assert sorted(await _names(db, query)) == ["A", "C"]

    async def test_unknown_and_private_columns_ignored(self, db: AsyncSession, project_manager):
        await make_site(project_manager.id)
        query = apply_filters(select(Site), Site, {"nope": 1, "_sa_instance_state": 2})
        assert len(await _names(db, query)) == 1
        assert _get_column(Site, "_sa_instance_state") is None
        assert _get_column(Site, "assigned_users") is not None


class TestApplySearch:
    async def test_search_or_across_columns(self, db: AsyncSession):
        await make_user(role=UserRole.worker, first_name="Jeanne", last_name="Moreau")
        await make_user(role=UserRole.worker, first_name="Paul", last_name="Jeannot")
        await make_user(role=UserRole.worker, first_name="Luc", last_name="Petit")

        query = apply_search(select(User), User, "jean", ["first_name", "last_name"])
        users = (await db.execute(query)).scalars().all()
        assert {u.first_name for u in users} == {"Jeanne", "Paul"}

    async def test_blank_search_is_noop(self):
        query = select(User)
        assert apply_search(query, User, "   ", ["first_name"]) is query
        assert apply_search(query, User, "x", ["missing"]) is query


class TestApplySorting:
    async def test_ascending_and_descending(self, db: AsyncSession, project_manager):
        for name in ("Beta", "Alpha", "Gamma"):
            await make_site(project_manager.id, name=name)

        assert await _names(db, apply_sorting(select(Site), Site, "name")) == ["Alpha", "Beta", "Gamma"]
        assert await _names(db, apply_sorting(select(Site), Site, "-name")) == ["Gamma", "Beta", "Alpha"]

    async def test_unknown_column_falls_back_to_default(self, db: AsyncSession, project_manager):
        for name in ("Beta", "Alpha"):
            await make_site(project_manager.id, name=name)
        query = apply_sorting(select(Site), Site, "-bogus", default="name")
        assert await _names(db, query) == ["Alpha", "Beta"]

    async def test_no_sort_leaves_query_untouched(self):
        query = select(Site)
        assert apply_sorting(query, Site, None) is query
        assert apply_sorting(query, Site, "bogus") is query

    async def test_sites_endpoint_sort(self, client, worker, project_manager):
        for name in ("Beta", "Alpha", "Gamma"):
            await make_site(project_manager.id, name=name)
        resp = await client.get(
            "/api/v1/sites/", params={"sort": "name"}, headers=await auth_headers_for(worker),
        )
        assert [s["name"] for s in resp.json()["data"]] == ["Alpha", "Beta", "Gamma"]


# ═════════════════════════════════════════════════════════════════════
# PAGINATION TESTS
# ═════════════════════════════════════════════════════════════════════


class TestPagination:
    async def test_build_meta(self):
        meta = build_meta(45, PaginationParams(page=2, limit=20))
        assert meta.total_pages == 3
        assert meta.has_next is True
        assert meta.has_prev is True

        empty = build_meta(0, PaginationParams())
        assert empty.total_pages == 0
        assert empty.has_next is False
        assert empty.has_prev is False

    async def test_offset(self):
        assert PaginationParams(page=3, limit=25).offset == 50

    async def test_paginate_last_page(self, db: AsyncSession, project_manager):
        for i in range(5):
            await make_site(project_manager.id, name=f"Site {i}")

        result = await paginate(
            db, select(Site).order_by(Site.name), PaginationParams(page=3, limit=2),
        )
        assert [s.name for s in result.data] == ["Site 4"]
        assert result.meta.total == 5
        assert result.meta.has_next is False

    async def test_limit_is_capped(self, client, worker):
        resp = await client.get(
            "/api/v1/sites/", params={"limit": 101}, headers=await auth_headers_for(worker),
        )
        assert resp.status_code == 422


# ═════════════════════════════════════════════════════════════════════
# ERROR BODY TESTS
# ═════════════════════════════════════════════════════════════════════


class TestProblemDetail:
    async def test_not_found_body(self):
        body = _build_problem_detail(NotFoundException("Site", 42), _request())
        assert body == {
            "type": "https://tmpaysage.fr/errors/not-found",
            "title": "Site Not Found",
            "status": 404,
            "detail": "Site with id '42' does not exist.",
            "instance": "/api/v1/sites/42",
        }

    async def test_code_and_errors_included(self):
        exc = BadRequestException("Too big", code="FILE_TOO_LARGE", errors={"files": ["too big"]})
        body = _build_problem_detail(exc, _request("/api/v1/conversations/x/upload"))
        assert body["code"] == "FILE_TOO_LARGE"
        assert body["errors"] == {"files": ["too big"]}

    async def test_request_validation_error_shape(self, client, admin):
        resp = await client.post(
            "/api/v1/sites/", json={"name": ""}, headers=await auth_headers_for(admin),
        )
        assert resp.status_code == 422
        assert resp.headers["content-type"].startswith("application/problem+json")
        body = resp.json()
        assert body["title"] == "Validation Error"
        assert "city" in body["errors"]


async def test_health(client):
    resp = await client.get("/api/v1/health")
    assert resp.status_code == 200
    assert resp.json()["status"] == "healthy"
    assert resp.json()["environment"] == "development"
