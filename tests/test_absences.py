"""Absences module tests — request lifecycle, review, declarations, calendar."""

from __future__ import annotations

import uuid
from datetime import date

from sqlalchemy import select

from site_manager.absences.service import (
    ABSENT_COLOR,
    WORKING_COLOR,
    build_calendar,
    inclusive_day_span,
    shift_months,
)
from site_manager.common.audit import AuditTrail
from site_manager.common.constants import AbsenceStatus, AbsenceType
from tests.conftest import TestSessionFactory, auth_headers_for

VACATION = {
    "type": "vacation",
    "start_date": "2026-07-06",
    "end_date": "2026-07-10",
    "reason": "Congés d'été",
}


async def _submit(client, user, **overrides) -> dict:
    resp = await client.post(
        "/api/v1/absences/",
        json={**VACATION, **overrides},
        headers=await auth_headers_for(user),
    )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Submit ──────────────────────────────────────────────────────────


async def test_submit_absence_is_pending(client, worker):
    data = await _submit(client, worker)
    assert data["status"] == "pending"
    assert data["request_type"] == "request"
    assert data["user"]["id"] == str(worker.id)
    assert float(data["day_count"]) == 5


async def test_submit_absence_notifies_reviewers(client, worker, hr, connect_socket):
    hr_socket, _ = connect_socket(hr.id)
    worker_socket, _ = connect_socket(worker.id)

    await _submit(client, worker)

    frames = hr_socket.events("absence:new")
    assert len(frames) == 1
    assert "Walid Worker" in frames[0]["data"]["message"]
    assert worker_socket.events("absence:new") == []


async def test_submit_end_before_start_is_422(client, worker):
    resp = await client.post(
        "/api/v1/absences/",
        json={**VACATION, "end_date": "2026-07-01"},
        headers=await auth_headers_for(worker),
    )
    assert resp.status_code == 422


async def test_partial_day_requires_times(client, worker):
    headers = await auth_headers_for(worker)
    resp = await client.post(
        "/api/v1/absences/",
        json={**VACATION, "end_date": "2026-07-06", "is_full_day": False},
        headers=headers,
    )
    assert resp.status_code == 422

    resp = await client.post(
        "/api/v1/absences/",
        json={
            **VACATION,
            "end_date": "2026-07-06",
            "is_full_day": False,
            "start_time": "08:00",
            "end_time": "12:00",
            "day_count": "0.5",
        },
        headers=headers,
    )
    assert resp.status_code == 201
    assert float(resp.json()["day_count"]) == 0.5


# ── Listing / access ────────────────────────────────────────────────


async def test_my_absences_only_returns_own(client, worker, other_worker):
    await _submit(client, worker)
    await _submit(client, other_worker)

    resp = await client.get("/api/v1/absences/my-absences", headers=await auth_headers_for(worker))
    assert resp.status_code == 200
    assert resp.json()["meta"]["total"] == 1
    assert resp.json()["data"][0]["user_id"] == str(worker.id)


async def test_list_all_requires_reviewer(client, worker, hr):
    await _submit(client, worker)
    resp = await client.get("/api/v1/absences/", headers=await auth_headers_for(worker))
    assert resp.status_code == 403

    resp = await client.get(
        "/api/v1/absences/", params={"type": "vacation"}, headers=await auth_headers_for(hr),
    )
    assert resp.status_code == 200
    assert resp.json()["meta"]["total"] == 1


async def test_pending_queue(client, worker, hr):
    await _submit(client, worker)
    resp = await client.get("/api/v1/absences/pending", headers=await auth_headers_for(hr))
    assert resp.status_code == 200
    assert resp.json()["meta"]["total"] == 1


async def test_other_users_absence_is_forbidden(client, worker, other_worker):
    absence = await _submit(client, worker)
    headers = await auth_headers_for(other_worker)

    resp = await client.get(f"/api/v1/absences/{absence['id']}", headers=headers)
    assert resp.status_code == 403

    resp = await client.get(f"/api/v1/absences/user/{worker.id}", headers=headers)
    assert resp.status_code == 403


async def test_unknown_absence_is_404(client, hr):
    resp = await client.get(f"/api/v1/absences/{uuid.uuid4()}", headers=await auth_headers_for(hr))
    assert resp.status_code == 404


# ── Review ──────────────────────────────────────────────────────────


async def test_approve_absence(client, worker, hr, connect_socket):
    absence = await _submit(client, worker)
    worker_socket, _ = connect_socket(worker.id)

    resp = await client.put(
        f"/api/v1/absences/{absence['id']}/approve", headers=await auth_headers_for(hr),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "approved"
    assert data["approved_by"]["id"] == str(hr.id)
    assert data["approved_at"] is not None

    frames = worker_socket.events("absence:approved")
    assert len(frames) == 1
    assert frames[0]["data"]["absence"]["id"] == absence["id"]

    async with TestSessionFactory() as session:
        audit = (
            await session.execute(select(AuditTrail).where(AuditTrail.action == "approve"))
        ).scalars().one()
        assert str(audit.entity_id) == absence["id"]


async def test_reject_absence_defaults_reason(client, worker, admin):
    absence = await _submit(client, worker)
    resp = await client.put(
        f"/api/v1/absences/{absence['id']}/reject", headers=await auth_headers_for(admin),
    )
    assert resp.status_code == 200
    assert resp.json()["status"] == "rejected"
    assert resp.json()["rejection_reason"] == "No reason provided"


async def test_reject_absence_with_reason(client, worker, hr):
    absence = await _submit(client, worker)
    resp = await client.put(
        f"/api/v1/absences/{absence['id']}/reject",
        json={"rejection_reason": "Chantier prioritaire cette semaine"},
        headers=await auth_headers_for(hr),
    )
    assert resp.json()["rejection_reason"] == "Chantier prioritaire cette semaine"


async def test_review_twice_is_422(client, worker, hr):
    absence = await _submit(client, worker)
    headers = await auth_headers_for(hr)
    await client.put(f"/api/v1/absences/{absence['id']}/approve", headers=headers)

    resp = await client.put(f"/api/v1/absences/{absence['id']}/reject", headers=headers)
    assert resp.status_code == 422


async def test_worker_cannot_approve(client, worker, other_worker):
    absence = await _submit(client, worker)
    resp = await client.put(
        f"/api/v1/absences/{absence['id']}/approve", headers=await auth_headers_for(other_worker),
    )
    assert resp.status_code == 403


# ── Edit / delete ───────────────────────────────────────────────────


async def test_owner_edits_pending_request(client, worker):
    absence = await _submit(client, worker)
    resp = await client.put(
        f"/api/v1/absences/{absence['id']}",
        json={"end_date": "2026-07-07", "status": "approved"},
        headers=await auth_headers_for(worker),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["end_date"] == "2026-07-07"
    assert float(data["day_count"]) == 2
    # Owners cannot change the status of their own request
    assert data["status"] == "pending"


async def test_switch_to_partial_day_requires_times(client, worker):
    absence = await _submit(client, worker, end_date="2026-07-06")
    headers = await auth_headers_for(worker)

    resp = await client.put(
        f"/api/v1/absences/{absence['id']}", json={"is_full_day": False}, headers=headers,
    )
    assert resp.status_code == 422
    assert "start_time" in resp.json()["errors"]

    resp = await client.put(
        f"/api/v1/absences/{absence['id']}",
        json={"is_full_day": False, "start_time": "14:00", "end_time": "09:00"},
        headers=headers,
    )
    assert resp.status_code == 422
    assert "end_time" in resp.json()["errors"]

    resp = await client.put(
        f"/api/v1/absences/{absence['id']}",
        json={"is_full_day": False, "start_time": "08:00", "end_time": "12:00"},
        headers=headers,
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["is_full_day"] is False
    assert float(data["day_count"]) == 0.5


async def test_owner_cannot_edit_reviewed_request(client, worker, hr):
    absence = await _submit(client, worker)
    await client.put(f"/api/v1/absences/{absence['id']}/approve", headers=await auth_headers_for(hr))

    resp = await client.put(
        f"/api/v1/absences/{absence['id']}",
        json={"reason": "changement"},
        headers=await auth_headers_for(worker),
    )
    assert resp.status_code == 403


async def test_owner_deletes_pending_request(client, worker):
    absence = await _submit(client, worker)
    headers = await auth_headers_for(worker)
    resp = await client.delete(f"/api/v1/absences/{absence['id']}", headers=headers)
    assert resp.status_code == 200

    resp = await client.get(f"/api/v1/absences/{absence['id']}", headers=headers)
    assert resp.status_code == 404


async def test_hr_cannot_delete_others_request(client, worker, hr):
    absence = await _submit(client, worker)
    resp = await client.delete(
        f"/api/v1/absences/{absence['id']}", headers=await auth_headers_for(hr),
    )
    assert resp.status_code == 403


async def test_admin_deletes_reviewed_request(client, worker, admin):
    absence = await _submit(client, worker)
    headers = await auth_headers_for(admin)
    await client.put(f"/api/v1/absences/{absence['id']}/approve", headers=headers)

    resp = await client.delete(f"/api/v1/absences/{absence['id']}", headers=headers)
    assert resp.status_code == 200


# ── Declarations ────────────────────────────────────────────────────


async def test_declare_absence_for_worker(client, hr, worker):
    resp = await client.post(
        "/api/v1/absences/declare",
        json={**VACATION, "type": "sick_leave", "user_id": str(worker.id)},
        headers=await auth_headers_for(hr),
    )
    assert resp.status_code == 201
    data = resp.json()
    assert data["status"] == "declared"
    assert data["request_type"] == "declaration"
    assert data["user_id"] == str(worker.id)
    assert data["approved_by"]["id"] == str(hr.id)


async def test_declare_for_unknown_user_is_404(client, hr):
    resp = await client.post(
        "/api/v1/absences/declare",
        json={**VACATION, "user_id": str(uuid.uuid4())},
        headers=await auth_headers_for(hr),
    )
    assert resp.status_code == 404


# ── History / calendar ──────────────────────────────────────────────


async def test_history_counts_confirmed_absences(client, hr, worker):
    hr_headers = await auth_headers_for(hr)
    await client.post(
        "/api/v1/absences/declare",
        json={**VACATION, "user_id": str(worker.id)},
        headers=hr_headers,
    )
    approved = await _submit(client, worker, start_date="2026-08-03", end_date="2026-08-04")
    await client.put(f"/api/v1/absences/{approved['id']}/approve", headers=hr_headers)
    await _submit(client, worker, start_date="2026-09-01", end_date="2026-09-01")  # still pending

    resp = await client.get(
        f"/api/v1/absences/history/{worker.id}", headers=await auth_headers_for(worker),
    )
    assert resp.status_code == 200
    data = resp.json()
    assert data["stats"]["total_absences"] == 2
    assert float(data["stats"]["total_days"]) == 7
    assert {entry["origin"] for entry in data["absences"]} == {"admin", "user"}


async def test_calendar_marks_absent_weekdays(client, hr, worker):
    await client.post(
        "/api/v1/absences/declare",
        json={**VACATION, "user_id": str(worker.id)},
        headers=await auth_headers_for(hr),
    )
    resp = await client.get(
        f"/api/v1/absences/calendar/{worker.id}",
        params={"start_date": "2026-07-01", "end_date": "2026-07-31"},
        headers=await auth_headers_for(worker),
    )
    assert resp.status_code == 200
    days = {d["date"]: d for d in resp.json()}
    assert days["2026-07-06"]["color"] == ABSENT_COLOR
    assert days["2026-07-10"]["absent"] is True
    assert days["2026-07-13"]["color"] == WORKING_COLOR
    # Weekends are not part of the calendar
    assert "2026-07-11" not in days


async def test_inclusive_day_span():
    assert inclusive_day_span(date(2026, 7, 6), date(2026, 7, 6)) == 1
    assert inclusive_day_span(date(2026, 7, 6), date(2026, 7, 10)) == 5


async def test_shift_months_clamps_day():
    assert shift_months(date(2026, 1, 31), 1) == date(2026, 2, 28)
    assert shift_months(date(2026, 11, 15), 3) == date(2027, 2, 15)
    assert shift_months(date(2026, 2, 10), -3) == date(2025, 11, 10)


async def test_build_calendar_clips_to_window():
    class _Absence:
        id = uuid.uuid4()
        start_date = date(2026, 6, 29)
        end_date = date(2026, 7, 3)
        type = AbsenceType.training
        status = AbsenceStatus.approved
        reason = None

    days = build_calendar(
        [_Absence()], date(2026, 7, 1), date(2026, 7, 3), clip_to_window=True,
    )
    assert [d.date for d in days] == [date(2026, 7, 1), date(2026, 7, 2), date(2026, 7, 3)]
    assert all(d.absent for d in days)
