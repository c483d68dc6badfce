"""Interventions module tests — submission, workshop routing, visibility, comments."""

from __future__ import annotations

import uuid
from unittest.mock import AsyncMock, patch

from site_manager.common.constants import UserRole
from site_manager.mail.service import render_intervention_email
from tests.conftest import auth_headers_for, make_site, make_user

REQUEST = {
    "title": "Tondeuse autoportée en panne",
    "description": "Le moteur cale au démarrage, fumée noire.",
    "priority": "high",
    "equipment_location": "Dépôt Est",
}


async def _submit(client, user, **overrides) -> dict:
    with patch(
        "site_manager.interventions.workshop.EmailService.send_intervention_email",
        new_callable=AsyncMock,
        return_value=True,
    ):
        resp = await client.post(
            "/api/v1/interventions/",
            json={**REQUEST, **overrides},
            headers=await auth_headers_for(user),
        )
    assert resp.status_code == 201, resp.text
    return resp.json()


# ── Submission / workshop routing ───────────────────────────────────


async def test_submit_is_transferred_to_workshop(client, worker):
    data = await _submit(client, worker)
    assert data["status"] == "transferred_to_workshop"
    assert data["workshop_transferred_at"] is not None
    assert data["requested_by"]["id"] == str(worker.id)
    assert [entry["action"] for entry in data["log"]] == [
        "Request Submitted",
        "Transferred to Workshop",
    ]


async def test_submit_emails_each_workshop_member(client, worker, workshop_user):
    second = await make_user(role=UserRole.workshop)
    await make_user(role=UserRole.workshop, is_active=False)

    with patch(
        "site_manager.interventions.workshop.EmailService.send_intervention_email",
        new_callable=AsyncMock,
        return_value=True,
    ) as send:
        resp = await client.post(
            "/api/v1/interventions/", json=REQUEST, headers=await auth_headers_for(worker),
        )
    assert resp.status_code == 201
    recipients = sorted(call.args[0] for call in send.await_args_list)
    assert recipients == sorted([workshop_user.email, second.email])


async def test_submit_announces_to_workshop_and_admins(
    client, worker, workshop_user, admin, connect_socket,
):
    workshop_socket, _ = connect_socket(workshop_user.id)
    admin_socket, _ = connect_socket(admin.id)
    worker_socket, _ = connect_socket(worker.id)

    await _submit(client, worker, is_emergency=True)

    frames = workshop_socket.events("intervention:new")
    assert len(frames) == 1
    assert frames[0]["data"]["is_emergency"] is True
    assert len(admin_socket.events("intervention:new")) == 1
    assert worker_socket.events("intervention:new") == []


async def test_submit_with_site(client, project_manager):
    site = await make_site(project_manager.id)
    data = await _submit(client, project_manager, site_id=str(site.id))
    assert data["site"]["id"] == str(site.id)


async def test_submit_unknown_site_is_422(client, worker):
    resp = await client.post(
        "/api/v1/interventions/",
        json={**REQUEST, "site_id": str(uuid.uuid4())},
        headers=await auth_headers_for(worker),
    )
    assert resp.status_code == 422


async def test_submit_forbidden_for_hr(client, hr):
    resp = await client.post(
        "/api/v1/interventions/", json=REQUEST, headers=await auth_headers_for(hr),
    )
    assert resp.status_code == 403


# ── Visibility ──────────────────────────────────────────────────────


async def test_worker_sees_only_own_requests(client, worker, other_worker):
    await _submit(client, worker)
    await _submit(client, other_worker)

    resp = await client.get("/api/v1/interventions/", headers=await auth_headers_for(worker))
    assert resp.status_code == 200
    assert resp.json()["meta"]["total"] == 1


async def test_project_manager_sees_requests_on_managed_sites(client, worker, project_manager):
    site = await make_site(project_manager.id)
    on_site = await _submit(client, worker, site_id=str(site.id))
    await _submit(client, worker)

    headers = await auth_headers_for(project_manager)
    resp = await client.get("/api/v1/interventions/", headers=headers)
    assert [r["id"] for r in resp.json()["data"]] == [on_site["id"]]

    resp = await client.get(f"/api/v1/interventions/{on_site['id']}", headers=headers)
    assert resp.status_code == 200


async def test_other_worker_cannot_read_request(client, worker, other_worker):
    data = await _submit(client, worker)
    resp = await client.get(
        f"/api/v1/interventions/{data['id']}", headers=await auth_headers_for(other_worker),
    )
    assert resp.status_code == 403


async def test_emergencies_listed_first(client, worker, admin):
    await _submit(client, worker, title="Routine")
    await _submit(client, worker, title="Urgence", is_emergency=True)
    await _submit(client, worker, title="Autre routine")

    resp = await client.get("/api/v1/interventions/", headers=await auth_headers_for(admin))
    assert resp.json()["data"][0]["title"] == "Urgence"


async def test_stats(client, worker, admin):
    await _submit(client, worker, priority="urgent")
    await _submit(client, worker, priority="low")

    resp = await client.get("/api/v1/interventions/stats", headers=await auth_headers_for(admin))
    assert resp.status_code == 200
    data = resp.json()
    assert data["total"] == 2
    assert data["by_status"]["transferred_to_workshop"] == 2
    assert data["by_priority"]["urgent"] == 1
    assert data["by_priority"]["medium"] == 0
    assert len(data["recent"]) == 2


# ── Workshop updates ────────────────────────────────────────────────


async def test_workshop_completes_request(client, worker, workshop_user, connect_socket):
    data = await _submit(client, worker)
    worker_socket, _ = connect_socket(worker.id)

    resp = await client.put(
        f"/api/v1/interventions/{data['id']}/status",
        json={"status": "completed", "notes": "Bougie changée", "workshop_notes": "RAS"},
        headers=await auth_headers_for(workshop_user),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "completed"
    assert body["actual_completion_date"] is not None
    assert body["workshop_notes"] == "RAS"
    assert body["log"][-1]["action"] == "Status Updated to Completed"

    frames = worker_socket.events("intervention:statusUpdate")
    assert len(frames) == 1
    assert frames[0]["data"]["status"] == "completed"


async def test_reject_uses_reason_or_notes(client, worker, admin):
    data = await _submit(client, worker)
    resp = await client.put(
        f"/api/v1/interventions/{data['id']}/status",
        json={"status": "rejected", "notes": "Matériel hors garantie"},
        headers=await auth_headers_for(admin),
    )
    assert resp.json()["rejection_reason"] == "Matériel hors garantie"


async def test_status_update_forbidden_for_worker(client, worker):
    data = await _submit(client, worker)
    resp = await client.put(
        f"/api/v1/interventions/{data['id']}/status",
        json={"status": "completed"},
        headers=await auth_headers_for(worker),
    )
    assert resp.status_code == 403


async def test_assign_workshop_member(client, worker, workshop_user, admin, connect_socket):
    data = await _submit(client, worker)
    workshop_socket, _ = connect_socket(workshop_user.id)

    resp = await client.put(
        f"/api/v1/interventions/{data['id']}/assign",
        json={"user_id": str(workshop_user.id)},
        headers=await auth_headers_for(admin),
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["status"] == "in_progress"
    assert body["assigned_to"]["id"] == str(workshop_user.id)
    assert body["log"][-1]["notes"] == "Assigned to Wes Atelier"
    assert len(workshop_socket.events("intervention:assigned")) == 1


async def test_assign_non_workshop_user_is_422(client, worker, other_worker, admin):
    data = await _submit(client, worker)
    resp = await client.put(
        f"/api/v1/interventions/{data['id']}/assign",
        json={"user_id": str(other_worker.id)},
        headers=await auth_headers_for(admin),
    )
    assert resp.status_code == 422


# ── Comments ────────────────────────────────────────────────────────


async def test_comment_from_workshop_notifies_requester(
    client, worker, workshop_user, connect_socket,
):
    data = await _submit(client, worker)
    worker_socket, _ = connect_socket(worker.id)

    resp = await client.post(
        f"/api/v1/interventions/{data['id']}/comments",
        json={"text": "  Pièce commandée  "},
        headers=await auth_headers_for(workshop_user),
    )
    assert resp.status_code == 201
    comment = resp.json()
    assert comment["text"] == "Pièce commandée"
    assert comment["is_from_workshop"] is True

    frames = worker_socket.events("intervention:comment")
    assert len(frames) == 1
    assert frames[0]["data"]["comment"]["id"] == comment["id"]

    detail = await client.get(
        f"/api/v1/interventions/{data['id']}", headers=await auth_headers_for(worker),
    )
    assert detail.json()["log"][-1]["action"] == "Comment Added"
    assert len(detail.json()["comments"]) == 1


async def test_blank_comment_is_400(client, worker):
    data = await _submit(client, worker)
    resp = await client.post(
        f"/api/v1/interventions/{data['id']}/comments",
        json={"text": "   "},
        headers=await auth_headers_for(worker),
    )
    assert resp.status_code == 400
    assert resp.json()["code"] == "EMPTY_COMMENT"


async def test_comment_too_long_is_422(client, worker):
    data = await _submit(client, worker)
    resp = await client.post(
        f"/api/v1/interventions/{data['id']}/comments",
        json={"text": "x" * 1001},
        headers=await auth_headers_for(worker),
    )
    assert resp.status_code == 422


# ── Email rendering ─────────────────────────────────────────────────


async def test_render_intervention_email_emergency(worker):
    from datetime import datetime, timezone

    from site_manager.common.constants import InterventionPriority
    from site_manager.interventions.models import InterventionRequest

    request = InterventionRequest(
        id=uuid.uuid4(),
        title="Fuite hydraulique",
        description="Flexible percé sur la mini-pelle",
        priority=InterventionPriority.urgent,
        is_emergency=True,
        equipment_location="Chantier Part-Dieu",
        created_at=datetime(2026, 5, 4, 9, 30, tzinfo=timezone.utc),
    )
    subject, body = render_intervention_email(request, worker)
    assert subject.startswith("🚨 EMERGENCY REQUEST 🚨")
    assert "Fuite hydraulique" in subject
    assert "Priority: 🔴 urgent" in body
    assert "Equipment Location: Chantier Part-Dieu" in body
    assert "Submitted: 2026-05-04 09:30" in body
