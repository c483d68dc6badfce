"""Workshop routing — transfer of new requests and team notifications."""

from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timezone

from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.common.constants import InterventionStatus, UserRole
from site_manager.interventions.models import InterventionLogEntry, InterventionRequest
from site_manager.interventions.schemas import InterventionOut
from site_manager.mail.service import EmailService
from site_manager.realtime.manager import manager
from site_manager.users.models import User
from site_manager.users.service import UserService

logger = logging.getLogger(__name__)


def add_log_entry(
    request: InterventionRequest,
    action: str,
    actor: User,
    notes: str | None = None,
) -> InterventionLogEntry:
    entry = InterventionLogEntry(
        action=action,
        performed_by_id=actor.id,
        performed_by=actor,
        notes=notes[:500] if notes else None,
        timestamp=datetime.now(timezone.utc),
    )
    request.log.append(entry)
    return entry


def transfer_to_workshop(request: InterventionRequest, actor: User) -> None:
    """Move a freshly submitted request into the workshop queue."""
    request.status = InterventionStatus.transferred_to_workshop
    request.workshop_transferred_at = datetime.now(timezone.utc)
    add_log_entry(
        request,
        "Transferred to Workshop",
        actor,
        "Request automatically transferred to workshop",
    )


async def email_workshop_team(
    db: AsyncSession,
    request: InterventionRequest,
    submitter: User,
) -> int:
    """Email every active workshop member; returns how many were delivered."""
    team = await UserService.list_active_by_role(db, UserRole.workshop)
    if not team:
        logger.warning("No active workshop users to notify for request %s", request.id)
        return 0

    results = await asyncio.gather(*(
        EmailService.send_intervention_email(member.email, request, submitter, request.site)
        for member in team
    ))
    delivered = sum(1 for ok in results if ok)
    logger.info(
        "Workshop email notifications for %s: %d/%d sent",
        request.id, delivered, len(team),
    )
    return delivered


async def announce_new_request(db: AsyncSession, request: InterventionRequest) -> None:
    """Push ``intervention:new`` to workshop members and administrators."""
    recipients = await UserService.list_active_by_role(
        db, UserRole.workshop, UserRole.administrator,
    )
    payload = {
        "request": InterventionOut.model_validate(request).model_dump(),
        "message": f"New intervention request: {request.title}",
        "is_emergency": request.is_emergency,
    }
    await manager.emit_to_users((u.id for u in recipients), "intervention:new", payload)
