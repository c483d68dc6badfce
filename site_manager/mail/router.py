"""Mail router — send email on behalf of a user, history and SMTP status."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, UploadFile
from pydantic import EmailStr, TypeAdapter, ValidationError
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.auth.dependencies import get_current_user
from site_manager.common.constants import ConversationType, MessageType
from site_manager.common.exceptions import (
    BadRequestException,
    ServiceUnavailableException,
    ValidationException,
)
from site_manager.common.pagination import PaginatedResponse, PaginationParams, paginate, pagination
from site_manager.config import settings
from site_manager.conversations.models import Message
from site_manager.conversations.schemas import ConversationCreate, MessageOut
from site_manager.conversations.service import ConversationService
from site_manager.database import get_db
from site_manager.mail.providers import EMAIL_PROVIDERS
from site_manager.mail.schemas import MailSendResult, MailStatus, ProviderOut
from site_manager.mail.service import EmailService, MailAttachment
from site_manager.users.models import User

logger = logging.getLogger(__name__)

router = APIRouter(prefix="", tags=["mail"])

HISTORY_PAGE_SIZE = 20

_email_adapter = TypeAdapter(EmailStr)


def _validated_recipient(recipient: str) -> str:
    try:
        return _email_adapter.validate_python(recipient.strip())
    except ValidationError:
        raise ValidationException({"recipient": ["Invalid recipient email address."]}) from None


async def _read_attachments(files: Optional[list[UploadFile]]) -> list[MailAttachment]:
    uploads = [f for f in files or () if f.filename]
    if len(uploads) > settings.MAX_UPLOAD_FILES:
        raise BadRequestException(
            f"Too many attachments. Maximum is {settings.MAX_UPLOAD_FILES}.",
            code="TOO_MANY_FILES",
        )

    limit = settings.MAX_UPLOAD_SIZE_MB * 1024 * 1024
    attachments = []
    for upload in uploads:
        content = await upload.read()
        if len(content) > limit:
            raise BadRequestException(
                f"Attachment {upload.filename} exceeds {settings.MAX_UPLOAD_SIZE_MB}MB",
                code="FILE_TOO_LARGE",
            )
        attachments.append(MailAttachment(
            filename=upload.filename,
            content=content,
            content_type=upload.content_type or "application/octet-stream",
        ))
    return attachments


# ── POST /send ───────────────────────────────────────────────────────

@router.post("/send", response_model=MailSendResult)
async def send_mail(
    recipient: str = Form(...),
    subject: str = Form(..., max_length=255),
    body: str = Form(...),
    attachments: Optional[list[UploadFile]] = File(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    recipient = _validated_recipient(recipient)
    errors: dict[str, list[str]] = {}
    if not subject.strip():
        errors["subject"] = ["Subject is required."]
    if not body.strip():
        errors["body"] = ["Body is required."]
    if errors:
        raise ValidationException(errors)

    files = await _read_attachments(attachments)
    result = await EmailService.send_user_email(
        user, to_email=recipient, subject=subject, body=body, attachments=files,
    )
    if not result.ok:
        raise ServiceUnavailableException(f"Failed to send email: {result.error}")

    sent_at = datetime.now(timezone.utc)
    conversation_id = None
    target = (
        await db.execute(select(User).where(User.email == recipient.lower()))
    ).scalars().first()

    if target is not None and target.id != user.id:
        conversation, _ = await ConversationService.create_conversation(
            db, user, ConversationCreate(participant_id=target.id, type=ConversationType.direct),
        )
        message = await ConversationService.create_message(
            db,
            conversation,
            user,
            content=f"📧 Email sent: {subject}\n\n{body}",
            type=MessageType.email,
            metadata={
                "email_sent": True,
                "email_recipients": [recipient],
                "subject": subject,
                "message_id": result.message_id,
                "attachments": [f.filename for f in files],
            },
        )
        await db.commit()
        await ConversationService.notify_new_message(conversation, message)
        conversation_id = conversation.id

    logger.info("User %s emailed %s (%d attachments)", user.id, recipient, len(files))
    return MailSendResult(
        message_id=result.message_id,
        conversation_id=conversation_id,
        recipient=recipient,
        subject=subject,
        sent_at=sent_at,
        attachment_count=len(files),
    )


# ── GET /history ─────────────────────────────────────────────────────

@router.get("/history", response_model=PaginatedResponse[MessageOut])
async def mail_history(
    params: PaginationParams = Depends(pagination(HISTORY_PAGE_SIZE)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    query = (
        select(Message)
        .where(
            Message.sender_id == user.id,
            Message.type == MessageType.email,
            Message.is_deleted.is_(False),
        )
        .order_by(Message.created_at.desc())
    )
    return await paginate(db, query, params, schema=MessageOut)


# ── GET /status ──────────────────────────────────────────────────────

@router.get("/status", response_model=MailStatus)
async def mail_status(
    verify: bool = Query(False),
    user: User = Depends(get_current_user),
):
    status = MailStatus(**EmailService.status())
    if verify:
        outcome = await EmailService.verify()
        status.verified = outcome.ok
        status.error = outcome.error or None
    return status


# ── GET /providers ───────────────────────────────────────────────────

@router.get("/providers", response_model=list[ProviderOut])
async def list_providers(user: User = Depends(get_current_user)):
    return [
        ProviderOut(provider=provider.value, **info)
        for provider, info in EMAIL_PROVIDERS.items()
    ]
