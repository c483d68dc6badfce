"""Conversations router — chat threads, messages and media uploads."""

from __future__ import annotations

import uuid
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends, File, Form, Query, Response, UploadFile
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.auth.dependencies import get_current_user
from site_manager.common.exceptions import BadRequestException
from site_manager.common.pagination import PaginatedResponse, PaginationParams, pagination
from site_manager.conversations.schemas import (
    ConversationCreate,
    ConversationOut,
    ConversationSummary,
    MediaUploadResponse,
    MessageOut,
)
from site_manager.conversations.service import ConversationService
from site_manager.database import get_db
from site_manager.media.upload import announce_media_complete, discard_processed, process_uploads
from site_manager.realtime.manager import manager
from site_manager.users.models import User

router = APIRouter(prefix="", tags=["conversations"])

MESSAGE_PAGE_SIZE = 50
MEDIA_PLACEHOLDER = "[Media]"


# ── GET / ────────────────────────────────────────────────────────────

@router.get("/", response_model=list[ConversationSummary])
async def list_conversations(
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    return await ConversationService.list_for_user(db, user)


# ── POST / — create or reuse ─────────────────────────────────────────

@router.post("/", response_model=ConversationOut, status_code=201)
async def create_conversation(
    body: ConversationCreate,
    response: Response,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation, created = await ConversationService.create_conversation(db, user, body)
    if not created:
        response.status_code = 200
    return ConversationOut.model_validate(conversation)


# ── GET /{conversation_id}/messages ──────────────────────────────────

@router.get("/{conversation_id}/messages", response_model=PaginatedResponse[MessageOut])
async def list_messages(
    conversation_id: uuid.UUID,
    params: PaginationParams = Depends(pagination(MESSAGE_PAGE_SIZE)),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation = await ConversationService.get_for_participant(db, conversation_id, user)
    return await ConversationService.list_messages(db, conversation, params)


# ── POST /{conversation_id}/messages ─────────────────────────────────

@router.post("/{conversation_id}/messages", response_model=MessageOut, status_code=201)
async def send_message(
    conversation_id: uuid.UUID,
    content: str = Form(""),
    reply_to: Optional[uuid.UUID] = Form(None),
    files: Optional[list[UploadFile]] = File(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation = await ConversationService.get_for_participant(db, conversation_id, user)
    if not content.strip() and not any(f.filename for f in files or ()):
        raise BadRequestException(
            "Message content or files are required", code="EMPTY_CONTENT_AND_NO_FILES",
        )

    processed = await process_uploads(conversation.id, files)
    try:
        message = await ConversationService.create_message(
            db,
            conversation,
            user,
            content=content,
            attachments=[f.to_attachment() for f in processed],
            reply_to_id=reply_to,
        )
        await db.commit()
    except Exception:
        discard_processed(processed)
        raise
    await ConversationService.notify_new_message(conversation, message)
    if processed:
        await announce_media_complete(
            conversation.id, processed, uploaded_by=user.id, has_content=bool(content.strip()),
        )
    return MessageOut.model_validate(message)


# ── POST /{conversation_id}/upload ───────────────────────────────────

@router.post("/{conversation_id}/upload", response_model=MediaUploadResponse, status_code=201)
async def upload_media(
    conversation_id: uuid.UUID,
    content: str = Form(MEDIA_PLACEHOLDER),
    reply_to: Optional[uuid.UUID] = Form(None),
    files: Optional[list[UploadFile]] = File(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    conversation = await ConversationService.get_for_participant(db, conversation_id, user)
    if not any(f.filename for f in files or ()):
        raise BadRequestException("No files uploaded", code="NO_FILES")

    processed = await process_uploads(conversation.id, files)
    try:
        message = await ConversationService.create_message(
            db,
            conversation,
            user,
            content=content.strip() or MEDIA_PLACEHOLDER,
            attachments=[f.to_attachment() for f in processed],
            reply_to_id=reply_to,
        )
        await db.commit()
    except Exception:
        discard_processed(processed)
        raise

    await ConversationService.notify_new_message(conversation, message)
    await manager.emit_to_conversation(
        conversation.id, "new_message", MessageOut.model_validate(message).model_dump(),
    )
    await announce_media_complete(
        conversation.id, processed, uploaded_by=user.id, has_content=content != MEDIA_PLACEHOLDER,
    )
    return MediaUploadResponse(
        message=MessageOut.model_validate(message),
        files=[f.to_attachment() for f in processed],
        timestamp=datetime.now(timezone.utc),
    )


# ── DELETE /{conversation_id}/messages/{message_id} ──────────────────

@router.delete("/{conversation_id}/messages/{message_id}")
async def delete_message(
    conversation_id: uuid.UUID,
    message_id: uuid.UUID,
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    await ConversationService.delete_message(db, conversation_id, message_id, user)
    await db.commit()
    await manager.emit_to_conversation(conversation_id, "message:deleted", {
        "message_id": message_id,
        "conversation_id": conversation_id,
    })
    return {"message": "Message deleted successfully"}


# ── GET /{conversation_id}/search ────────────────────────────────────

@router.get("/{conversation_id}/search", response_model=PaginatedResponse[MessageOut])
async def search_messages(
    conversation_id: uuid.UUID,
    q: Optional[str] = Query(None, max_length=200),
    params: PaginationParams = Depends(pagination()),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    if not q or not q.strip():
        raise BadRequestException("Search query is required", code="MISSING_QUERY")
    conversation = await ConversationService.get_for_participant(db, conversation_id, user)
    return await ConversationService.search_messages(db, conversation, q, params)
