"""Conversation service layer — shared by the HTTP routes and socket handlers."""

from __future__ import annotations

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Optional, Sequence

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from site_manager.common.constants import ConversationType, MessageStatus, MessageType
from site_manager.common.exceptions import (
    BadRequestException,
    ForbiddenException,
    NotFoundException,
)
from site_manager.common.filters import LIKE_ESCAPE, contains_pattern
from site_manager.common.pagination import PaginatedResponse, PaginationParams, paginate
from site_manager.conversations.models import (
    Conversation,
    ConversationParticipant,
    Message,
)
from site_manager.conversations.schemas import (
    ConversationCreate,
    ConversationSummary,
    MessageOut,
)
from site_manager.realtime.manager import manager
from site_manager.users.models import User
from site_manager.users.schemas import UserBrief

logger = logging.getLogger(__name__)

CONVERSATION_LIST_LIMIT = 50
DEFAULT_GROUP_NAME = "New Group"


def message_type_for(mime_type: str) -> MessageType:
    """Message type implied by an attachment's MIME type."""
    if mime_type.startswith("image/"):
        return MessageType.image
    if mime_type.startswith("video/"):
        return MessageType.video
    if mime_type.startswith("audio/"):
        return MessageType.audio
    return MessageType.document


def default_group_name(conversation: Conversation) -> Optional[str]:
    count = len(conversation.participant_links)
    if conversation.type == ConversationType.group and count > 2:
        return f"Group Chat ({count} members)"
    return None


class ConversationService:
    """Business logic for conversations and messages."""

    # ── Conversations ───────────────────────────────────────────────

    @staticmethod
    async def get_conversation(db: AsyncSession, conversation_id: uuid.UUID) -> Conversation:
        result = await db.execute(
            select(Conversation)
            .where(Conversation.id == conversation_id)
            .execution_options(populate_existing=True)
        )
        conversation = result.scalars().unique().first()
        if conversation is None:
            raise NotFoundException("Conversation", conversation_id)
        return conversation

    @staticmethod
    def ensure_participant(conversation: Conversation, user: User) -> None:
        if not conversation.is_participant(user.id):
            raise ForbiddenException("You are not a participant in this conversation")

    @staticmethod
    async def get_for_participant(
        db: AsyncSession,
        conversation_id: uuid.UUID,
        user: User,
    ) -> Conversation:
        conversation = await ConversationService.get_conversation(db, conversation_id)
        ConversationService.ensure_participant(conversation, user)
        return conversation

    @staticmethod
    async def active_ids_for_user(db: AsyncSession, user_id: uuid.UUID) -> list[uuid.UUID]:
        result = await db.execute(
            select(Conversation.id)
            .join(ConversationParticipant)
            .where(
                ConversationParticipant.user_id == user_id,
                Conversation.is_active.is_(True),
            )
        )
        return list(result.scalars().all())

    @staticmethod
    async def list_for_user(db: AsyncSession, user: User) -> list[ConversationSummary]:
        result = await db.execute(
            select(Conversation)
            .join(ConversationParticipant)
            .where(
                ConversationParticipant.user_id == user.id,
                Conversation.is_active.is_(True),
            )
            .order_by(Conversation.last_activity.desc())
            .limit(CONVERSATION_LIST_LIMIT)
        )
        conversations = list(result.scalars().unique().all())
        unread = await ConversationService.unread_counts(db, user.id, [c.id for c in conversations])

        summaries = []
        for conversation in conversations:
            summary = ConversationSummary.model_validate(conversation)
            summary.unread_count = unread.get(conversation.id, 0)
            if conversation.type == ConversationType.direct:
                other = next((p for p in conversation.participants if p.id != user.id), None)
                if other is not None:
                    summary.other_participant = UserBrief.model_validate(other)
            if link := conversation.link_for(user.id):
                summary.is_pinned = link.is_pinned
                summary.is_archived = link.is_archived
            summaries.append(summary)
        return summaries

    @staticmethod
    async def find_direct(
        db: AsyncSession,
        user_id: uuid.UUID,
        other_id: uuid.UUID,
    ) -> Optional[Conversation]:
        pair = (
            select(ConversationParticipant.conversation_id)
            .where(ConversationParticipant.user_id.in_([user_id, other_id]))
            .group_by(ConversationParticipant.conversation_id)
            .having(func.count() == 2)
        )
        result = await db.execute(
            select(Conversation)
            .where(
                Conversation.type == ConversationType.direct,
                Conversation.id.in_(pair),
            )
            .limit(1)
        )
        return result.scalars().unique().first()

    @staticmethod
    async def create_conversation(
        db: AsyncSession,
        user: User,
        body: ConversationCreate,
    ) -> tuple[Conversation, bool]:
        """Return ``(conversation, created)``; direct pairs are reused."""
        target_id = body.target_id
        if target_id is None:
            raise BadRequestException("Participant ID is required", code="MISSING_PARTICIPANT")

        target = (await db.execute(select(User).where(User.id == target_id))).scalars().first()
        if target is None:
            raise NotFoundException("Participant", target_id)

        if body.type == ConversationType.direct:
            if target.id == user.id:
                raise BadRequestException(
                    "Cannot start a direct conversation with yourself", code="SELF_CONVERSATION",
                )
            existing = await ConversationService.find_direct(db, user.id, target.id)
            if existing is not None:
                return existing, False

        conversation = Conversation(
            type=body.type,
            name=body.name,
            description=body.description,
            created_by_id=user.id,
            created_by=user,
            participant_links=[],
        )
        conversation.add_participant(user)
        conversation.add_participant(target)
        if body.type == ConversationType.group:
            for extra_id in body.participants[1:]:
                extra = (await db.execute(select(User).where(User.id == extra_id))).scalars().first()
                if extra is None:
                    raise NotFoundException("Participant", extra_id)
                conversation.add_participant(extra)
            conversation.name = conversation.name or default_group_name(conversation) or DEFAULT_GROUP_NAME

        db.add(conversation)
        await db.flush()
        logger.info("Conversation %s created by %s", conversation.id, user.id)
        conversation = await ConversationService.get_conversation(db, conversation.id)
        for participant_id in conversation.participant_ids:
            manager.join_user_to_room(participant_id, f"conversation:{conversation.id}")
        return conversation, True

    # ── Messages ────────────────────────────────────────────────────

    @staticmethod
    async def get_message(db: AsyncSession, message_id: uuid.UUID) -> Message:
        result = await db.execute(select(Message).where(Message.id == message_id))
        message = result.scalars().unique().first()
        if message is None:
            raise NotFoundException("Message", message_id)
        return message

    @staticmethod
    async def list_messages(
        db: AsyncSession,
        conversation: Conversation,
        params: PaginationParams,
    ) -> PaginatedResponse:
        query = (
            select(Message)
            .where(Message.conversation_id == conversation.id, Message.is_deleted.is_(False))
            .order_by(Message.created_at.desc())
        )
        return await paginate(db, query, params, schema=MessageOut)

    @staticmethod
    async def search_messages(
        db: AsyncSession,
        conversation: Conversation,
        q: str,
        params: PaginationParams,
    ) -> PaginatedResponse:
        if not q or not q.strip():
            raise BadRequestException("Search query is required", code="MISSING_QUERY")
        query = (
            select(Message)
            .where(
                Message.conversation_id == conversation.id,
                Message.is_deleted.is_(False),
                Message.content.ilike(contains_pattern(q.strip()), escape=LIKE_ESCAPE),
            )
            .order_by(Message.created_at.desc())
        )
        return await paginate(db, query, params, schema=MessageOut)

    @staticmethod
    async def create_message(
        db: AsyncSession,
        conversation: Conversation,
        sender: User,
        *,
        content: str = "",
        type: MessageType = MessageType.text,
        attachments: Sequence[dict[str, Any]] = (),
        reply_to_id: Optional[uuid.UUID] = None,
        metadata: Optional[dict[str, Any]] = None,
    ) -> Message:
        content = (content or "").strip()
        if not content and not attachments:
            raise BadRequestException(
                "Message content or files are required", code="EMPTY_CONTENT_AND_NO_FILES",
            )

        if attachments:
            type = message_type_for(attachments[0].get("mime_type", ""))
        elif content and type not in (MessageType.email, MessageType.system):
            type = MessageType.text

        if reply_to_id is not None:
            parent = await db.get(Message, reply_to_id)
            if parent is None or parent.conversation_id != conversation.id:
                raise BadRequestException(
                    "Replied message does not belong to this conversation", code="INVALID_REPLY",
                )

        message = Message(
            conversation_id=conversation.id,
            sender_id=sender.id,
            content=content,
            type=type,
            status=MessageStatus.sent,
            attachments=list(attachments),
            reply_to_id=reply_to_id,
            meta=dict(metadata or {}),
        )
        db.add(message)
        await db.flush()

        conversation.last_message_id = message.id
        conversation.last_activity = datetime.now(timezone.utc)
        await db.flush()
        return await ConversationService.get_message(db, message.id)

    @staticmethod
    async def delete_message(
        db: AsyncSession,
        conversation_id: uuid.UUID,
        message_id: uuid.UUID,
        user: User,
    ) -> Message:
        message = await ConversationService.get_message(db, message_id)
        if message.conversation_id != conversation_id:
            raise BadRequestException(
                "Message does not belong to this conversation", code="WRONG_CONVERSATION",
            )
        if message.sender_id != user.id:
            raise ForbiddenException("You can only delete your own messages")
        message.is_deleted = True
        message.deleted_at = datetime.now(timezone.utc)
        await db.flush()
        return message

    @staticmethod
    async def mark_delivered(
        db: AsyncSession,
        conversation_id: uuid.UUID,
        user_id: uuid.UUID,
    ) -> int:
        """Flag other people's ``sent`` messages as ``delivered``."""
        result = await db.execute(
            update(Message)
            .where(
                Message.conversation_id == conversation_id,
                Message.sender_id != user_id,
                Message.status == MessageStatus.sent,
            )
            .values(status=MessageStatus.delivered)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    @staticmethod
    async def mark_read(db: AsyncSession, message: Message, user: User) -> Message:
        if message.sender_id != user.id and not message.is_read_by(user.id):
            message.mark_read(user.id)
            await db.flush()
        return message

    @staticmethod
    async def react(
        db: AsyncSession,
        message: Message,
        user: User,
        emoji: str,
        action: str,
    ) -> Message:
        if action == "add":
            message.add_reaction(emoji, user.id)
        else:
            message.remove_reaction(emoji, user.id)
        await db.flush()
        return message

    # ── Counters ────────────────────────────────────────────────────

    @staticmethod
    async def unread_counts(
        db: AsyncSession,
        user_id: uuid.UUID,
        conversation_ids: Sequence[uuid.UUID],
    ) -> dict[uuid.UUID, int]:
        """Messages from others that *user_id* has not read, per conversation."""
        if not conversation_ids:
            return {}
        result = await db.execute(
            select(Message.conversation_id, Message.read_by).where(
                Message.conversation_id.in_(conversation_ids),
                Message.sender_id != user_id,
                Message.is_deleted.is_(False),
            )
        )
        counts: dict[uuid.UUID, int] = {}
        key = str(user_id)
        for conversation_id, read_by in result.all():
            if key not in (read_by or {}):
                counts[conversation_id] = counts.get(conversation_id, 0) + 1
        return counts

    @staticmethod
    async def unread_total(db: AsyncSession, user_id: uuid.UUID) -> int:
        ids = await ConversationService.active_ids_for_user(db, user_id)
        return sum((await ConversationService.unread_counts(db, user_id, ids)).values())

    # ── Notifications ───────────────────────────────────────────────

    @staticmethod
    def new_message_payload(conversation: Conversation, message: Message) -> dict[str, Any]:
        return {
            "conversation_id": conversation.id,
            "message": MessageOut.model_validate(message).model_dump(),
            "sender": UserBrief.model_validate(message.sender).model_dump(),
        }

    @staticmethod
    async def notify_new_message(conversation: Conversation, message: Message) -> None:
        """``message:new`` to the room and to every other participant's own room."""
        payload = ConversationService.new_message_payload(conversation, message)
        await manager.emit_to_conversation(conversation.id, "message:new", payload)
        others = [pid for pid in conversation.participant_ids if pid != message.sender_id]
        await manager.emit_to_users(others, "message:new", payload)
