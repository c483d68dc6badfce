"""Conversation and message Pydantic schemas."""


import uuid
from datetime import datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field

from site_manager.common.constants import ConversationType, MessageStatus, MessageType
from site_manager.users.schemas import UserBrief


# ── Attachments ─────────────────────────────────────────────────────

class AttachmentOut(BaseModel):
    """File descriptor stored on a message."""

    file_name: str
    original_name: str
    mime_type: str
    size: int
    url: str
    thumbnail_url: Optional[str] = None
    category: Optional[str] = None
    metadata: dict[str, Any] = {}


# ── Messages ────────────────────────────────────────────────────────

class ReplyPreview(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    content: str
    type: MessageType
    sender: UserBrief


class MessageOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    conversation_id: uuid.UUID
    sender: UserBrief
    content: str
    type: MessageType
    status: MessageStatus
    attachments: list[AttachmentOut] = []
    reply_to: Optional[ReplyPreview] = None
    reactions: dict[str, list[str]] = {}
    read_by: dict[str, str] = {}
    metadata: dict[str, Any] = Field(default_factory=dict, validation_alias="meta")
    edited_at: Optional[datetime] = None
    is_deleted: bool = False
    created_at: datetime
    updated_at: datetime


class SocketMessageSend(BaseModel):
    """Payload of the ``message:send`` socket event."""

    conversation_id: uuid.UUID
    content: str = Field("", max_length=5000)
    attachments: list[dict[str, Any]] = []
    reply_to: Optional[uuid.UUID] = None


class ReactionRequest(BaseModel):
    message_id: uuid.UUID
    emoji: str = Field(..., min_length=1, max_length=16)
    action: Literal["add", "remove"] = "add"


class ReadReceipt(BaseModel):
    message_id: uuid.UUID
    conversation_id: Optional[uuid.UUID] = None


# ── Conversations ───────────────────────────────────────────────────

class ConversationCreate(BaseModel):
    """Accepts either ``participant_id`` or a ``participants`` list."""

    participant_id: Optional[uuid.UUID] = None
    participants: list[uuid.UUID] = []
    type: ConversationType = ConversationType.direct
    name: Optional[str] = Field(None, max_length=100)
    description: Optional[str] = Field(None, max_length=500)

    @property
    def target_id(self) -> Optional[uuid.UUID]:
        if self.participant_id is not None:
            return self.participant_id
        return self.participants[0] if self.participants else None


class ConversationOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: uuid.UUID
    type: ConversationType
    name: Optional[str] = None
    description: Optional[str] = None
    participants: list[UserBrief]
    created_by: UserBrief
    last_message: Optional[MessageOut] = None
    last_activity: datetime
    is_active: bool
    created_at: datetime
    updated_at: datetime


class ConversationSummary(ConversationOut):
    unread_count: int = 0
    other_participant: Optional[UserBrief] = None
    is_pinned: bool = False
    is_archived: bool = False


class MediaUploadResponse(BaseModel):
    message: MessageOut
    files: list[AttachmentOut]
    timestamp: datetime
