"""Chat ORM models: Conversation, ConversationParticipant, Message.

JSONB columns (attachments, reactions, read_by, metadata) are replaced with
new containers on every change so SQLAlchemy detects the mutation.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import TYPE_CHECKING, Optional

import sqlalchemy as sa
from sqlalchemy.dialects.postgresql import JSONB, UUID
from sqlalchemy.orm import Mapped, mapped_column, relationship

from site_manager.common.constants import ConversationType, MessageStatus, MessageType
from site_manager.common.models import TimestampMixin, utcnow
from site_manager.database import Base

if TYPE_CHECKING:
    from site_manager.users.models import User


class ConversationParticipant(Base):
    """Membership row carrying per-user conversation flags."""

    __tablename__ = "conversation_participants"

    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("conversations.id", ondelete="CASCADE"),
        primary_key=True,
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("users.id", ondelete="CASCADE"),
        primary_key=True,
    )
    is_pinned: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    is_archived: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    joined_at: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )

    # Relationships
    conversation: Mapped[Conversation] = relationship(back_populates="participant_links")
    user: Mapped[User] = relationship(lazy="joined")


class Conversation(Base, TimestampMixin):
    """Direct (two people) or group chat."""

    __tablename__ = "conversations"
    __table_args__ = (
        sa.Index("ix_conversations_last_activity", "last_activity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    type: Mapped[ConversationType] = mapped_column(
        sa.Enum(ConversationType, name="conversation_type"),
        nullable=False,
        default=ConversationType.direct,
    )
    name: Mapped[Optional[str]] = mapped_column(sa.String(100))
    description: Mapped[Optional[str]] = mapped_column(sa.String(500))
    created_by_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False,
    )
    last_message_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey(
            "messages.id",
            ondelete="SET NULL",
            use_alter=True,
            name="fk_conversations_last_message_id",
        ),
    )
    last_activity: Mapped[datetime] = mapped_column(
        sa.DateTime(timezone=True), nullable=False, default=utcnow,
    )
    is_active: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=True)

    # Relationships
    participant_links: Mapped[list[ConversationParticipant]] = relationship(
        back_populates="conversation",
        cascade="all, delete-orphan",
        lazy="selectin",
    )
    created_by: Mapped[User] = relationship(lazy="joined")
    last_message: Mapped[Optional[Message]] = relationship(
        foreign_keys=[last_message_id],
        post_update=True,
        lazy="selectin",
    )

    @property
    def participants(self) -> list[User]:
        return [link.user for link in self.participant_links]

    @property
    def participant_ids(self) -> list[uuid.UUID]:
        return [link.user_id for link in self.participant_links]

    def is_participant(self, user_id: uuid.UUID) -> bool:
        return user_id in self.participant_ids

    def add_participant(self, user: User) -> None:
        if not self.is_participant(user.id):
            self.participant_links.append(ConversationParticipant(user_id=user.id, user=user))

    def link_for(self, user_id: uuid.UUID) -> Optional[ConversationParticipant]:
        return next((l for l in self.participant_links if l.user_id == user_id), None)

    def __repr__(self) -> str:
        return f"<Conversation {self.id} ({self.type.value})>"


class Message(Base, TimestampMixin):
    """Chat message; attachments are stored as a JSON list of file descriptors."""

    __tablename__ = "messages"
    __table_args__ = (
        sa.Index("ix_messages_conversation_created", "conversation_id", "created_at"),
        sa.Index("ix_messages_sender", "sender_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), primary_key=True, default=uuid.uuid4,
    )
    conversation_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        sa.ForeignKey("conversations.id", ondelete="CASCADE"),
        nullable=False,
    )
    sender_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("users.id"), nullable=False,
    )
    content: Mapped[str] = mapped_column(sa.String(5000), nullable=False, default="")
    type: Mapped[MessageType] = mapped_column(
        sa.Enum(MessageType, name="message_type"),
        nullable=False,
        default=MessageType.text,
    )
    status: Mapped[MessageStatus] = mapped_column(
        sa.Enum(MessageStatus, name="message_status"),
        nullable=False,
        default=MessageStatus.sent,
    )
    attachments: Mapped[list] = mapped_column(JSONB, nullable=False, default=list)
    reply_to_id: Mapped[Optional[uuid.UUID]] = mapped_column(
        UUID(as_uuid=True), sa.ForeignKey("messages.id", ondelete="SET NULL"),
    )
    reactions: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    read_by: Mapped[dict] = mapped_column(JSONB, nullable=False, default=dict)
    # "metadata" is reserved on declarative classes
    meta: Mapped[dict] = mapped_column("metadata", JSONB, nullable=False, default=dict)
    edited_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))
    is_deleted: Mapped[bool] = mapped_column(sa.Boolean, nullable=False, default=False)
    deleted_at: Mapped[Optional[datetime]] = mapped_column(sa.DateTime(timezone=True))

    # Relationships
    sender: Mapped[User] = relationship(lazy="joined")
    reply_to: Mapped[Optional[Message]] = relationship(
        remote_side=[id],
        foreign_keys=[reply_to_id],
        lazy="joined",
        join_depth=1,
    )

    def mark_read(self, user_id: uuid.UUID, at: Optional[datetime] = None) -> None:
        read_by = dict(self.read_by or {})
        read_by[str(user_id)] = (at or utcnow()).isoformat()
        self.read_by = read_by
        self.status = MessageStatus.read

    def add_reaction(self, emoji: str, user_id: uuid.UUID) -> None:
        reactions = {k: list(v) for k, v in (self.reactions or {}).items()}
        users = reactions.setdefault(emoji, [])
        if str(user_id) not in users:
            users.append(str(user_id))
        self.reactions = reactions

    def remove_reaction(self, emoji: str, user_id: uuid.UUID) -> None:
        reactions = {k: list(v) for k, v in (self.reactions or {}).items()}
        users = [u for u in reactions.get(emoji, []) if u != str(user_id)]
        if users:
            reactions[emoji] = users
        else:
            reactions.pop(emoji, None)
        self.reactions = reactions

    def is_read_by(self, user_id: uuid.UUID) -> bool:
        return str(user_id) in (self.read_by or {})

    def __repr__(self) -> str:
        return f"<Message {self.id} ({self.type.value})>"
