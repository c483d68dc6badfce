"""WebSocket endpoint — authentication, presence and inbound event dispatch.

Frames in both directions are JSON objects ``{"event": str, "data": ...}``.
Handlers that write to the database commit before emitting.
"""

from __future__ import annotations

import json
import logging
import uuid
from typing import Any, Awaitable, Callable, Optional

from fastapi import APIRouter, Depends, Query, WebSocket
from pydantic import ValidationError
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.websockets import WebSocketDisconnect

from site_manager.auth.dependencies import resolve_token_user
from site_manager.common.exceptions import AppException
from site_manager.conversations.schemas import (
    ReactionRequest,
    ReadReceipt,
    SocketMessageSend,
)
from site_manager.conversations.service import ConversationService
from site_manager.database import get_db
from site_manager.realtime.manager import Connection, conversation_room, manager
from site_manager.users.models import User
from site_manager.users.schemas import UserBrief

logger = logging.getLogger(__name__)

router = APIRouter()

UNAUTHORIZED_CLOSE_CODE = 4401

# Client-side upload progress relayed untouched to the rest of the room
RELAY_EVENTS = frozenset({
    "upload:start",
    "upload:progress",
    "upload:complete",
    "upload:error",
    "media:upload:start",
    "media:upload:progress",
    "media:upload:complete",
    "media:upload:error",
})


class SocketEventError(Exception):
    """Reported back to the sender as an ``error`` event."""


def _conversation_id(data: Any) -> uuid.UUID:
    raw = data.get("conversation_id") if isinstance(data, dict) else data
    try:
        return uuid.UUID(str(raw))
    except (TypeError, ValueError):
        raise SocketEventError("A valid conversation_id is required") from None


class SocketSession:
    """Handles inbound events for one authenticated connection."""

    def __init__(self, db: AsyncSession, conn: Connection, user: User) -> None:
        self.db = db
        self.conn = conn
        self.user = user
        self.handlers: dict[str, Callable[[Any], Awaitable[None]]] = {
            "message:send": self.on_message_send,
            "conversation:join": self.on_conversation_join,
            "conversation:leave": self.on_conversation_leave,
            "typing:start": self.on_typing_start,
            "typing:stop": self.on_typing_stop,
            "message:read": self.on_message_read,
            "message:react": self.on_message_react,
        }

    @property
    def user_brief(self) -> dict[str, Any]:
        return UserBrief.model_validate(self.user).model_dump()

    async def reply(self, event: str, data: Any) -> None:
        await manager.send(self.conn.id, event, data)

    async def dispatch(self, frame: Any) -> None:
        if not isinstance(frame, dict) or not isinstance(frame.get("event"), str):
            await self.reply("error", {"message": "Frames must be objects with an 'event' key"})
            return

        event, data = frame["event"], frame.get("data") or {}
        try:
            if event in RELAY_EVENTS:
                await self.relay(event, data)
            elif handler := self.handlers.get(event):
                await handler(data)
            else:
                raise SocketEventError(f"Unknown event '{event}'")
        except SocketEventError as exc:
            await self.reply("error", {"event": event, "message": str(exc)})
        except ValidationError as exc:
            await self.reply("error", {
                "event": event,
                "message": "Invalid payload",
                "errors": exc.errors(include_url=False, include_context=False),
            })
        except AppException as exc:
            await self.db.rollback()
            await self.reply("error", {"event": event, "message": exc.detail, "code": exc.code})

    def _joined_room(self, conversation_id: uuid.UUID, action: str) -> str:
        room = conversation_room(conversation_id)
        if room not in self.conn.rooms:
            raise SocketEventError(f"Join the conversation before {action}")
        return room

    async def _participant_conversation(self, conversation_id: uuid.UUID, action: str):
        try:
            conversation = await ConversationService.get_conversation(self.db, conversation_id)
        except AppException:
            conversation = None
        if conversation is None or not conversation.is_participant(self.user.id):
            raise SocketEventError(f"Not authorized to {action} this conversation")
        return conversation

    # ── Handlers ───────────────────────────────────────────────────

    async def on_message_send(self, data: Any) -> None:
        body = SocketMessageSend.model_validate(data)
        conversation = await self._participant_conversation(
            body.conversation_id, "send message to",
        )
        message = await ConversationService.create_message(
            self.db,
            conversation,
            self.user,
            content=body.content,
            attachments=body.attachments,
            reply_to_id=body.reply_to,
        )
        await self.db.commit()
        await ConversationService.notify_new_message(conversation, message)

    async def on_conversation_join(self, data: Any) -> None:
        conversation_id = _conversation_id(data)
        await self._participant_conversation(conversation_id, "join")
        manager.join_room(self.conn.id, conversation_room(conversation_id))
        delivered = await ConversationService.mark_delivered(self.db, conversation_id, self.user.id)
        await self.db.commit()
        await self.reply("conversation:joined", {
            "conversation_id": conversation_id,
            "delivered": delivered,
        })

    async def on_conversation_leave(self, data: Any) -> None:
        manager.leave_room(self.conn.id, conversation_room(_conversation_id(data)))

    async def on_typing_start(self, data: Any) -> None:
        await self._typing("typing:start", data)

    async def on_typing_stop(self, data: Any) -> None:
        await self._typing("typing:stop", data)

    async def _typing(self, event: str, data: Any) -> None:
        conversation_id = _conversation_id(data)
        room = self._joined_room(conversation_id, "sending typing events")
        payload: dict[str, Any] = {"user_id": self.user.id, "conversation_id": conversation_id}
        if event == "typing:start":
            payload["user"] = self.user_brief
        await manager.emit_to_room(room, event, payload, exclude=self.conn.id)

    async def on_message_read(self, data: Any) -> None:
        receipt = ReadReceipt.model_validate(data)
        message = await ConversationService.get_message(self.db, receipt.message_id)
        await self._participant_conversation(message.conversation_id, "read messages in")
        await ConversationService.mark_read(self.db, message, self.user)
        await self.db.commit()
        await manager.emit_to_room(
            conversation_room(message.conversation_id),
            "message:read",
            {"message_id": message.id, "user_id": self.user.id, "user": self.user_brief},
            exclude=self.conn.id,
        )

    async def on_message_react(self, data: Any) -> None:
        body = ReactionRequest.model_validate(data)
        message = await ConversationService.get_message(self.db, body.message_id)
        await self._participant_conversation(message.conversation_id, "react in")
        message = await ConversationService.react(self.db, message, self.user, body.emoji, body.action)
        await self.db.commit()
        await manager.emit_to_conversation(message.conversation_id, "message:reaction", {
            "message_id": message.id,
            "emoji": body.emoji,
            "action": body.action,
            "user_id": self.user.id,
            "reactions": message.reactions,
        })

    async def relay(self, event: str, data: Any) -> None:
        conversation_id = _conversation_id(data)
        room = self._joined_room(conversation_id, "sending upload events")
        if not isinstance(data, dict):
            data = {"conversation_id": conversation_id}
        await manager.emit_to_room(
            room,
            event,
            {**data, "user_id": self.user.id, "user": self.user_brief},
            exclude=self.conn.id,
        )


@router.websocket("/ws")
async def websocket_endpoint(
    websocket: WebSocket,
    token: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    await websocket.accept()
    user = await resolve_token_user(db, token) if token else None
    if user is None:
        await websocket.close(code=UNAUTHORIZED_CLOSE_CODE, reason="Authentication failed")
        return

    conn = manager.connect(websocket, user.id)
    for conversation_id in await ConversationService.active_ids_for_user(db, user.id):
        manager.join_room(conn.id, conversation_room(conversation_id))

    session = SocketSession(db, conn, user)
    await manager.broadcast(
        "user:online", {"user_id": user.id, "user": session.user_brief}, exclude_user=user.id,
    )

    try:
        while True:
            raw = await websocket.receive_text()
            try:
                frame = json.loads(raw)
            except json.JSONDecodeError:
                await session.reply("error", {"message": "Frames must be valid JSON"})
                continue
            await session.dispatch(frame)
    except WebSocketDisconnect as exc:
        logger.debug("Socket %s closed by client (code %s)", conn.id, exc.code)
    finally:
        manager.disconnect(conn.id)
        if not manager.is_user_online(user.id):
            await manager.broadcast("user:offline", {"user_id": user.id})
