"""WebSocket connection registry with room fan-out.

Every socket joins ``user:{id}``; conversation participants also join
``conversation:{id}``. Services push events through the module-level
``manager`` instance.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Iterable, Optional

from fastapi import WebSocket
from fastapi.encoders import jsonable_encoder
from starlette.websockets import WebSocketDisconnect

logger = logging.getLogger(__name__)


def user_room(user_id: uuid.UUID | str) -> str:
    return f"user:{user_id}"


def conversation_room(conversation_id: uuid.UUID | str) -> str:
    return f"conversation:{conversation_id}"


@dataclass
class Connection:
    websocket: WebSocket
    user_id: uuid.UUID
    id: str = field(default_factory=lambda: uuid.uuid4().hex)
    rooms: set[str] = field(default_factory=set)


class ConnectionManager:
    def __init__(self) -> None:
        self.connections: dict[str, Connection] = {}
        self.rooms: dict[str, set[str]] = {}  # room -> connection ids

    # ── Membership ─────────────────────────────────────────────────

    def connect(self, websocket: WebSocket, user_id: uuid.UUID) -> Connection:
        conn = Connection(websocket=websocket, user_id=user_id)
        self.connections[conn.id] = conn
        self.join_room(conn.id, user_room(user_id))
        logger.info("Socket %s connected for user %s", conn.id, user_id)
        return conn

    def disconnect(self, conn_id: str) -> Optional[Connection]:
        conn = self.connections.pop(conn_id, None)
        if conn is None:
            return None
        for room in conn.rooms:
            members = self.rooms.get(room)
            if members is not None:
                members.discard(conn_id)
                if not members:
                    del self.rooms[room]
        logger.info("Socket %s disconnected for user %s", conn_id, conn.user_id)
        return conn

    def join_room(self, conn_id: str, room: str) -> None:
        if conn := self.connections.get(conn_id):
            conn.rooms.add(room)
            self.rooms.setdefault(room, set()).add(conn_id)

    def leave_room(self, conn_id: str, room: str) -> None:
        if conn := self.connections.get(conn_id):
            conn.rooms.discard(room)
        members = self.rooms.get(room)
        if members is not None:
            members.discard(conn_id)
            if not members:
                del self.rooms[room]

    def join_user_to_room(self, user_id: uuid.UUID, room: str) -> None:
        """Join every open socket of *user_id* to *room*."""
        for conn_id in list(self.rooms.get(user_room(user_id), ())):
            self.join_room(conn_id, room)

    # ── Presence ───────────────────────────────────────────────────

    def connected_users(self) -> list[uuid.UUID]:
        return list({conn.user_id for conn in self.connections.values()})

    def is_user_online(self, user_id: uuid.UUID) -> bool:
        return bool(self.rooms.get(user_room(user_id)))

    # ── Delivery ───────────────────────────────────────────────────

    async def send(self, conn_id: str, event: str, data: Any) -> None:
        conn = self.connections.get(conn_id)
        if conn is None:
            return
        try:
            await conn.websocket.send_json({"event": event, "data": jsonable_encoder(data)})
        except (WebSocketDisconnect, RuntimeError):
            logger.debug("Dropping dead socket %s", conn_id)
            self.disconnect(conn_id)

    async def emit_to_room(
        self,
        room: str,
        event: str,
        data: Any,
        *,
        exclude: Optional[str] = None,
    ) -> None:
        for conn_id in list(self.rooms.get(room, ())):
            if conn_id != exclude:
                await self.send(conn_id, event, data)

    async def emit_to_user(self, user_id: uuid.UUID, event: str, data: Any) -> None:
        await self.emit_to_room(user_room(user_id), event, data)

    async def emit_to_users(
        self,
        user_ids: Iterable[uuid.UUID],
        event: str,
        data: Any,
    ) -> None:
        for user_id in set(user_ids):
            await self.emit_to_user(user_id, event, data)

    async def emit_to_conversation(
        self,
        conversation_id: uuid.UUID,
        event: str,
        data: Any,
        *,
        exclude: Optional[str] = None,
    ) -> None:
        await self.emit_to_room(conversation_room(conversation_id), event, data, exclude=exclude)

    async def broadcast(
        self,
        event: str,
        data: Any,
        *,
        exclude_user: Optional[uuid.UUID] = None,
    ) -> None:
        for conn_id, conn in list(self.connections.items()):
            if conn.user_id != exclude_user:
                await self.send(conn_id, event, data)


manager = ConnectionManager()
