"""Realtime tests — connection registry, rooms and socket event handlers."""

from __future__ import annotations

import uuid

import pytest
from starlette.testclient import TestClient
from starlette.websockets import WebSocketDisconnect

from site_manager.conversations.models import Message
from site_manager.conversations.schemas import ConversationCreate
from site_manager.conversations.service import ConversationService
from site_manager.realtime.manager import conversation_room, manager, user_room
from site_manager.realtime.router import UNAUTHORIZED_CLOSE_CODE, SocketSession


# ── Connection manager ──────────────────────────────────────────────


async def test_connect_joins_user_room(connect_socket, worker):
    _, conn = connect_socket(worker.id)
    assert conn.rooms == {user_room(worker.id)}
    assert manager.is_user_online(worker.id)
    assert manager.connected_users() == [worker.id]


async def test_disconnect_cleans_empty_rooms(connect_socket, worker):
    _, conn = connect_socket(worker.id, "conversation:abc")
    manager.disconnect(conn.id)
    assert manager.rooms == {}
    assert not manager.is_user_online(worker.id)
    assert manager.disconnect(conn.id) is None


async def test_leave_room(connect_socket, worker, other_worker):
    _, first = connect_socket(worker.id, "conversation:abc")
    _, second = connect_socket(other_worker.id, "conversation:abc")
    manager.leave_room(first.id, "conversation:abc")
    assert "conversation:abc" not in first.rooms
    assert manager.rooms["conversation:abc"] == {second.id}


async def test_join_user_to_room_covers_every_socket(connect_socket, worker):
    _, phone = connect_socket(worker.id)
    _, laptop = connect_socket(worker.id)
    manager.join_user_to_room(worker.id, "conversation:xyz")
    assert manager.rooms["conversation:xyz"] == {phone.id, laptop.id}


async def test_emit_to_room_with_exclude(connect_socket, worker, other_worker):
    sender, sender_conn = connect_socket(worker.id, "conversation:abc")
    receiver, _ = connect_socket(other_worker.id, "conversation:abc")

    await manager.emit_to_room("conversation:abc", "typing:start", {"id": uuid.UUID(int=1)}, exclude=sender_conn.id)

    assert sender.events() == []
    assert receiver.events() == [
        {"event": "typing:start", "data": {"id": "00000000-0000-0000-0000-000000000001"}},
    ]


async def test_emit_to_users_deduplicates(connect_socket, worker):
    ws, _ = connect_socket(worker.id)
    await manager.emit_to_users([worker.id, worker.id], "absence:approved", {})
    assert len(ws.events("absence:approved")) == 1


async def test_dead_socket_is_dropped(connect_socket, worker):
    ws, conn = connect_socket(worker.id)
    ws.send_json.side_effect = RuntimeError("socket closed")

    await manager.emit_to_user(worker.id, "ping", {})

    assert conn.id not in manager.connections
    assert not manager.is_user_online(worker.id)


async def test_broadcast_skips_excluded_user(connect_socket, worker, other_worker):
    own, _ = connect_socket(worker.id)
    other, _ = connect_socket(other_worker.id)
    await manager.broadcast("user:online", {"user_id": worker.id}, exclude_user=worker.id)
    assert own.events() == []
    assert len(other.events("user:online")) == 1


# ── Socket session ──────────────────────────────────────────────────


@pytest.fixture
async def conversation(db, worker, other_worker):
    conv, _ = await ConversationService.create_conversation(
        db, worker, ConversationCreate(participant_id=other_worker.id),
    )
    await db.commit()
    return conv


def _session(db, connect_socket, user, *rooms):
    ws, conn = connect_socket(user.id, *rooms)
    return ws, SocketSession(db, conn, user)


async def _post(db, conversation, sender, content="Bonjour") -> Message:
    message = await ConversationService.create_message(db, conversation, sender, content=content)
    await db.commit()
    return message


async def test_socket_message_send(db, connect_socket, conversation, worker, other_worker):
    own_ws, session = _session(db, connect_socket, worker)
    other_ws, _ = connect_socket(other_worker.id)

    await session.dispatch({
        "event": "message:send",
        "data": {"conversation_id": str(conversation.id), "content": "Chantier fermé demain"},
    })

    frames = other_ws.events("message:new")
    assert len(frames) == 1
    assert frames[0]["data"]["message"]["content"] == "Chantier fermé demain"
    assert own_ws.events("error") == []


async def test_socket_message_send_empty_reports_error(db, connect_socket, conversation, worker):
    ws, session = _session(db, connect_socket, worker)
    await session.dispatch({
        "event": "message:send",
        "data": {"conversation_id": str(conversation.id), "content": "  "},
    })
    [error] = ws.events("error")
    assert error["data"]["code"] == "EMPTY_CONTENT_AND_NO_FILES"


async def test_join_marks_messages_delivered(db, connect_socket, conversation, worker, other_worker):
    await _post(db, conversation, worker)
    ws, session = _session(db, connect_socket, other_worker)

    await session.dispatch({"event": "conversation:join", "data": {"conversation_id": str(conversation.id)}})

    assert conversation_room(conversation.id) in session.conn.rooms
    [joined] = ws.events("conversation:joined")
    assert joined["data"]["delivered"] == 1


async def test_join_requires_participation(db, connect_socket, conversation, hr):
    ws, session = _session(db, connect_socket, hr)
    await session.dispatch({"event": "conversation:join", "data": {"conversation_id": str(conversation.id)}})
    [error] = ws.events("error")
    assert error["data"]["message"] == "Not authorized to join this conversation"
    assert conversation_room(conversation.id) not in session.conn.rooms


async def test_leave_conversation(db, connect_socket, conversation, worker):
    room = conversation_room(conversation.id)
    _, session = _session(db, connect_socket, worker, room)
    await session.dispatch({"event": "conversation:leave", "data": str(conversation.id)})
    assert room not in session.conn.rooms


async def test_typing_events_reach_others_only(db, connect_socket, conversation, worker, other_worker):
    room = conversation_room(conversation.id)
    own_ws, session = _session(db, connect_socket, worker, room)
    other_ws, _ = connect_socket(other_worker.id, room)

    await session.dispatch({"event": "typing:start", "data": {"conversation_id": str(conversation.id)}})
    await session.dispatch({"event": "typing:stop", "data": {"conversation_id": str(conversation.id)}})

    assert own_ws.events() == []
    start, stop = other_ws.events()
    assert start["event"] == "typing:start"
    assert start["data"]["user"]["id"] == str(worker.id)
    assert stop["event"] == "typing:stop"
    assert "user" not in stop["data"]


async def test_typing_requires_room_membership(db, connect_socket, conversation, hr, worker):
    room = conversation_room(conversation.id)
    outsider_ws, session = _session(db, connect_socket, hr)
    worker_ws, _ = connect_socket(worker.id, room)

    await session.dispatch({"event": "typing:start", "data": {"conversation_id": str(conversation.id)}})

    assert worker_ws.events() == []
    [error] = outsider_ws.events("error")
    assert error["data"]["event"] == "typing:start"
    assert error["data"]["message"] == "Join the conversation before sending typing events"


async def test_read_receipt(db, connect_socket, conversation, worker, other_worker):
    message = await _post(db, conversation, worker)
    room = conversation_room(conversation.id)
    sender_ws, _ = connect_socket(worker.id, room)
    _, session = _session(db, connect_socket, other_worker, room)

    await session.dispatch({"event": "message:read", "data": {"message_id": str(message.id)}})

    [frame] = sender_ws.events("message:read")
    assert frame["data"]["user_id"] == str(other_worker.id)
    refreshed = await ConversationService.get_message(db, message.id)
    assert str(other_worker.id) in refreshed.read_by
    assert await ConversationService.unread_total(db, other_worker.id) == 0


async def test_reaction_add_and_remove(db, connect_socket, conversation, worker, other_worker):
    message = await _post(db, conversation, worker)
    room = conversation_room(conversation.id)
    ws, session = _session(db, connect_socket, other_worker, room)

    await session.dispatch({
        "event": "message:react",
        "data": {"message_id": str(message.id), "emoji": "👍"},
    })
    await session.dispatch({
        "event": "message:react",
        "data": {"message_id": str(message.id), "emoji": "👍", "action": "remove"},
    })

    added, removed = ws.events("message:reaction")
    assert added["data"]["reactions"] == {"👍": [str(other_worker.id)]}
    assert removed["data"]["reactions"] == {}


async def test_relay_requires_room_membership(db, connect_socket, conversation, worker, other_worker):
    room = conversation_room(conversation.id)
    own_ws, session = _session(db, connect_socket, worker)
    other_ws, _ = connect_socket(other_worker.id, room)
    payload = {"conversation_id": str(conversation.id), "progress": 40}

    await session.dispatch({"event": "upload:progress", "data": payload})
    assert own_ws.events("error")
    assert other_ws.events() == []

    manager.join_room(session.conn.id, room)
    await session.dispatch({"event": "upload:progress", "data": payload})
    [frame] = other_ws.events("upload:progress")
    assert frame["data"]["progress"] == 40
    assert frame["data"]["user_id"] == str(worker.id)


async def test_relay_accepts_bare_conversation_id(db, connect_socket, conversation, worker, other_worker):
    room = conversation_room(conversation.id)
    own_ws, session = _session(db, connect_socket, worker, room)
    other_ws, _ = connect_socket(other_worker.id, room)

    await session.dispatch({"event": "upload:progress", "data": str(conversation.id)})

    assert own_ws.events("error") == []
    [frame] = other_ws.events("upload:progress")
    assert frame["data"]["conversation_id"] == str(conversation.id)
    assert frame["data"]["user_id"] == str(worker.id)


async def test_malformed_frames(db, connect_socket, worker):
    ws, session = _session(db, connect_socket, worker)

    await session.dispatch(["not", "an", "object"])
    await session.dispatch({"event": "does:not:exist"})
    await session.dispatch({"event": "message:react", "data": {"emoji": "👍"}})
    await session.dispatch({"event": "typing:start", "data": {"conversation_id": "nope"}})

    errors = [frame["data"] for frame in ws.events("error")]
    assert len(errors) == 4
    assert errors[1]["message"] == "Unknown event 'does:not:exist'"
    assert errors[2]["message"] == "Invalid payload"
    assert errors[3]["message"] == "A valid conversation_id is required"


# ── Endpoint ────────────────────────────────────────────────────────


@pytest.mark.parametrize("query", ["", "?token=not-a-jwt"])
async def test_websocket_rejects_missing_or_bad_token(app, query):
    with TestClient(app) as client:
        with client.websocket_connect(f"/ws{query}") as ws:
            with pytest.raises(WebSocketDisconnect) as exc_info:
                ws.receive_json()
    assert exc_info.value.code == UNAUTHORIZED_CLOSE_CODE
