"""
Live notification channel over WebSocket

A connection authenticates once, at handshake time, with the same session
token the HTTP API uses (``token`` cookie, ``?token=`` query parameter or
bearer header).
Accepted sockets join two rooms, ``user:<id>`` and ``role:<role>``; the
dispatcher pushes to the user room only.

Frames in both directions are JSON objects ``{"event": ..., "data": ...}``.
"""
import asyncio
import json
import logging
from collections import defaultdict
from typing import Dict, List, Optional, Set

from fastapi import WebSocket, WebSocketDisconnect
from fastapi.encoders import jsonable_encoder
from pymongo.database import Database

import settings
from errors import AppError
from notifications import mark_all_read, mark_read, unread_count
from security import resolve_first_session

logger = logging.getLogger(__name__)

AUTH_FAILED_CLOSE_CODE = 4401

READ_EVENT = "notification:read"
READ_ALL_EVENT = "notifications:readAll"
UNREAD_COUNT_EVENT = "notifications:unreadCount"
ERROR_EVENT = "error"


def user_room(account_id) -> str:
    return f"user:{account_id}"


def role_room(role: str) -> str:
    return f"role:{role}"


class ConnectionRegistry:
    """
    Process-local map of rooms to live sockets.

    Sockets are keyed by id() since Starlette connections are unhashable.
    All mutation happens on the event loop without awaiting in between, so no
    lock is needed. State is lost on restart; clients reconnect and
    re-authenticate.
    """

    def __init__(self):
        self.rooms: Dict[str, Dict[int, WebSocket]] = defaultdict(dict)
        self.memberships: Dict[int, Set[str]] = {}

    def join(self, websocket: WebSocket, *rooms: str) -> None:
        key = id(websocket)
        joined = self.memberships.setdefault(key, set())
        for room in rooms:
            self.rooms[room][key] = websocket
            joined.add(room)

    def leave(self, websocket: WebSocket) -> None:
        key = id(websocket)
        for room in self.memberships.pop(key, set()):
            members = self.rooms.get(room)
            if members is None:
                continue
            members.pop(key, None)
            if not members:
                del self.rooms[room]

    def connection_count(self, room: Optional[str] = None) -> int:
        if room is None:
            return len(self.memberships)
        return len(self.rooms.get(room, ()))

    def is_connected(self, account_id) -> bool:
        return self.connection_count(user_room(account_id)) > 0

    async def emit(self, room: str, event: str, data) -> int:
        """Send to every socket in a room. Returns how many sends succeeded."""
        frame = {"event": event, "data": jsonable_encoder(data)}
        delivered = 0
        for websocket in list(self.rooms.get(room, {}).values()):
            try:
                await websocket.send_json(frame)
                delivered += 1
            except Exception as e:
                logger.warning("Dropping socket in %s after failed send: %s", room, e)
                self.leave(websocket)
        return delivered

    async def emit_to_user(self, account_id, event: str, data) -> int:
        return await self.emit(user_room(account_id), event, data)


def _handshake_tokens(websocket: WebSocket) -> List[str]:
    tokens = [websocket.cookies.get(settings.SESSION_COOKIE), websocket.query_params.get("token")]
    scheme, _, credentials = websocket.headers.get("authorization", "").partition(" ")
    if scheme.lower() == "bearer":
        tokens.append(credentials)
    return [t for t in tokens if t]


async def serve_live_channel(websocket: WebSocket, db: Database, registry: ConnectionRegistry) -> None:
    # Accept first: a close before accept reaches real clients as an HTTP 403
    await websocket.accept()
    try:
        account = await asyncio.to_thread(resolve_first_session, db, *_handshake_tokens(websocket))
    except AppError as e:
        logger.info("Live channel handshake rejected: %s", e.message)
        await websocket.close(code=AUTH_FAILED_CLOSE_CODE, reason=e.message)
        return

    account_id = account["_id"]
    registry.join(websocket, user_room(account_id), role_room(account["role"]))
    logger.info("Live channel open for %s (%d connections)", account_id, registry.connection_count())

    try:
        while True:
            message = await websocket.receive()
            if message["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(message.get("code", 1000), message.get("reason"))
            try:
                frame = json.loads(message["text"])
            except (KeyError, TypeError, ValueError):
                await websocket.send_json({"event": ERROR_EVENT, "data": {"message": "Malformed frame"}})
                continue
            await _handle_frame(websocket, db, account_id, frame)
    except WebSocketDisconnect:
        pass
    finally:
        registry.leave(websocket)
        logger.info("Live channel closed for %s", account_id)


def _apply_read(db: Database, account_id, event: str, data) -> int:
    if event == READ_EVENT:
        mark_read(db, account_id, data)
    else:
        mark_all_read(db, account_id)
    return unread_count(db, account_id)


async def _handle_frame(websocket: WebSocket, db: Database, account_id, frame) -> None:
    event = frame.get("event") if isinstance(frame, dict) else None
    data = frame.get("data") if isinstance(frame, dict) else None

    if event not in (READ_EVENT, READ_ALL_EVENT):
        await websocket.send_json({"event": ERROR_EVENT, "data": {"message": f"Unknown event: {event}"}})
        return
    try:
        count = await asyncio.to_thread(_apply_read, db, account_id, event, data)
    except AppError as e:
        await websocket.send_json({"event": ERROR_EVENT, "data": {"message": e.message}})
        return

    await websocket.send_json({"event": UNREAD_COUNT_EVENT, "data": {"count": count}})
