"""
Realtime order events over WebSockets.

Every connection is placed in exactly one room, derived from its verified
session: admins share the "admin" room, customers get "user-<id>". Delivery is
best-effort; a client that is offline at publish time recovers by fetching its
notification records.

Frames in both directions are JSON objects of the form
{"event": <name>, "data": <payload>}.
"""
import asyncio
from collections import defaultdict
from typing import Any, Dict, Set

import structlog
from fastapi import WebSocket, WebSocketDisconnect, status

logger = structlog.get_logger(__name__)

ADMIN_ROOM = "admin"


def user_room(user_id: str) -> str:
    return f"user-{user_id}"


def room_for(user: dict) -> str:
    return ADMIN_ROOM if user.get("role") == "admin" else user_room(user["id"])


class ConnectionHub:
    """Room membership for live sockets.

    Joins, leaves and publishes on a room are serialised by that room's lock;
    different rooms do not block each other.
    """

    def __init__(self):
        self._rooms: Dict[str, Set[WebSocket]] = defaultdict(set)
        self._locks: Dict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def members(self, room: str) -> int:
        return len(self._rooms.get(room, ()))

    async def join(self, room: str, websocket: WebSocket):
        async with self._locks[room]:
            self._rooms[room].add(websocket)
        logger.info("room_joined", room=room, members=self.members(room))

    async def leave(self, room: str, websocket: WebSocket):
        if room not in self._rooms:
            return
        async with self._locks[room]:
            members = self._rooms.get(room)
            if members is None:
                return
            members.discard(websocket)
            if not members:
                del self._rooms[room]
                self._locks.pop(room, None)

    async def publish(self, room: str, event: str, data: Any) -> int:
        """Send an event to every socket in the room; returns how many got it."""
        if room not in self._rooms:
            logger.info("event_not_delivered", room=room, event=event)
            return 0
        frame = {"event": event, "data": data}
        delivered = 0
        async with self._locks[room]:
            for websocket in list(self._rooms.get(room, ())):
                try:
                    await websocket.send_json(frame)
                    delivered += 1
                except (WebSocketDisconnect, RuntimeError) as exc:
                    logger.warning("publish_dropped_socket", room=room, event=event, error=str(exc))
                    self._rooms.get(room, set()).discard(websocket)
            if room in self._rooms and not self._rooms[room]:
                del self._rooms[room]
                self._locks.pop(room, None)
        logger.info("event_published", room=room, event=event, delivered=delivered)
        return delivered

    async def close(self):
        for room in list(self._rooms):
            async with self._locks[room]:
                sockets = self._rooms.pop(room, set())
            self._locks.pop(room, None)
            for websocket in sockets:
                try:
                    await websocket.close(code=status.WS_1001_GOING_AWAY)
                except RuntimeError as exc:
                    logger.debug("socket_already_closed", room=room, error=str(exc))
