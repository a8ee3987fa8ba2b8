import asyncio
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket

from services.session_auth import SessionIdentity

logger = logging.getLogger(__name__)


class Connection:
    """An accepted WebSocket together with the identity resolved at handshake."""

    def __init__(self, websocket: WebSocket, identity: SessionIdentity):
        self.websocket = websocket
        self.identity = identity
        self.rooms: Set[str] = set()

    @property
    def user_id(self) -> str:
        return self.identity.user_id

    async def send(self, frame: dict):
        await self.websocket.send_json(frame)

    def __repr__(self):
        return f"<Connection(user_id={self.user_id}, rooms={sorted(self.rooms)})>"


def make_frame(event: str, data: Any) -> dict:
    return {"event": event, "data": data}


class RoomChannelManager:
    """Room membership and fan-out for the realtime channel.

    Membership changes are plain synchronous set operations so they can never
    interleave with another task. Delivery to one room goes through a per-room
    lock, which keeps frames for that room in the order broadcast() was called.
    """

    def __init__(self):
        # class_id -> set of Connection
        self.active_connections: Dict[str, Set[Connection]] = {}
        self._delivery_locks: Dict[str, asyncio.Lock] = {}

    def register(self, websocket: WebSocket, identity: SessionIdentity) -> Connection:
        return Connection(websocket, identity)

    def join(self, conn: Connection, class_id: str) -> None:
        if class_id not in self.active_connections:
            self.active_connections[class_id] = set()
        self.active_connections[class_id].add(conn)
        conn.rooms.add(class_id)

    def leave(self, conn: Connection) -> None:
        """Remove ``conn`` from every room it joined."""
        for class_id in list(conn.rooms):
            members = self.active_connections.get(class_id)
            if members is not None:
                members.discard(conn)
                if not members:
                    del self.active_connections[class_id]
                    lock = self._delivery_locks.get(class_id)
                    if lock is not None and not lock.locked():
                        del self._delivery_locks[class_id]
        conn.rooms.clear()

    def members(self, class_id: str) -> Set[Connection]:
        return set(self.active_connections.get(class_id, ()))

    def rooms_of(self, conn: Connection) -> Set[str]:
        return set(conn.rooms)

    async def broadcast(self, class_id: str, event: str, data: Any) -> int:
        """Send ``event`` to every connection in the room, sender included.

        Returns the number of connections the frame reached. A connection that
        fails to receive it is dropped from all its rooms.
        """
        if not self.active_connections.get(class_id):
            return 0
        frame = make_frame(event, data)
        lock = self._delivery_locks.setdefault(class_id, asyncio.Lock())
        delivered = 0
        async with lock:
            for conn in list(self.active_connections.get(class_id, ())):
                try:
                    await conn.send(frame)
                    delivered += 1
                except Exception as exc:
                    logger.warning(
                        "Dropping connection of user %s from room %s after failed send: %s",
                        conn.user_id, class_id, exc,
                    )
                    self.leave(conn)
        return delivered
