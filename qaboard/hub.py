"""Live connection registry and best-effort event fan-out."""

from __future__ import annotations

import asyncio
import json
import logging
import uuid
from dataclasses import dataclass
from typing import Any, NamedTuple

logger = logging.getLogger(__name__)


class Frame(NamedTuple):
    event: str
    data: str


def encode_event(event: str, payload: dict[str, Any]) -> Frame:
    return Frame(event, json.dumps({"type": event, "payload": payload}, separators=(",", ":")))


@dataclass
class Member:
    id: str
    name: str | None = None

    def display_name(self, guest_label: str) -> str:
        return self.name or guest_label


class Connection:
    """One live subscriber with a bounded outbound queue.

    Frames are offered without awaiting; a writer task owned by the transport
    drains the queue. When the queue is full the oldest frame is dropped.
    """

    def __init__(self, *, queue_size: int = 100, transport: str = "websocket"):
        self.member = Member(id=uuid.uuid4().hex)
        self.transport = transport
        self._queue: asyncio.Queue[Frame | None] = asyncio.Queue(maxsize=max(10, queue_size))
        self._closed = False
        self.close_code: int | None = None
        self.close_reason = ""
        self.dropped_frames = 0

    @property
    def closed(self) -> bool:
        return self._closed

    def offer(self, frame: Frame) -> bool:
        if self._closed:
            return False
        self._make_room()
        self._queue.put_nowait(frame)
        return True

    def close(self, code: int = 1000, reason: str = "") -> None:
        if self._closed:
            return
        self._closed = True
        self.close_code = code
        self.close_reason = reason
        self._make_room()
        self._queue.put_nowait(None)

    async def next_frame(self) -> Frame | None:
        """Wait for the next frame; ``None`` means the connection was closed."""
        return await self._queue.get()

    def pending_frames(self) -> list[Frame]:
        frames: list[Frame] = []
        while True:
            try:
                item = self._queue.get_nowait()
            except asyncio.QueueEmpty:
                return frames
            if item is not None:
                frames.append(item)

    def _make_room(self) -> None:
        if not self._queue.full():
            return
        try:
            self._queue.get_nowait()
            self.dropped_frames += 1
        except asyncio.QueueEmpty:
            pass


class ConnectionRegistry:
    """Every registered connection keyed by member id."""

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def add(self, connection: Connection) -> Member:
        self._connections[connection.member.id] = connection
        return connection.member

    def remove(self, connection: Connection) -> Member | None:
        current = self._connections.get(connection.member.id)
        if current is not connection:
            return None
        del self._connections[connection.member.id]
        return connection.member

    def contains(self, connection: Connection) -> bool:
        return self._connections.get(connection.member.id) is connection

    def connections(self) -> list[Connection]:
        return list(self._connections.values())

    def members(self) -> list[Member]:
        return [conn.member for conn in self._connections.values()]

    def count(self) -> int:
        return len(self._connections)

    def clear(self) -> list[Connection]:
        removed = list(self._connections.values())
        self._connections.clear()
        return removed


class BroadcastHub:
    """Fan-out of typed events over the connection registry.

    Delivery is fire-and-forget: a failing connection is counted and logged,
    never raised to the caller, and never stops delivery to the others.
    """

    def __init__(self, registry: ConnectionRegistry | None = None, *, guest_label: str = "Guest"):
        self._registry = registry or ConnectionRegistry()
        self._guest_label = guest_label
        self._broadcasts = 0
        self._delivery_failures = 0

    @property
    def registry(self) -> ConnectionRegistry:
        return self._registry

    def connect(self, connection: Connection) -> Member:
        member = self._registry.add(connection)
        logger.debug("Connection %s registered (%s)", member.id, connection.transport)
        return member

    def disconnect(self, connection: Connection) -> Member | None:
        """Unregister a connection; returns its member if it was still registered."""
        member = self._registry.remove(connection)
        connection.close()
        if member is not None:
            logger.debug("Connection %s unregistered", member.id)
        return member

    def is_registered(self, connection: Connection) -> bool:
        return self._registry.contains(connection)

    def send(self, connection: Connection, event: str, payload: dict[str, Any]) -> bool:
        """Deliver one event to a single connection."""
        return self._deliver(connection, encode_event(event, payload))

    def broadcast(self, event: str, payload: dict[str, Any], *, exclude: Connection | None = None) -> int:
        frame = encode_event(event, payload)
        self._broadcasts += 1
        delivered = 0
        for connection in self._registry.connections():
            if connection is exclude:
                continue
            if self._deliver(connection, frame):
                delivered += 1
        return delivered

    def evict(self, connection: Connection, *, code: int = 1013, reason: str = "") -> None:
        """Close a connection after unregistering it, without announcing it."""
        self._registry.remove(connection)
        connection.close(code, reason)

    def evict_all(self, *, code: int = 1013, reason: str = "") -> int:
        evicted = self._registry.clear()
        for connection in evicted:
            connection.close(code, reason)
        if evicted:
            logger.info("Evicted %d live connection(s)", len(evicted))
        return len(evicted)

    def count(self) -> int:
        return self._registry.count()

    def list_members(self) -> list[dict[str, str]]:
        return [
            {"id": member.id, "username": member.display_name(self._guest_label)}
            for member in self._registry.members()
        ]

    def stats(self) -> dict[str, int]:
        return {
            "connections": self._registry.count(),
            "broadcasts": self._broadcasts,
            "delivery_failures": self._delivery_failures,
            "dropped_frames": sum(conn.dropped_frames for conn in self._registry.connections()),
        }

    def _deliver(self, connection: Connection, frame: Frame) -> bool:
        try:
            return connection.offer(frame)
        except Exception as e:
            self._delivery_failures += 1
            logger.debug("Delivery to %s failed: %s", connection.member.id, e)
            return False


def as_sse(frame: Frame) -> str:
    return f"event: {frame.event}\ndata: {frame.data}\n\n"
