"""Per-user WebSocket fan-out.

Connections are grouped by user. broadcast(user_id, message) serializes the
message once and sends it to every live connection of that user
concurrently with a TaskGroup; connections of other users never see it.
A connection whose send fails is unregistered. Delivery is at-most-once
and best effort: the hub never raises to its caller.

WebSockets are registered wrapped in a QueuedConnection, whose send() only
enqueues. A slow browser fills its own queue and gets dropped instead of
stalling a reconciliation pass for everybody else.
"""

import asyncio
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Protocol, Set

import orjson
from fastapi import WebSocket

from core.logging import get_logger

logger = get_logger(__name__)


class Connection(Protocol):
    """Anything the hub can push a text frame to."""

    async def send(self, message: str) -> None: ...


class ConnectionClosed(Exception):
    """Raised by QueuedConnection.send once the connection is unusable."""


class QueuedConnection:
    """WebSocket with a bounded outbound queue drained by a pump task."""

    def __init__(self, websocket: WebSocket, user_id: str, queue_size: int = 256,
                 send_timeout: float = 5.0):
        self.websocket = websocket
        self.user_id = user_id
        self.send_timeout = send_timeout
        self._queue: asyncio.Queue[str] = asyncio.Queue(maxsize=queue_size)
        self._pump: Optional[asyncio.Task] = None
        self.closed = False

    def start(self) -> None:
        if self._pump is None:
            self._pump = asyncio.create_task(self._run())

    async def send(self, message: str) -> None:
        if self.closed:
            raise ConnectionClosed(f"Connection for user {self.user_id} is closed")
        try:
            self._queue.put_nowait(message)
        except asyncio.QueueFull:
            self.closed = True
            raise ConnectionClosed(f"Outbound queue full for user {self.user_id}")

    async def _run(self) -> None:
        try:
            while True:
                frame = await self._queue.get()
                await asyncio.wait_for(self.websocket.send_text(frame), timeout=self.send_timeout)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning("WebSocket send failed, closing connection", user_id=self.user_id, error=str(e))
            self.closed = True
            try:
                await self.websocket.close()
            except Exception as close_error:
                logger.debug("WebSocket already closed", user_id=self.user_id, error=str(close_error))

    async def close(self) -> None:
        self.closed = True
        if self._pump is not None:
            self._pump.cancel()
            try:
                await self._pump
            except asyncio.CancelledError:
                pass
            self._pump = None

    @property
    def pending(self) -> int:
        return self._queue.qsize()


def _timestamp() -> str:
    return datetime.now(timezone.utc).isoformat()


class BroadcastHub:
    """Registry of live connections keyed by user id."""

    def __init__(self):
        self._connections: Dict[str, Set[Connection]] = {}
        self._owners: Dict[Connection, str] = {}
        self._lock = asyncio.Lock()
        self._sent = 0
        self._failed = 0

    async def register(self, user_id: str, connection: Connection) -> None:
        async with self._lock:
            # A connection belongs to exactly one user.
            self._discard(connection)
            self._connections.setdefault(user_id, set()).add(connection)
            self._owners[connection] = user_id
        logger.info("Client connected", user_id=user_id, total=len(self._owners))

    async def unregister(self, connection: Connection) -> None:
        """Remove a connection. Unknown connections are ignored."""
        async with self._lock:
            self._discard(connection)
        logger.info("Client disconnected", total=len(self._owners))

    def _discard(self, connection: Connection) -> None:
        user_id = self._owners.pop(connection, None)
        if user_id is None:
            return
        connections = self._connections.get(user_id)
        if connections is not None:
            connections.discard(connection)
            if not connections:
                del self._connections[user_id]

    async def broadcast(self, user_id: str, message: Dict[str, Any]) -> int:
        """Send to every connection of user_id. Returns the number delivered."""
        async with self._lock:
            targets = list(self._connections.get(user_id, ()))
        if not targets:
            return 0

        try:
            frame = orjson.dumps(message, default=str).decode()
        except TypeError as e:
            logger.error("Broadcast message is not serializable", user_id=user_id, error=str(e))
            return 0

        failed: Set[Connection] = set()

        async def send_to_client(connection: Connection):
            try:
                await connection.send(frame)
            except Exception as e:
                logger.warning("Broadcast send failed", user_id=user_id, error=str(e))
                failed.add(connection)

        try:
            async with asyncio.TaskGroup() as tg:
                for connection in targets:
                    tg.create_task(send_to_client(connection))
        except* Exception as eg:
            for exc in eg.exceptions:
                logger.warning("Broadcast task failed", user_id=user_id, error=str(exc))

        if failed:
            async with self._lock:
                for connection in failed:
                    self._discard(connection)
            for connection in failed:
                await self._close_quietly(connection)

        delivered = len(targets) - len(failed)
        self._sent += delivered
        self._failed += len(failed)
        return delivered

    async def broadcast_download_update(self, user_id: str, data: Dict[str, Any],
                                        event: str = "download_status_update") -> int:
        return await self.broadcast(user_id, {
            "type": "download",
            "event": event,
            "data": data,
            "timestamp": _timestamp(),
        })

    async def broadcast_notification(self, user_id: str, data: Dict[str, Any]) -> int:
        return await self.broadcast(user_id, {
            "type": "notification",
            "event": "new_notification",
            "data": data,
            "timestamp": _timestamp(),
        })

    async def broadcast_system(self, event: str, data: Any = None) -> int:
        """Send a system event to every connected user."""
        async with self._lock:
            users = list(self._connections.keys())
        message = {"type": "system", "event": event, "data": data, "timestamp": _timestamp()}
        delivered = 0
        for user_id in users:
            delivered += await self.broadcast(user_id, message)
        return delivered

    def connection_count(self, user_id: Optional[str] = None) -> int:
        if user_id is None:
            return len(self._owners)
        return len(self._connections.get(user_id, ()))

    def stats(self) -> Dict[str, Any]:
        return {
            "connections": len(self._owners),
            "users": len(self._connections),
            "messages_sent": self._sent,
            "send_failures": self._failed,
        }

    async def close_all(self) -> None:
        async with self._lock:
            connections = list(self._owners.keys())
            self._connections.clear()
            self._owners.clear()
        for connection in connections:
            await self._close_quietly(connection)
        logger.info("Closed all connections", count=len(connections))

    @staticmethod
    async def _close_quietly(connection: Connection) -> None:
        close = getattr(connection, "close", None)
        if close is None:
            return
        try:
            await close()
        except Exception as e:
            logger.debug("Error closing connection", error=str(e))
