"""Live WebSocket connections keyed by connection id."""
from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from aiohttp import web

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    id: str
    socket: web.WebSocketResponse
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class ConnectionRegistry:
    """Tracks open sockets so frames reach the connection that asked.

    Sending never raises: a missing or closed socket and transport
    errors are logged and reported as ``False``.
    """

    def __init__(self) -> None:
        self._connections: dict[str, Connection] = {}

    def add(self, socket: web.WebSocketResponse) -> str:
        connection_id = str(uuid.uuid4())
        self._connections[connection_id] = Connection(id=connection_id, socket=socket)
        logger.info("Connection added: %s (active=%d)", connection_id, len(self._connections))
        return connection_id

    def remove(self, connection_id: str) -> None:
        if self._connections.pop(connection_id, None) is not None:
            logger.info("Connection removed: %s (active=%d)", connection_id, len(self._connections))

    def get(self, connection_id: str) -> Connection | None:
        return self._connections.get(connection_id)

    def __len__(self) -> int:
        return len(self._connections)

    async def send(self, connection_id: str, frame: dict[str, Any]) -> bool:
        conn = self._connections.get(connection_id)
        if conn is None:
            logger.warning(
                "Connection %s not found, dropping %s frame",
                connection_id, frame.get("type"),
            )
            return False
        if conn.socket.closed:
            logger.warning(
                "Socket %s not open, dropping %s frame",
                connection_id, frame.get("type"),
            )
            return False
        try:
            await conn.socket.send_json(frame)
        except (ConnectionError, RuntimeError) as exc:
            logger.warning("Failed to send %s frame to %s: %s", frame.get("type"), connection_id, exc)
            return False
        logger.debug("Sent %s frame to %s", frame.get("type"), connection_id)
        return True
