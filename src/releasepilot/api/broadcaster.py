"""WebSocket fan-out of real-time release events."""

from __future__ import annotations

import asyncio
import contextlib
import logging
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """Manages WebSocket connections of real-time observers.

    Every connected client receives every event; there are no topics.
    """

    def __init__(self, send_timeout: float = 5.0) -> None:
        """Initialize the connection manager.

        Args:
            send_timeout: Seconds one client may take to accept an event
                before it is dropped.
        """
        self._connections: list[WebSocket] = []
        self._lock = asyncio.Lock()
        self._send_timeout = send_timeout

    @property
    def connection_count(self) -> int:
        """Number of connected observers."""
        return len(self._connections)

    async def connect(self, websocket: WebSocket) -> None:
        """Accept and register a WebSocket connection.

        Args:
            websocket: The WebSocket to connect.
        """
        await websocket.accept()
        async with self._lock:
            self._connections.append(websocket)
        logger.info(f"WebSocket client connected ({len(self._connections)} total)")

    async def disconnect(self, websocket: WebSocket) -> None:
        """Remove a WebSocket connection.

        Args:
            websocket: The WebSocket to disconnect.
        """
        async with self._lock:
            with contextlib.suppress(ValueError):
                self._connections.remove(websocket)
        logger.info("WebSocket client disconnected")

    async def broadcast(self, event: dict[str, Any]) -> None:
        """Send an event to every connected observer.

        Clients are written to concurrently. Connections that fail to
        receive the event, or do not take it within ``send_timeout``, are
        dropped, so one stalled observer never holds up the caller.

        Args:
            event: A ``{"type": ..., "data": ...}`` mapping.
        """
        async with self._lock:
            connections = self._connections.copy()

        if connections:
            await asyncio.gather(*(self._send(websocket, event) for websocket in connections))

    async def _send(self, websocket: WebSocket, event: dict[str, Any]) -> None:
        try:
            await asyncio.wait_for(websocket.send_json(event), timeout=self._send_timeout)
        except TimeoutError:
            logger.warning(f"WebSocket client did not accept event within {self._send_timeout}s")
            await self.disconnect(websocket)
        except Exception as e:
            logger.warning(f"Failed to send to WebSocket: {e}")
            await self.disconnect(websocket)
