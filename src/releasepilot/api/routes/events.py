"""Real-time event stream for ReleasePilot observers."""

from __future__ import annotations

import logging

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def event_stream(websocket: WebSocket) -> None:
    """WebSocket endpoint pushing ``{type, data}`` release events.

    Sends a ``connected`` greeting on accept and answers ``ping`` with
    ``pong``. Everything else from the client is ignored.

    Args:
        websocket: The WebSocket connection.
    """
    manager = websocket.app.state.connections
    await manager.connect(websocket)

    try:
        await websocket.send_json(
            {"type": "connected", "data": {"message": "Connected to release updates"}}
        )
        while True:
            data = await websocket.receive_text()
            if data == "ping":
                await websocket.send_text("pong")
    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error(f"WebSocket error: {e}")
    finally:
        await manager.disconnect(websocket)
