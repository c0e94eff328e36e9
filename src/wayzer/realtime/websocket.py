"""WebSocket endpoint — one socket per browser tab, notifications only.

Each client connects to /ws and must send {"type": "auth", "token": JWT}
as its first frame (see realtime.handshake). After that the server
pushes frames; the only thing a client may send is a "ping".

Inbound frames that are binary, not JSON, or of an unknown type are logged and
ignored; the connection stays open.
"""

import json

import structlog
from fastapi import APIRouter, WebSocket, WebSocketDisconnect
from starlette.websockets import WebSocketState

from wayzer.config import settings
from wayzer.realtime import events
from wayzer.realtime.registry import Connection

logger = structlog.get_logger()
router = APIRouter()


@router.websocket(settings.ws_path)
async def chat_websocket(websocket: WebSocket):
    """Authenticate, register, then keep the socket open until it closes."""
    await websocket.accept()

    registry = websocket.app.state.registry
    handshake = websocket.app.state.handshake

    connection = Connection(websocket)
    user_id = await handshake.authenticate(connection)
    if user_id is None:
        return

    try:
        # Ends when either side closes (a forced logout closes from here).
        while websocket.application_state == WebSocketState.CONNECTED:
            raw = await connection.receive_text()
            if raw is None:
                logger.warning("ws.malformed_frame", connection_id=connection.id, binary=True)
                continue
            await _handle_client_frame(connection, raw)
    except WebSocketDisconnect:
        pass
    finally:
        registry.unregister(connection)


async def _handle_client_frame(connection: Connection, raw: str) -> None:
    try:
        frame = json.loads(raw)
    except ValueError:
        logger.warning("ws.malformed_frame", connection_id=connection.id, size=len(raw))
        return
    if not isinstance(frame, dict):
        logger.warning("ws.malformed_frame", connection_id=connection.id, size=len(raw))
        return

    frame_type = frame.get("type")
    if frame_type == events.PING:
        await connection.send_json({"type": events.PONG})
    elif frame_type == events.AUTH:
        # Identity is fixed for the life of the socket.
        logger.info("ws.reauth_ignored", connection_id=connection.id, user_id=connection.user_id)
    else:
        logger.info("ws.unknown_frame", connection_id=connection.id, frame_type=frame_type)
