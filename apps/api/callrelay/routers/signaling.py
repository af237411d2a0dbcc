"""Relay-channel endpoint carrying signaling events."""
from __future__ import annotations

import json
import logging
from uuid import uuid4

from fastapi import APIRouter, WebSocket, WebSocketDisconnect

from ..services.coordinator import coordinator
from ..services.registry import SignalingConnection

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/ws")
async def relay_endpoint(websocket: WebSocket) -> None:
    """One worker per channel: inbound events are handled strictly in arrival order."""

    await websocket.accept()
    connection = SignalingConnection(connection_id=str(uuid4()), send=websocket.send_json)
    await coordinator.connect(connection)

    try:
        while True:
            frame = await websocket.receive()
            if frame["type"] == "websocket.disconnect":
                raise WebSocketDisconnect(frame.get("code", 1000))
            raw = frame.get("text")
            if raw is None:
                logger.warning("Ignoring binary frame on %s", connection.connection_id)
                continue
            try:
                message = json.loads(raw)
            except json.JSONDecodeError:
                logger.warning("Ignoring non-JSON frame on %s", connection.connection_id)
                continue
            if not isinstance(message, dict) or not isinstance(message.get("event"), str):
                logger.warning("Ignoring unframed message on %s", connection.connection_id)
                continue
            await coordinator.dispatch(connection, message["event"], message.get("data"))
    except WebSocketDisconnect:
        pass
    finally:
        await coordinator.disconnect(connection)
