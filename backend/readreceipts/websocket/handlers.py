import json
import logging
from typing import Any

from fastapi import WebSocket, WebSocketDisconnect

from readreceipts.api.deps import USER_ID_HEADER
from readreceipts.websocket.manager import ConnectionManager

logger = logging.getLogger(__name__)


async def receipts_ws_handler(websocket: WebSocket, manager: ConnectionManager) -> None:
    """Full lifecycle handler for a client WebSocket connection.

    The host injects the acting user's id as a header; connections without
    it are closed with 1008.  Clients then send
    ``{"type": "subscribe" | "unsubscribe", "channel_id": ...}`` frames for
    the channels they display.
    """
    await websocket.accept()
    user_id = websocket.headers.get(USER_ID_HEADER, "")
    if not user_id:
        await websocket.close(code=1008)
        return

    await manager.connect(websocket, user_id)
    try:
        while True:
            raw = await websocket.receive_text()
            try:
                data: dict[str, Any] = json.loads(raw)
            except json.JSONDecodeError:
                continue
            if not isinstance(data, dict):
                continue

            frame_type = data.get("type")
            channel_id = str(data.get("channel_id") or "")

            if frame_type == "subscribe" and channel_id:
                manager.subscribe(websocket, channel_id)
                await websocket.send_text(json.dumps({"type": "subscribed", "channel_id": channel_id}))
            elif frame_type == "unsubscribe" and channel_id:
                manager.unsubscribe(websocket, channel_id)
            elif frame_type == "ping":
                await websocket.send_text(json.dumps({"type": "pong"}))
    except WebSocketDisconnect:
        pass
    finally:
        manager.disconnect(websocket, user_id)
