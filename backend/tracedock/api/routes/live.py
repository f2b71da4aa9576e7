# tracedock/api/routes/live.py
"""
WebSocket /live

Dashboards connect here to receive every ingested log as
`{"type": "log", "data": <LogEntry>}`. The server only pushes; anything the
client sends is read and ignored so disconnects are noticed promptly.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect

from tracedock.api.deps import get_ws_broadcaster
from tracedock.services.broadcast import LiveBroadcaster
from tracedock.utils.timeutil import isoformat_z, utcnow

logger = logging.getLogger(__name__)

router = APIRouter()


@router.websocket("/live")
async def live(websocket: WebSocket, broadcaster: LiveBroadcaster = Depends(get_ws_broadcaster)):
    await websocket.accept()
    broadcaster.add(websocket)
    try:
        await websocket.send_json(
            {
                "type": "connected",
                "message": "Connected to trace-dock live stream",
                "timestamp": isoformat_z(utcnow()),
            }
        )
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        pass
    finally:
        broadcaster.discard(websocket)
