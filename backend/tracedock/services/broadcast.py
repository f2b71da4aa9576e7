# tracedock/services/broadcast.py
"""
Fan-out of freshly ingested logs to dashboard WebSocket clients.

Fire-and-forget: a client whose send fails (slow, closed, broken pipe) is
dropped from the set and never retried, so one bad client cannot hold up
ingestion for everyone else.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Dict, Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)

# Upper bound for a single send; slower clients are dropped.
SEND_TIMEOUT_SECONDS = 2.0


class LiveBroadcaster:
    def __init__(self, send_timeout: float = SEND_TIMEOUT_SECONDS):
        self.send_timeout = send_timeout
        self._clients: Set[WebSocket] = set()

    @property
    def client_count(self) -> int:
        return len(self._clients)

    def add(self, websocket: WebSocket) -> None:
        self._clients.add(websocket)
        logger.info("Live client connected (%d total)", len(self._clients))

    def discard(self, websocket: WebSocket) -> None:
        if websocket in self._clients:
            self._clients.discard(websocket)
            logger.info("Live client disconnected (%d total)", len(self._clients))

    async def _send(self, websocket: WebSocket, message: Dict[str, Any]) -> bool:
        try:
            await asyncio.wait_for(websocket.send_json(message), timeout=self.send_timeout)
        except Exception as exc:  # any transport failure drops the client
            logger.debug("Dropping live client after failed send: %r", exc)
            return False
        return True

    async def broadcast(self, message: Dict[str, Any]) -> int:
        """Send `message` to every client. Returns how many sends succeeded."""
        clients = list(self._clients)
        if not clients:
            return 0

        results = await asyncio.gather(*(self._send(ws, message) for ws in clients))
        for ws, ok in zip(clients, results):
            if not ok:
                self._clients.discard(ws)
        return sum(1 for ok in results if ok)

    async def broadcast_log(self, log: Dict[str, Any]) -> int:
        return await self.broadcast({"type": "log", "data": log})

    async def close(self) -> None:
        clients = list(self._clients)
        self._clients.clear()
        for ws in clients:
            try:
                await ws.close(code=1001)
            except Exception:  # already closed
                logger.debug("Live client was already closed")
