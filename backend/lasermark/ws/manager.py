# lasermark/ws/manager.py

from __future__ import annotations

import logging
from typing import Set

from fastapi import WebSocket

logger = logging.getLogger(__name__)


class ConnectionManager:
    """WebSocket connections of dashboard clients + broadcast"""

    def __init__(self) -> None:
        self._active: Set[WebSocket] = set()

    @property
    def count(self) -> int:
        return len(self._active)

    async def connect(self, ws: WebSocket) -> None:
        await ws.accept()
        self._active.add(ws)
        logger.info("event client connected (%d active)", len(self._active))

    def disconnect(self, ws: WebSocket) -> None:
        if ws in self._active:
            self._active.remove(ws)
            logger.info("event client disconnected (%d active)", len(self._active))

    async def broadcast_json(self, payload: dict) -> None:
        dead = []
        for ws in list(self._active):
            try:
                await ws.send_json(payload)
            except Exception:
                dead.append(ws)

        for ws in dead:
            self.disconnect(ws)


ws_manager = ConnectionManager()
