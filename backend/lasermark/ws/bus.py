# lasermark/ws/bus.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Dict, Optional

from lasermark.ws.manager import ConnectionManager, ws_manager

logger = logging.getLogger(__name__)


class EventBus:
    """Fire-and-forget event sink for the cycle, the monitors and the API.

    - emit() may be called from any thread; it only queues the event
      (call_soon_threadsafe) and never waits for delivery
    - run() drains the queue on the server loop and broadcasts to the
      WebSocket clients, then hands the event to the optional MQTT publisher
    - events emitted before set_loop() are dropped
    """

    def __init__(self, manager: ConnectionManager = ws_manager, publisher: Optional[Any] = None) -> None:
        self._queue: asyncio.Queue[Dict[str, Any]] = asyncio.Queue()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self.manager = manager
        self.publisher = publisher

    def set_loop(self, loop: asyncio.AbstractEventLoop) -> None:
        # a queue is bound to the first loop that waits on it
        self._queue = asyncio.Queue()
        self._loop = loop

    def emit(self, event_type: str, data: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        event = {
            "type": event_type,
            "ts": datetime.now().isoformat(),
            "data": data or {},
        }
        if self._loop is not None and not self._loop.is_closed():
            self._loop.call_soon_threadsafe(self._queue.put_nowait, event)
        return event

    async def run(self) -> None:
        while True:
            event = await self._queue.get()
            await self.manager.broadcast_json(event)
            if self.publisher is not None:
                await self.publisher.publish(event)


event_bus = EventBus()
