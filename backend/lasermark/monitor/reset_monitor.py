# lasermark/monitor/reset_monitor.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, Optional

from lasermark.core.errors import TransportError
from lasermark.plc import registers
from lasermark.plc.registers import RegisterAddress

logger = logging.getLogger(__name__)


class ResetSignal:
    """Coalescing reset flag shared by the reset poller and the cycle.

    Firing again before the cycle consumed the previous reset is a no-op, so
    one burst of resets is handled (and compensated) exactly once.
    """

    def __init__(self) -> None:
        self._event = asyncio.Event()
        self.fired_count = 0

    def fire(self) -> bool:
        if self._event.is_set():
            return False
        self._event.set()
        self.fired_count += 1
        return True

    def is_set(self) -> bool:
        return self._event.is_set()

    def clear(self) -> None:
        self._event.clear()

    async def wait(self, timeout: Optional[float] = None) -> bool:
        """True when the signal is (or becomes) set within `timeout`."""
        if self._event.is_set():
            return True
        if timeout is not None and timeout <= 0:
            return False
        try:
            await asyncio.wait_for(self._event.wait(), timeout)
        except asyncio.TimeoutError:
            return False
        return True


class ResetMonitor:
    """Polls the reset coil and fires the signal once per rising edge."""

    def __init__(
        self,
        gateway: Any,
        signal: ResetSignal,
        events: Any = None,
        *,
        coil: RegisterAddress = registers.RESET_COIL,
        interval: float = 0.05,
    ) -> None:
        self.gateway = gateway
        self.signal = signal
        self.events = events
        self.coil = coil
        self.interval = interval
        self.last_state = False

    async def poll_once(self) -> bool:
        value = await self.gateway.read_bit(self.coil.register, self.coil.bit)
        rising = value and not self.last_state
        self.last_state = value
        if rising:
            logger.warning("reset signal detected (%s = 1)", self.coil)
            self.signal.fire()
            if self.events is not None:
                self.events.emit("reset", {
                    "register": self.coil.register,
                    "bit": self.coil.bit,
                    "timestamp": datetime.now().isoformat(),
                })
        return rising

    async def run(self) -> None:
        logger.info("reset monitor watching %s every %.0f ms", self.coil, self.interval * 1000)
        while True:
            try:
                await self.poll_once()
            except TransportError as e:
                logger.error("error checking reset signal: %s", e)
            await asyncio.sleep(self.interval)
