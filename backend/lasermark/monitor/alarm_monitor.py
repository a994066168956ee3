# lasermark/monitor/alarm_monitor.py

from __future__ import annotations

import asyncio
import logging
from datetime import datetime
from typing import Any, List

from lasermark.core.errors import TransportError
from lasermark.plc.registers import AlarmRule

logger = logging.getLogger(__name__)


class AlarmMonitor:
    """
    Polls every bit of one alarm register.

    No edge detection: a true bit is reported on every poll while it holds.
    Alarms are notifications only, they never block the cycle.
    """

    def __init__(self, gateway: Any, rule: AlarmRule, events: Any, *, interval: float = 0.1) -> None:
        self.gateway = gateway
        self.rule = rule
        self.events = events
        self.interval = interval

    async def poll_once(self) -> List[str]:
        raised = []
        register = self.rule.register
        for bit, alarm in self.rule.bits.items():
            try:
                value = await self.gateway.read_bit(register, bit)
            except TransportError as e:
                logger.error("error checking register %s bit %s: %s", register, bit, e)
                continue
            if value:
                self.events.emit(alarm.event_name, {
                    "register": register,
                    "bit": bit,
                    "value": value,
                    "message": alarm.message,
                    "timestamp": datetime.now().isoformat(),
                })
                logger.info("%s (register %s.%s)", alarm.message, register, bit)
                raised.append(alarm.event_name)
        return raised

    async def run(self) -> None:
        logger.info("alarm monitor watching register %s bits %s", self.rule.register, list(self.rule.bits))
        while True:
            await self.poll_once()
            await asyncio.sleep(self.interval)
