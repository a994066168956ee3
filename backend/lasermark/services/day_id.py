# lasermark/services/day_id.py

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Callable

from lasermark.services.serial_number import reset_boundary


class DayIdCounter:
    """Per-day record numbering, restarting at 1 at the serial reset time."""

    def __init__(
        self,
        reset_hour: int = 6,
        reset_minute: int = 0,
        clock: Callable[[], datetime] = datetime.now,
        start: int = 1,
    ) -> None:
        self.reset_hour = reset_hour
        self.reset_minute = reset_minute
        self._clock = clock
        self.current = start
        self.last_reset = reset_boundary(clock(), reset_hour, reset_minute)

    def set_reset_time(self, hour: int, minute: int) -> None:
        self.reset_hour = hour
        self.reset_minute = minute
        self.last_reset = reset_boundary(self._clock(), hour, minute)

    def next(self) -> int:
        now = self._clock()
        if now >= self.last_reset + timedelta(days=1):
            self.current = 1
            self.last_reset = reset_boundary(now, self.reset_hour, self.reset_minute)
        day_id = self.current
        self.current += 1
        return day_id
