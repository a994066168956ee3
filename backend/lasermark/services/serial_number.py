# lasermark/services/serial_number.py

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Callable, Optional, Tuple

logger = logging.getLogger(__name__)

SERIAL_WRAP = 9999
INTERVAL_DAILY = "daily"
INTERVAL_NONE = "none"


@dataclass
class LatestRecord:
    serial: str
    timestamp: datetime


@dataclass
class SerialCounter:
    """Process-wide serial number state. Only the cycle issues from it."""
    current: int = 1
    initial: int = 1
    reset_hour: int = 6
    reset_minute: int = 0
    last_reset_at: Optional[datetime] = None
    manual_reset_pending: bool = False
    reset_interval: str = INTERVAL_DAILY


def format_serial(value: int) -> str:
    return str(value).zfill(4)


def parse_reset_time(value: str) -> Tuple[int, int]:
    hour, minute = (int(p) for p in value.split(":", 1))
    validate_reset_time(hour, minute)
    return hour, minute


def validate_reset_time(hour: int, minute: int) -> None:
    if not 0 <= hour <= 23:
        raise ValueError("Invalid hour. Must be between 0 and 23")
    if not 0 <= minute <= 59:
        raise ValueError("Invalid minute. Must be between 0 and 59")


def reset_boundary(now: datetime, hour: int, minute: int) -> datetime:
    """Most recent reset time at or before `now`."""
    boundary = now.replace(hour=hour, minute=minute, second=0, microsecond=0)
    if now < boundary:
        boundary -= timedelta(days=1)
    return boundary


class SerialNumberService:
    """
    Issues 4-digit serial numbers.

    Order of precedence on every issuance:
    1. manual reset pending -> issue the requested value as-is
    2. daily reset (reset time passed since the last reset) -> back to initial
    3. catch-up from the latest persisted record (restart self-healing)
    4. wraparound: 9999 is never issued, the counter goes back to initial
    """

    def __init__(
        self,
        counter: SerialCounter,
        latest_record: Callable[[], Optional[LatestRecord]] = lambda: None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.counter = counter
        self._latest_record = latest_record
        self._clock = clock

    @classmethod
    def from_config(
        cls,
        *,
        initial: int,
        reset_time: str,
        reset_interval: str,
        latest: Optional[LatestRecord],
        latest_record: Callable[[], Optional[LatestRecord]] = lambda: None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> "SerialNumberService":
        hour, minute = parse_reset_time(reset_time)
        boundary = reset_boundary(clock(), hour, minute)
        counter = SerialCounter(
            current=initial,
            initial=initial,
            reset_hour=hour,
            reset_minute=minute,
            reset_interval=reset_interval,
            last_reset_at=boundary,
        )
        if latest is not None:
            counter.current = int(latest.serial) + 1
            # last record predates the current window: the daily reset is still due
            if latest.timestamp < boundary:
                counter.last_reset_at = latest.timestamp
            logger.info("serial number resumed at %s from last record", format_serial(counter.current))
        return cls(counter, latest_record=latest_record, clock=clock)

    # ========== issuance ==========

    def next_serial(self) -> str:
        c = self.counter
        now = self._clock()

        if c.manual_reset_pending:
            c.manual_reset_pending = False
        elif not self._daily_reset(now):
            self._catch_up(now)

        self._wrap(now)

        serial = format_serial(c.current)
        c.current += 1
        return serial

    def _daily_reset(self, now: datetime) -> bool:
        c = self.counter
        if c.reset_interval != INTERVAL_DAILY:
            return False
        boundary = reset_boundary(now, c.reset_hour, c.reset_minute)
        if c.last_reset_at is not None and c.last_reset_at >= boundary:
            return False
        c.current = c.initial
        c.last_reset_at = now
        logger.info("serial number reset to %s at daily reset time", format_serial(c.initial))
        return True

    def _catch_up(self, now: datetime) -> None:
        c = self.counter
        latest = self._latest_record()
        if latest is None:
            return
        if latest.timestamp <= reset_boundary(now, c.reset_hour, c.reset_minute):
            return
        if c.last_reset_at is not None and latest.timestamp <= c.last_reset_at:
            return
        try:
            resumed = int(latest.serial) + 1
        except ValueError:
            logger.warning("ignoring non-numeric serial %r on latest record", latest.serial)
            return
        if resumed != c.current:
            logger.info("serial number set to %s from latest record", format_serial(resumed))
        c.current = resumed

    def _wrap(self, now: datetime) -> None:
        c = self.counter
        if c.current >= SERIAL_WRAP:
            c.current = c.initial
            c.last_reset_at = now
            logger.info("serial number reset to %s after reaching %d", format_serial(c.initial), SERIAL_WRAP)

    # ========== adjustments ==========

    def decrement(self) -> str:
        """Give back the last issued number (the cycle that took it was aborted)."""
        c = self.counter
        c.current = max(c.current - 1, 0)
        return format_serial(c.current)

    def manual_reset(self, value: int) -> Tuple[int, datetime]:
        value = int(value)
        if not 0 <= value < SERIAL_WRAP:
            raise ValueError("Invalid serial number value")
        c = self.counter
        c.current = value
        c.last_reset_at = self._clock()
        c.manual_reset_pending = True
        logger.info("serial number manually reset to %s", format_serial(value))
        return c.current, c.last_reset_at

    def set_reset_time(self, hour: int, minute: int) -> None:
        validate_reset_time(hour, minute)
        self.counter.reset_hour = hour
        self.counter.reset_minute = minute
        logger.info("serial reset time set to %02d:%02d", hour, minute)

    def update_initial(self, value: int) -> None:
        value = int(value)
        if not 0 <= value < SERIAL_WRAP:
            raise ValueError("Invalid serial number value")
        self.counter.initial = value
        self.counter.current = value
        logger.info("initial serial number updated to %s", format_serial(value))

    @property
    def current(self) -> str:
        return format_serial(self.counter.current)
