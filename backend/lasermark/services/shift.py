# lasermark/services/shift.py

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Mapping, Optional, Union

UNKNOWN_SHIFT = "Unknown"


@dataclass(frozen=True)
class Shift:
    name: str
    start: str  # HH:MM
    end: str    # HH:MM, may be earlier than start (overnight)


DEFAULT_SHIFTS: List[Shift] = [
    Shift("A", "06:00", "14:30"),
    Shift("B", "14:30", "23:00"),
    Shift("C", "23:00", "06:00"),
]


def _at(base: datetime, hhmm: str) -> datetime:
    hours, minutes = (int(p) for p in hhmm.split(":", 1))
    return base.replace(hour=hours, minute=minutes, second=0, microsecond=0)


class ShiftTable:
    """Time-of-day -> shift label lookup."""

    def __init__(self, shifts: Optional[List[Shift]] = None) -> None:
        self.shifts = list(shifts) if shifts else list(DEFAULT_SHIFTS)

    @classmethod
    def from_mapping(cls, config: Mapping[str, Union[str, Mapping[str, str]]]) -> "ShiftTable":
        """
        Accepts either start times only ({"A": "06:00", "B": "14:30", ...}),
        where each shift ends when the next one starts (last wraps to first),
        or explicit ranges ({"A": {"start": "06:00", "end": "14:30"}, ...}).
        """
        names = list(config.keys())
        shifts: List[Shift] = []
        for i, name in enumerate(names):
            value = config[name]
            if isinstance(value, Mapping):
                shifts.append(Shift(name, value["start"], value["end"]))
                continue
            nxt = config[names[(i + 1) % len(names)]]
            end = nxt["start"] if isinstance(nxt, Mapping) else nxt
            shifts.append(Shift(name, value, end))
        return cls(shifts)

    def current_shift(self, now: Optional[datetime] = None) -> str:
        now = now or datetime.now()
        for shift in self.shifts:
            start = _at(now, shift.start)
            end = _at(now, shift.end)
            t = now
            if end <= start:
                # overnight: 23:00-06:00 -> [23:00 today, 06:00 tomorrow)
                end += timedelta(days=1)
                if t < start:
                    t += timedelta(days=1)
            if start <= t < end:
                return shift.name
        return UNKNOWN_SHIFT

    def next_shift(self, name: str) -> str:
        names = [s.name for s in self.shifts]
        return names[(names.index(name) + 1) % len(names)]

    def as_dict(self) -> Dict[str, Dict[str, str]]:
        return {s.name: {"start": s.start, "end": s.end} for s in self.shifts}
