# lasermark/services/grading.py

from __future__ import annotations

import enum
import logging
import string
from dataclasses import dataclass
from typing import Optional, Tuple

from lasermark.scanner.client import NG

logger = logging.getLogger(__name__)

GRADES = string.ascii_uppercase
NG_GRADE = "F"


class ScanOutcome(str, enum.Enum):
    OK = "OK"
    NG = "NG"
    NA = "N/A"


@dataclass(frozen=True)
class AcceptablePolicy:
    """Accepts every grade from A up to and including `cutoff`."""
    cutoff: Optional[str] = None

    @classmethod
    def from_cutoff(cls, cutoff: Optional[str]) -> "AcceptablePolicy":
        if cutoff:
            cutoff = cutoff.strip().upper()
        if not cutoff or len(cutoff) != 1 or cutoff not in GRADES:
            logger.error("invalid grade cutoff %r, no grade will be accepted", cutoff)
            return cls(None)
        return cls(cutoff)

    @property
    def accepted(self) -> str:
        if self.cutoff is None:
            return ""
        return GRADES[: GRADES.index(self.cutoff) + 1]

    def accepts(self, grade: Optional[str]) -> bool:
        if not grade:
            return False
        return grade.upper() in self.accepted


def is_ng(reading: Optional[str]) -> bool:
    return reading is None or reading.strip().upper() == NG


def split_reading(reading: str) -> Tuple[str, str]:
    """"<data><grade>" -> (data, grade). The grade is the trailing character."""
    return reading[:-1], reading[-1:].upper()
