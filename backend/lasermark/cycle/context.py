# lasermark/cycle/context.py

from __future__ import annotations

import enum
from dataclasses import dataclass
from typing import Optional

from lasermark.core.config import Settings


class CycleState(str, enum.Enum):
    AWAIT_START = "AWAIT_START"
    FIRST_SCAN = "FIRST_SCAN"
    GENERATE_BARCODE = "GENERATE_BARCODE"
    AWAIT_TRANSFER_ACK = "AWAIT_TRANSFER_ACK"
    SECOND_SCAN = "SECOND_SCAN"
    FINALIZE = "FINALIZE"


class CycleOutcome(str, enum.Enum):
    COMPLETED = "COMPLETED"
    ABORTED_RESET = "ABORTED_RESET"
    ABORTED_OK_PART = "ABORTED_OK_PART"
    ABORTED_TIMEOUT = "ABORTED_TIMEOUT"
    ABORTED_VERIFICATION = "ABORTED_VERIFICATION"
    FAILED = "FAILED"


class WaitResult(str, enum.Enum):
    CONDITION_MET = "CONDITION_MET"
    RESET = "RESET"
    TIMEOUT = "TIMEOUT"


@dataclass
class CycleContext:
    """State of one part going through the cell. Never reused across cycles."""
    sequence: int
    part_number: str = ""
    barcode_text: str = ""
    serial: str = ""
    first_reading: Optional[str] = None
    second_reading: Optional[str] = None
    grade: Optional[str] = None
    matched: bool = False
    remark: str = ""

    day_id: Optional[int] = None
    row_inserted: bool = False
    result_recorded: bool = False
    state: CycleState = CycleState.AWAIT_START


@dataclass(frozen=True)
class CycleTimings:
    plc_wait_timeout: float = 100.0
    plc_poll_interval: float = 0.1
    cycle_gap: float = 1.2
    error_cooldown: float = 5.0
    reset_settle: float = 0.5
    abort_settle: float = 1.0
    second_scan_retries: int = 2
    second_scan_retry_delay: float = 2.0
    image_wait: float = 5.0
    final_settle: float = 3.0
    max_reading_length: int = 29

    @classmethod
    def from_settings(cls, s: Settings) -> "CycleTimings":
        return cls(
            plc_wait_timeout=s.PLC_WAIT_TIMEOUT,
            plc_poll_interval=s.PLC_POLL_INTERVAL,
            cycle_gap=s.CYCLE_GAP,
            error_cooldown=s.ERROR_COOLDOWN,
            reset_settle=s.RESET_SETTLE,
            abort_settle=s.ABORT_SETTLE,
            second_scan_retries=s.SECOND_SCAN_RETRIES,
            second_scan_retry_delay=s.SECOND_SCAN_RETRY_DELAY,
            image_wait=s.IMAGE_WAIT,
            final_settle=s.FINAL_SETTLE,
            max_reading_length=s.SCANNER_MAX_READING_LENGTH,
        )
