# lasermark/plc/registers.py

"""PLC register map for the marking cell.

Every flag is a (register, bit) pair inside a 16-bit holding register.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass(frozen=True)
class RegisterAddress:
    register: int
    bit: int

    def __post_init__(self) -> None:
        if not 0 <= self.register <= 0xFFFF:
            raise ValueError(f"register out of range: {self.register}")
        if not 0 <= self.bit <= 15:
            raise ValueError(f"bit out of range: {self.bit}")

    def __str__(self) -> str:
        return f"{self.register}.{self.bit}"


@dataclass(frozen=True)
class AlarmBit:
    event_name: str
    message: str


@dataclass(frozen=True)
class AlarmRule:
    register: int
    bits: Dict[int, AlarmBit] = field(default_factory=dict)


# cycle handshake
START = RegisterAddress(1400, 0)
FIRST_SCAN_TRIGGER = RegisterAddress(1415, 0)
SECOND_SCAN_TRIGGER = RegisterAddress(1416, 15)
FIRST_SCAN_NG = RegisterAddress(1414, 14)   # no code on the part -> go mark it
FIRST_SCAN_OK = RegisterAddress(1414, 13)   # part already marked
FILE_TRANSFER = RegisterAddress(1414, 15)
TRANSFER_ACK = RegisterAddress(1410, 3)
FINAL_ACK = RegisterAddress(1415, 7)
RESULT_OK = RegisterAddress(1417, 0)
RESULT_NG = RegisterAddress(1417, 1)

# reset
RESET_COIL = RegisterAddress(1600, 0)
RESET_ACK = RegisterAddress(1500, 3)

# bits cleared by a masked reset, per register
RESET_MASKS: Dict[int, List[int]] = {
    1414: [3, 4, 6, 7],
    1415: [4],
}

ALARM_RULES: List[AlarmRule] = [
    AlarmRule(
        register=1490,
        bits={
            0: AlarmBit("part-present", "Part not present"),
            1: AlarmBit("emergency-button", "Emergency push button pressed"),
            2: AlarmBit("safety-curtain", "Safety curtain error"),
            3: AlarmBit("servo-position", "Servo not home position"),
            4: AlarmBit("reject-bin", "Put the part in the rejection bin"),
        },
    ),
    AlarmRule(
        register=1600,
        bits={
            9: AlarmBit("ftp", "Image not getting saved, please run ftp server"),
        },
    ),
    AlarmRule(
        register=1700,
        bits={
            1: AlarmBit("reject-bin", "Put the part in the rejection bin"),
        },
    ),
]
