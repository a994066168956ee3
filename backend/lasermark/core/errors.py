# lasermark/core/errors.py

from __future__ import annotations

from typing import Optional


class CellError(Exception):
    """Base class for everything the cell controller raises on purpose."""


class TransportError(CellError):
    """PLC or scanner unreachable, or the transport returned an error."""


class WriteTimeout(TransportError):
    """A PLC write did not confirm in time. PLC state is undefined afterwards."""

    def __init__(self, register: int, timeout: float) -> None:
        super().__init__(f"write to register {register} not confirmed within {timeout}s")
        self.register = register
        self.timeout = timeout


class VerificationFailure(CellError):
    """Hand-off file read-back did not match what was written."""

    def __init__(self, path: str, expected: str, actual: Optional[str] = None) -> None:
        super().__init__(f"verification failed for {path}")
        self.path = path
        self.expected = expected
        self.actual = actual


class ResetDetected(CellError):
    """Control-flow signal: unwind the current cycle back to AWAIT_START."""

    def __init__(self, state: str = "") -> None:
        super().__init__(f"reset detected during {state or 'cycle'}")
        self.state = state


class FirstScanAccepted(CellError):
    """First scan already reads a code: the part is marked, restart without marking."""

    def __init__(self, reading: str) -> None:
        super().__init__(f"part already marked: {reading}")
        self.reading = reading


class GradeRejected(CellError):
    def __init__(self, grade: str, accepted: str) -> None:
        super().__init__(f"grade {grade or 'MISSING'} not in accepted set [{accepted}]")
        self.grade = grade


class ImageNotFound(CellError):
    def __init__(self, text: str) -> None:
        super().__init__(f"no image containing {text}")
        self.text = text


class CycleTimeout(CellError):
    """A bounded PLC wait inside the cycle expired. Handled like a reset, without the serial give-back."""

    def __init__(self, address: str, timeout: float) -> None:
        super().__init__(f"timed out after {timeout}s waiting for {address}")
        self.address = address
        self.timeout = timeout
