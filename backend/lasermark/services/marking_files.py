# lasermark/services/marking_files.py

from __future__ import annotations

import logging
from pathlib import Path

from lasermark.core.errors import VerificationFailure

logger = logging.getLogger(__name__)


class MarkingFiles:
    """code.txt / text.txt hand-off to the marking laser controller.

    Both files are overwritten every cycle (UTF-8, nothing but the payload)
    and read back after writing. This process is the only writer.
    """

    def __init__(self, code_path: str, text_path: str) -> None:
        self.code_path = Path(code_path)
        self.text_path = Path(text_path)

    def _write(self, path: Path, data: str) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        # newline="" keeps the payload byte-exact on every platform
        with path.open("w", encoding="utf-8", newline="") as f:
            f.write(data)

    def _read(self, path: Path) -> str:
        with path.open("r", encoding="utf-8", newline="") as f:
            return f.read()

    def write_verified(self, path: Path, data: str, description: str = "data", retries: int = 0) -> None:
        """Write and read back, rewriting up to `retries` times before raising VerificationFailure."""
        actual = None
        for attempt in range(1, retries + 2):
            self._write(path, data)
            actual = self._read(path)
            if actual == data:
                logger.info("%s written to %s", description, path.name)
                return
            logger.warning("%s read back from %s did not match (attempt %d/%d)",
                           description, path.name, attempt, retries + 1)
        raise VerificationFailure(str(path), data, actual)

    def write_marking(self, code_text: str, serial_text: str, retries: int = 0) -> None:
        self.write_verified(self.code_path, code_text, "OCR data", retries)
        self.write_verified(self.text_path, serial_text, "serial number with date", retries)

    def verify_code(self, expected: str, retries: int = 2) -> bool:
        """Read code.txt back, rewriting it up to `retries` times on mismatch."""
        for attempt in range(1, retries + 2):
            try:
                actual = self._read(self.code_path)
            except FileNotFoundError:
                actual = None
            if actual == expected:
                return True
            if attempt <= retries:
                logger.warning("verification attempt %d failed, rewriting %s", attempt, self.code_path.name)
                self._write(self.code_path, expected)
        return False

    def read_code(self) -> str:
        return self._read(self.code_path).strip()

    def matches_code(self, scanned: str) -> bool:
        """Exact match of scanned data against the text most recently marked."""
        is_match = scanned == self.read_code()
        logger.info("comparison result: %s", "match" if is_match else "no match")
        return is_match

    def clear_code(self) -> None:
        self._write(self.code_path, "")
