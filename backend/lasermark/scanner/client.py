# lasermark/scanner/client.py

from __future__ import annotations

import asyncio
import csv
import logging
from datetime import datetime
from pathlib import Path
from typing import Optional, Tuple

from lasermark.core.errors import TransportError

logger = logging.getLogger(__name__)

NG = "NG"
NO_READ_LINES = ("0", "0\r\n0")
AUDIT_HEADER = ["Timestamp", "First Data", "Second Data"]


def normalize_reading(first: str, second: str = "") -> str:
    """
    "0" / "0\\r\\n0" from the reader means no read -> "NG".
    Anything else is the raw concatenation first + second.
    """
    if first in NO_READ_LINES:
        return NG
    return first + second


class ScannerClient:
    """One persistent TCP connection to the line-scan barcode reader.

    The trigger is a PLC bit written by the cycle; this client only waits for
    what the reader sends back. Calls are serialized, so a second caller waits
    for the first read to finish.
    """

    def __init__(
        self,
        *,
        audit_path: Optional[str] = None,
        read_timeout: Optional[float] = None,
        chunk_size: int = 1024,
    ) -> None:
        self.audit_path = Path(audit_path) if audit_path else None
        self.read_timeout = read_timeout
        self.chunk_size = chunk_size
        self.host: Optional[str] = None
        self.port: Optional[int] = None
        self._reader: Optional[asyncio.StreamReader] = None
        self._writer: Optional[asyncio.StreamWriter] = None
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._writer is not None and not self._writer.is_closing()

    async def connect(self, host: str, port: int) -> Tuple[asyncio.StreamReader, asyncio.StreamWriter]:
        if self.connected:
            logger.debug("reusing scanner connection %s:%s", self.host, self.port)
            return self._reader, self._writer

        logger.info("connecting to scanner %s:%s", host, port)
        try:
            self._reader, self._writer = await asyncio.open_connection(host, port)
        except OSError as e:
            self._invalidate()
            raise TransportError(f"scanner connect failed {host}:{port}: {e}") from e
        self.host, self.port = host, port
        logger.info("scanner connected %s:%s", host, port)
        return self._reader, self._writer

    async def _reconnect_if_needed(self) -> None:
        if self.connected:
            return
        if self.host is None or self.port is None:
            raise TransportError("scanner client is not connected")
        await self.connect(self.host, self.port)

    def _invalidate(self) -> None:
        writer = self._writer
        self._reader = None
        self._writer = None
        if writer is not None:
            writer.close()

    async def _read_line(self) -> str:
        try:
            if self.read_timeout is None:
                data = await self._reader.read(self.chunk_size)
            else:
                data = await asyncio.wait_for(self._reader.read(self.chunk_size), self.read_timeout)
        except asyncio.TimeoutError as e:
            self._invalidate()
            raise TransportError(f"no scanner data within {self.read_timeout}s") from e
        except OSError as e:
            self._invalidate()
            raise TransportError(f"scanner read failed: {e}") from e

        if not data:
            self._invalidate()
            raise TransportError("scanner closed the connection")
        return data.decode("utf-8", errors="ignore").strip()

    async def get_reading(self, expect_second_line: bool = False) -> str:
        async with self._lock:
            await self._reconnect_if_needed()

            first = await self._read_line()
            logger.info("scanner first data: %r", first)

            second = ""
            if expect_second_line and first not in NO_READ_LINES:
                second = await self._read_line()
                logger.info("scanner second data: %r", second)

            await asyncio.to_thread(self._append_audit, first, second)
            return normalize_reading(first, second)

    def _append_audit(self, first: str, second: str) -> None:
        if self.audit_path is None:
            return
        timestamp = datetime.now().strftime("%d/%m/%y %H:%M:%S")
        try:
            self.audit_path.parent.mkdir(parents=True, exist_ok=True)
            is_new = not self.audit_path.exists()
            with self.audit_path.open("a", newline="", encoding="utf-8") as f:
                writer = csv.writer(f)
                if is_new:
                    writer.writerow(AUDIT_HEADER)
                writer.writerow([timestamp, first, second])
        except OSError:
            logger.exception("could not append scanner audit row to %s", self.audit_path)

    async def close(self) -> None:
        writer = self._writer
        self._invalidate()
        if writer is not None:
            try:
                await writer.wait_closed()
            except OSError:
                pass
            logger.info("scanner connection closed")
