# lasermark/plc/gateway.py

from __future__ import annotations

import asyncio
import logging
from typing import Any, Iterable, List, Optional

from pymodbus.client import AsyncModbusTcpClient
from pymodbus.exceptions import ModbusException

from lasermark.core.errors import TransportError, WriteTimeout

logger = logging.getLogger(__name__)

DEFAULT_WRITE_TIMEOUT = 5.0


class RegisterGateway:
    """Bit/word access to PLC holding registers.

    - reads are plain pass-through; transport problems surface as TransportError
    - writes are bounded by a timeout and raise WriteTimeout when it expires,
      in which case the caller must not assume the write was applied
    - no retries here, retry policy belongs to the cycle
    """

    def __init__(
        self,
        host: str,
        port: int = 502,
        *,
        timeout: float = 3.0,
        write_timeout: float = DEFAULT_WRITE_TIMEOUT,
        client: Optional[Any] = None,
    ) -> None:
        self.host = host
        self.port = port
        self.write_timeout = write_timeout
        self.client = client or AsyncModbusTcpClient(host, port=port, timeout=timeout)

    # ========== connection ==========

    @property
    def connected(self) -> bool:
        return bool(getattr(self.client, "connected", False))

    async def connect(self) -> None:
        if self.connected:
            return
        logger.info("connecting to PLC %s:%s", self.host, self.port)
        try:
            ok = await self.client.connect()
        except (ModbusException, OSError) as e:
            raise TransportError(f"PLC connect failed: {e}") from e
        if not ok:
            raise TransportError(f"PLC connect failed: {self.host}:{self.port}")
        logger.info("PLC connected")

    def close(self) -> None:
        self.client.close()
        logger.info("PLC connection closed")

    # ========== reads ==========

    async def read_word(self, register: int, count: int = 1) -> List[int]:
        try:
            rr = await self.client.read_holding_registers(register, count=count)
        except (ModbusException, OSError) as e:
            raise TransportError(f"read {register} x{count} failed: {e}") from e
        if rr.isError():
            raise TransportError(f"read {register} x{count} returned error: {rr}")
        return list(rr.registers)

    async def read_bit(self, register: int, bit: int) -> bool:
        (value,) = await self.read_word(register, 1)
        return bool((value >> bit) & 1)

    # ========== writes ==========

    async def _write_register(self, register: int, value: int) -> None:
        try:
            wr = await self.client.write_register(register, value & 0xFFFF)
        except (ModbusException, OSError) as e:
            raise TransportError(f"write {register}={value} failed: {e}") from e
        if wr.isError():
            raise TransportError(f"write {register}={value} returned error: {wr}")

    async def _bounded(self, register: int, coro, timeout: Optional[float]) -> None:
        limit = self.write_timeout if timeout is None else timeout
        try:
            await asyncio.wait_for(coro, timeout=limit)
        except asyncio.TimeoutError as e:
            logger.error("write to register %s timed out after %ss", register, limit)
            raise WriteTimeout(register, limit) from e

    async def write_word(self, register: int, value: int, timeout: Optional[float] = None) -> None:
        await self._bounded(register, self._write_register(register, value), timeout)

    async def write_bit(
        self,
        register: int,
        bit: int,
        value: bool,
        timeout: Optional[float] = None,
    ) -> None:
        async def _rmw() -> None:
            (current,) = await self.read_word(register, 1)
            if value:
                new = current | (1 << bit)
            else:
                new = current & ~(1 << bit)
            await self._write_register(register, new)

        await self._bounded(register, _rmw(), timeout)
        logger.debug("wrote %s.%s=%d", register, bit, int(bool(value)))

    async def reset_masked_bits(
        self,
        register: int,
        bits: Iterable[int],
        timeout: Optional[float] = None,
    ) -> int:
        """Clear `bits` in `register` with one read and one write.

        Not atomic against other writers; this process must be the only one
        writing these registers. Returns the value written.
        """
        bits = list(bits)
        mask = 0xFFFF
        for b in bits:
            mask &= ~(1 << b)

        (current,) = await self.read_word(register, 1)
        new = current & mask
        await self.write_word(register, new, timeout=timeout)
        logger.info("reset bits %s in register %s (%#06x -> %#06x)", bits, register, current, new)
        return new
