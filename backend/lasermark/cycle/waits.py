# lasermark/cycle/waits.py

from __future__ import annotations

import asyncio
import logging
from typing import Any

from lasermark.core.errors import TransportError
from lasermark.cycle.context import WaitResult
from lasermark.monitor.reset_monitor import ResetSignal
from lasermark.plc.registers import RegisterAddress

logger = logging.getLogger(__name__)

STATUS_LOG_EVERY = 5.0


async def wait_for_bit(
    gateway: Any,
    address: RegisterAddress,
    expected: bool,
    reset_signal: ResetSignal,
    *,
    timeout: float,
    poll_interval: float = 0.1,
) -> WaitResult:
    """
    Wait until `address` reads `expected`, a reset is signalled, or `timeout`
    elapses, whichever comes first.

    A pending reset wins over the bit. Read errors are logged and the poll
    continues; they never end the wait on their own.
    """
    loop = asyncio.get_running_loop()
    started = loop.time()
    deadline = started + timeout
    next_status = started + STATUS_LOG_EVERY
    logger.info("waiting for bit %s to become %d", address, int(expected))

    while True:
        if reset_signal.is_set():
            logger.warning("reset detected while waiting for %s", address)
            return WaitResult.RESET

        try:
            value = await gateway.read_bit(address.register, address.bit)
        except TransportError as e:
            logger.error("error checking bit %s: %s", address, e)
        else:
            if value == expected:
                logger.info("bit %s is now %d, proceeding", address, int(expected))
                return WaitResult.CONDITION_MET

        now = loop.time()
        remaining = deadline - now
        if remaining <= 0:
            logger.warning("timeout after %.0fs waiting for %s", timeout, address)
            return WaitResult.TIMEOUT
        if now >= next_status:
            logger.info("waiting... (%.0fs elapsed) for %s", now - started, address)
            next_status = now + STATUS_LOG_EVERY

        if await reset_signal.wait(min(poll_interval, remaining)):
            logger.warning("reset detected while waiting for %s", address)
            return WaitResult.RESET
