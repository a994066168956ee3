# lasermark/monitor/supervisor.py

from __future__ import annotations

import asyncio
import logging
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


async def supervise(
    name: str,
    factory: Callable[[], Awaitable[None]],
    *,
    restart_delay: float = 1.0,
    max_restarts: Optional[int] = None,
) -> None:
    """Run a poller forever; restart it whenever it crashes or returns.

    Cancellation stops it. `max_restarts` exists for tests.
    """
    restarts = 0
    while True:
        try:
            await factory()
            logger.warning("%s exited, restarting", name)
        except asyncio.CancelledError:
            logger.info("%s stopped", name)
            raise
        except Exception:
            logger.exception("%s crashed, restarting in %.1fs", name, restart_delay)

        restarts += 1
        if max_restarts is not None and restarts > max_restarts:
            logger.error("%s gave up after %d restarts", name, max_restarts)
            return
        await asyncio.sleep(restart_delay)
