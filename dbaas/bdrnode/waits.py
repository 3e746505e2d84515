"""
Polling waits used during bootstrap.

Every wait in the controller (dependency role, join readiness, topology
readiness) is a fixed-interval poll with no retry limit. The optional
timeout lets a caller impose a deadline without changing the loop; without
one the wait only ends when the condition holds or the task is cancelled.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

from .errors import WaitTimeoutError

logger = logging.getLogger(__name__)


async def poll_until(
    check: Callable[[], Awaitable[bool]],
    interval: float,
    *,
    description: str,
    timeout: Optional[float] = None,
) -> None:
    """Await check() every interval seconds until it returns True.

    Args:
        check: Coroutine function returning True once the condition holds
        interval: Fixed sleep between checks
        description: Human readable condition, used in logs and errors
        timeout: Optional deadline in seconds (None waits forever)

    Raises:
        WaitTimeoutError: If timeout is set and expires first
    """
    deadline = time.monotonic() + timeout if timeout is not None else None
    attempts = 0
    while True:
        attempts += 1
        if await check():
            if attempts > 1:
                logger.info(f"Done waiting for {description} after {attempts} checks")
            return
        if attempts == 1:
            logger.info(f"Waiting for {description}")
        delay = interval
        if deadline is not None:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                raise WaitTimeoutError(description, timeout)
            # The last sleep is cut short so the final check lands on the deadline
            delay = min(interval, remaining)
        await asyncio.sleep(delay)
