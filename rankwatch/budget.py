"""
Soft execution deadline for a single invocation.
"""

from __future__ import annotations

import asyncio
import logging
import time
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class ProcessingBudget:
    """Wall-clock budget derived once from the host's remaining-time signal.

    All values are seconds.  The budget never interrupts work; callers ask
    :meth:`should_continue` before starting something new.
    """

    def __init__(
        self,
        max_execution_time: float,
        buffer_time: float = 0.0,
        *,
        clock: Clock = time.monotonic,
        started_at: Optional[float] = None,
    ) -> None:
        self._clock = clock
        self._started_at = clock() if started_at is None else started_at
        self._max_execution_time = max(0.0, max_execution_time)
        self._buffer_time = buffer_time

    @classmethod
    def from_remaining(
        cls,
        remaining_time: float,
        buffer_time: float = 30.0,
        *,
        clock: Clock = time.monotonic,
    ) -> "ProcessingBudget":
        """Budget for a host that reports ``remaining_time`` seconds left."""
        return cls(remaining_time - buffer_time, buffer_time, clock=clock)

    @property
    def started_at(self) -> float:
        return self._started_at

    @property
    def max_execution_time(self) -> float:
        return self._max_execution_time

    @property
    def buffer_time(self) -> float:
        return self._buffer_time

    def elapsed(self) -> float:
        return self._clock() - self._started_at

    def remaining(self) -> float:
        return self._max_execution_time - self.elapsed()

    def should_continue(self) -> bool:
        return self.elapsed() < self._max_execution_time

    def elapsed_ms(self) -> int:
        return int(round(self.elapsed() * 1000))

    def __repr__(self) -> str:
        return (
            f"ProcessingBudget(max_execution_time={self._max_execution_time:.1f}s, "
            f"buffer_time={self._buffer_time:.1f}s, elapsed={self.elapsed():.1f}s)"
        )


async def timeout_aware_delay(
    seconds: float,
    budget: Optional[ProcessingBudget],
    sleep: Sleep = asyncio.sleep,
) -> float:
    """Sleep for ``min(seconds, budget.remaining())``; skip when nothing is left.

    Returns the number of seconds actually slept.
    """
    delay = seconds
    if budget is not None:
        delay = min(seconds, budget.remaining())
    if delay <= 0:
        return 0.0
    await sleep(delay)
    return delay
