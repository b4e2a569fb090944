"""
Rate Governor.

Keeps outbound RPC traffic under a requests-per-second and a
blocks-per-second ceiling over any rolling one-second window.
Callers are suspended until budget frees up; nothing is rejected.
"""

import asyncio
import time
from collections import deque
from collections.abc import Awaitable, Callable
from typing import Any

from loguru import logger

WINDOW_SECONDS = 1.0


class RateGovernor:
    """
    Sliding-window limiter for RPC calls.

    Each admitted call records ``(timestamp, blocks)``; a new call is
    admitted when the calls and blocks still inside the window leave
    room for it. A single request wider than the block ceiling is
    admitted alone on an empty window so it cannot starve.
    """

    def __init__(
        self,
        max_requests_per_second: int,
        max_blocks_per_second: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        """
        Initialize governor.

        Args:
            max_requests_per_second: Request ceiling
            max_blocks_per_second: Block span ceiling
            clock: Monotonic clock (injectable for tests)
            sleep: Sleep function (injectable for tests)
        """
        if max_requests_per_second < 1 or max_blocks_per_second < 1:
            raise ValueError("Rate ceilings must be positive")

        self.max_requests_per_second = max_requests_per_second
        self.max_blocks_per_second = max_blocks_per_second
        self._clock = clock
        self._sleep = sleep
        self._window: deque[tuple[float, int]] = deque()
        self._blocks_in_window = 0
        self._lock = asyncio.Lock()
        self.total_waited = 0.0

    async def acquire(self, blocks: int = 0) -> None:
        """
        Wait until a call spanning ``blocks`` blocks fits the budget.

        Args:
            blocks: Block span of the call (0 for non-range calls)
        """
        blocks = max(0, blocks)

        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)

                if self._fits(blocks):
                    self._window.append((now, blocks))
                    self._blocks_in_window += blocks
                    return

                wait = self._window[0][0] + WINDOW_SECONDS - now
                wait = max(wait, 0.001)
                self.total_waited += wait
                logger.debug(
                    f"[Chain] Rate limit reached, waiting {wait:.3f}s "
                    f"({len(self._window)} requests, "
                    f"{self._blocks_in_window} blocks in window)"
                )
                await self._sleep(wait)

    async def __aenter__(self) -> "RateGovernor":
        await self.acquire()
        return self

    async def __aexit__(self, exc_type, exc, tb) -> None:
        return None

    @property
    def requests_in_window(self) -> int:
        """Requests admitted in the current window."""
        self._evict(self._clock())
        return len(self._window)

    @property
    def blocks_in_window(self) -> int:
        """Blocks admitted in the current window."""
        self._evict(self._clock())
        return self._blocks_in_window

    def reset(self) -> None:
        """Forget all admitted calls."""
        self._window.clear()
        self._blocks_in_window = 0

    def _evict(self, now: float) -> None:
        while self._window and self._window[0][0] + WINDOW_SECONDS <= now:
            _, blocks = self._window.popleft()
            self._blocks_in_window -= blocks

    def _fits(self, blocks: int) -> bool:
        if not self._window:
            return True
        if len(self._window) >= self.max_requests_per_second:
            return False
        return self._blocks_in_window + blocks <= self.max_blocks_per_second
