"""
Quote validity countdown.

Emits the remaining whole seconds of a quote once per tick and signals
expiry exactly once when the count reaches zero.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from typing import Callable, Optional

logger = logging.getLogger(__name__)

TickCallback = Callable[[int], None]
ExpireCallback = Callable[[], None]


class CountdownTimer:
    """
    Single-handle countdown.

    start() always stops the previous countdown first, so at most one tick
    loop is alive per timer instance.
    """

    def __init__(
        self,
        on_tick: TickCallback,
        on_expire: Optional[ExpireCallback] = None,
        *,
        clock: Callable[[], float] = time.time,
        tick_interval_s: float = 1.0,
    ) -> None:
        self._on_tick = on_tick
        self._on_expire = on_expire
        self._clock = clock
        self._tick_interval_s = tick_interval_s
        self._task: Optional[asyncio.Task] = None
        self._expires_at: Optional[float] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    @property
    def expires_at(self) -> Optional[float]:
        return self._expires_at

    @property
    def time_left(self) -> int:
        if self._expires_at is None:
            return 0
        return max(0, math.floor(self._expires_at - self._clock()))

    def start(self, expires_at: float) -> None:
        """Begin counting down to `expires_at` (epoch seconds)."""
        self.stop()
        self._expires_at = expires_at

        remaining = self.time_left
        self._on_tick(remaining)
        if remaining == 0:
            self._fire_expire()
            return

        self._task = asyncio.get_running_loop().create_task(self._run())

    def stop(self) -> None:
        """Cancel the tick loop. Safe to call any number of times."""
        task, self._task = self._task, None
        if task is not None and not task.done():
            task.cancel()

    def reset(self) -> None:
        self.stop()
        self._expires_at = None

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._tick_interval_s)
                remaining = self.time_left
                self._on_tick(remaining)
                if self._task is not asyncio.current_task():
                    return
                if remaining == 0:
                    self._task = None
                    self._fire_expire()
                    return
        except asyncio.CancelledError:
            pass

    def _fire_expire(self) -> None:
        logger.debug("Quote countdown reached zero")
        if self._on_expire is not None:
            self._on_expire()
