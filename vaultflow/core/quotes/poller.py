"""Execution status polling."""

from __future__ import annotations

import asyncio
import logging
from typing import AsyncIterator, Optional

from ...config import settings
from ...providers.onebalance import OneBalanceProvider
from .errors import PollingTimedOut
from .models import ExecutionStatus

logger = logging.getLogger(__name__)


class StatusPoller:
    """
    Poll the status endpoint until a terminal status or the deadline.

    Attempts are counted rather than timed: timeout_s / poll_interval_s
    attempts, each preceded by one interval of sleep. A failed attempt is
    logged and counts toward the limit.
    """

    def __init__(
        self,
        provider: OneBalanceProvider,
        poll_interval_s: Optional[float] = None,
        timeout_s: Optional[float] = None,
    ) -> None:
        self._provider = provider
        self.poll_interval_s = (
            poll_interval_s if poll_interval_s is not None else settings.status_poll_interval_seconds
        )
        self.timeout_s = timeout_s if timeout_s is not None else settings.status_poll_timeout_seconds

    @property
    def max_attempts(self) -> int:
        if self.poll_interval_s <= 0:
            return 1
        return max(1, round(self.timeout_s / self.poll_interval_s))

    async def poll_until_terminal(self, quote_id: str) -> AsyncIterator[ExecutionStatus]:
        """
        Yield each usable status snapshot; stop after the first terminal one.

        Raises:
            PollingTimedOut: no terminal status within max_attempts
        """
        attempts = self.max_attempts
        for attempt in range(1, attempts + 1):
            await asyncio.sleep(self.poll_interval_s)
            try:
                data = await self._provider.get_execution_status(quote_id)
                status = ExecutionStatus.from_response(data, quote_id=quote_id)
            except Exception as e:
                logger.warning(f"Status poll {attempt}/{attempts} for {quote_id} failed: {e}")
                continue

            if status is None:
                logger.debug(f"Status poll {attempt}/{attempts} for {quote_id}: no usable status")
                continue

            yield status
            if status.is_terminal:
                logger.info(f"Quote {quote_id} reached {status.kind.value}")
                return

        logger.warning(f"Quote {quote_id} status unknown after {attempts} polls")
        raise PollingTimedOut(quote_id, attempts)
