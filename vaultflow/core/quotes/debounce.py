"""Caller-side coalescing of input-driven quote requests."""

import asyncio
import logging
from typing import Optional

from ...config import settings
from .controller import QuoteLifecycleController
from .models import PreparedQuote
from .strategies import Intent

logger = logging.getLogger(__name__)


class DebouncedQuoteRequester:
    """
    Forward only the last intent of a burst to the controller.

    Each request() restarts the delay; the controller's own in-flight guard
    still applies to whatever gets through.
    """

    def __init__(self, controller: QuoteLifecycleController, delay_s: Optional[float] = None) -> None:
        self._controller = controller
        self.delay_s = delay_s if delay_s is not None else settings.quote_request_debounce_seconds
        self._task: Optional[asyncio.Task] = None
        self._pending: Optional[Intent] = None

    @property
    def pending(self) -> Optional[Intent]:
        return self._pending

    def request(self, intent: Intent) -> None:
        self.cancel()
        self._pending = intent
        self._task = asyncio.get_running_loop().create_task(self._fire_later(intent))

    def cancel(self) -> None:
        task, self._task = self._task, None
        self._pending = None
        if task is not None and not task.done():
            task.cancel()

    async def flush(self) -> Optional[PreparedQuote]:
        """Send the pending intent now instead of waiting out the delay."""
        intent = self._pending
        self.cancel()
        if intent is None:
            return None
        return await self._controller.request_quote(intent)

    async def _fire_later(self, intent: Intent) -> None:
        await asyncio.sleep(self.delay_s)
        if self._task is asyncio.current_task():
            self._task = None
            self._pending = None
        logger.debug(f"Debounced quote request for {intent.amount} {intent.asset.symbol}")
        await self._controller.request_quote(intent)
