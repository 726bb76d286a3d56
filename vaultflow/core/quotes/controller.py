"""
Quote Lifecycle Controller

Owns one quote cycle for one flow: prepared quote, validity countdown,
signing, submission and status polling. Callers drive it with
request_quote() / execute() and the reset operations, and observe it
through subscribe() / get_snapshot().

Errors never cross the public operations; they land in the snapshot as a
display message plus an ErrorCategory value.
"""

import asyncio
import logging
import time
from dataclasses import replace
from typing import Any, Callable, List, Optional

from structlog.contextvars import bound_contextvars

from .countdown import CountdownTimer
from .errors import ErrorCategory, PollingTimedOut, QuoteError, QuoteExpired
from .executor import ExecutionDriver
from .models import (
    ExecutionAcceptance,
    FinalQuote,
    PreparedQuote,
    QuoteCycleState,
    QuoteSnapshot,
    StatusKind,
)
from .pipeline import QuoteRequestPipeline
from .poller import StatusPoller
from .strategies import Intent

logger = logging.getLogger(__name__)

SnapshotListener = Callable[[QuoteSnapshot], None]

# A new quote cycle may not start while one of these is in progress
BUSY_STATES = frozenset({
    QuoteCycleState.FETCHING_FINAL_QUOTE,
    QuoteCycleState.SIGNING,
    QuoteCycleState.SUBMITTING,
    QuoteCycleState.POLLING,
})

EXECUTING_STATES = frozenset({
    QuoteCycleState.FETCHING_FINAL_QUOTE,
    QuoteCycleState.SIGNING,
    QuoteCycleState.SUBMITTING,
})

# States reset_quote() may return to IDLE
QUOTE_STATES = frozenset({
    QuoteCycleState.FETCHING_PREPARED_QUOTE,
    QuoteCycleState.PREPARED_QUOTE_READY,
    QuoteCycleState.FAILED,
})

FAILURE_MESSAGES = {
    StatusKind.FAILED: "Transaction failed",
    StatusKind.REFUNDED: "Transaction refunded",
}


class QuoteLifecycleController:
    """
    State machine for one deposit or withdraw flow.

    Usage:
        controller = QuoteLifecycleController(pipeline, driver, poller)
        unsubscribe = controller.subscribe(render)

        await controller.request_quote(intent)
        await controller.execute()      # polling continues in the background

        controller.reset_for_new_cycle()
        await controller.aclose()

    Network responses are applied only while the controller is still in the
    cycle and state that issued them; anything else is discarded.
    """

    def __init__(
        self,
        pipeline: QuoteRequestPipeline,
        driver: ExecutionDriver,
        poller: StatusPoller,
        *,
        clock: Callable[[], float] = time.time,
        tick_interval_s: float = 1.0,
    ) -> None:
        self._pipeline = pipeline
        self._driver = driver
        self._poller = poller
        self._clock = clock

        self._snapshot = QuoteSnapshot()
        self._listeners: List[SnapshotListener] = []

        # _cycle changes only on a full reset; _request_seq on every quote
        # fetch and every reset
        self._cycle = 0
        self._request_seq = 0

        self._intent: Optional[Intent] = None
        self._final_quote: Optional[FinalQuote] = None
        self._fetch_task: Optional[asyncio.Task] = None
        self._fetch_key: Optional[tuple] = None
        self._poll_task: Optional[asyncio.Task] = None

        self._countdown = CountdownTimer(
            self._on_tick,
            self._on_expire,
            clock=clock,
            tick_interval_s=tick_interval_s,
        )

    # ------------------------------------------------------------------
    # Observer interface
    # ------------------------------------------------------------------

    def get_snapshot(self) -> QuoteSnapshot:
        return self._snapshot

    def subscribe(self, listener: SnapshotListener) -> Callable[[], None]:
        """Register a listener called with every new snapshot. Returns unsubscribe."""
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    @property
    def state(self) -> QuoteCycleState:
        return self._snapshot.state

    @property
    def countdown(self) -> CountdownTimer:
        return self._countdown

    @property
    def is_polling(self) -> bool:
        return self._poll_task is not None and not self._poll_task.done()

    # ------------------------------------------------------------------
    # Quote request
    # ------------------------------------------------------------------

    async def request_quote(self, intent: Intent) -> Optional[PreparedQuote]:
        """
        Obtain a prepared quote for `intent`.

        Returns the prepared quote, or None when the request was rejected,
        failed (see the snapshot error) or was superseded.
        """
        state = self._snapshot.state

        if state in BUSY_STATES:
            logger.info(f"Quote request ignored while {state.value}")
            return None

        if state == QuoteCycleState.FETCHING_PREPARED_QUOTE:
            if self._fetch_task is not None and self._fetch_key == intent.key:
                return await asyncio.shield(self._fetch_task)
            logger.info("Quote request ignored: a different quote is being fetched")
            return None

        if state == QuoteCycleState.PREPARED_QUOTE_READY and self._snapshot.quote is not None:
            cached = self._pipeline.cached_quote(intent)
            if cached is self._snapshot.quote:
                return cached

        return await self._start_fetch(intent)

    async def _start_fetch(self, intent: Intent) -> Optional[PreparedQuote]:
        self._request_seq += 1
        seq = self._request_seq
        self._countdown.stop()

        changes: dict = {
            "loading": True,
            "error": None,
            "error_category": None,
            "status": None,
            "polling_timeout": False,
        }
        same_intent = self._intent is not None and self._intent.key == intent.key
        if not same_intent:
            # A refresh of the same intent keeps showing the old quote
            changes.update(quote=None, expires_at=None, time_left=0)

        self._intent = intent
        self._fetch_key = intent.key
        self._transition(QuoteCycleState.FETCHING_PREPARED_QUOTE, **changes)

        task = asyncio.get_running_loop().create_task(self._fetch_prepared(intent, seq))
        self._fetch_task = task
        return await asyncio.shield(task)

    async def _fetch_prepared(self, intent: Intent, seq: int) -> Optional[PreparedQuote]:
        try:
            prepared = await self._pipeline.fetch_prepared_quote(intent)
        except QuoteError as e:
            if self._is_current_fetch(seq):
                self._fail_fetch(e.message, e.category)
            return None
        except Exception as e:
            logger.exception(f"Unexpected error fetching prepared quote: {e}")
            if self._is_current_fetch(seq):
                self._fail_fetch(str(e), ErrorCategory.TRANSPORT)
            return None

        if not self._is_current_fetch(seq):
            logger.debug("Discarding stale prepared quote")
            return None

        self._fetch_task = None
        self._fetch_key = None
        self._transition(
            QuoteCycleState.PREPARED_QUOTE_READY,
            quote=prepared,
            expires_at=prepared.expires_at,
            time_left=self._pipeline.time_left(prepared),
            loading=False,
        )
        self._countdown.start(prepared.expires_at)
        return prepared

    def _is_current_fetch(self, seq: int) -> bool:
        return (
            seq == self._request_seq
            and self._snapshot.state == QuoteCycleState.FETCHING_PREPARED_QUOTE
        )

    def _fail_fetch(self, message: str, category: ErrorCategory) -> None:
        self._fetch_task = None
        self._fetch_key = None
        self._intent = None
        self._transition(
            QuoteCycleState.IDLE,
            quote=None,
            expires_at=None,
            time_left=0,
            loading=False,
            error=message,
            error_category=category.value,
        )

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def execute(self) -> Optional[ExecutionAcceptance]:
        """
        Finalize, sign and submit the ready quote, then start polling.

        Returns the acceptance, or None when execution did not start, failed
        (see the snapshot error) or was superseded by a full reset.
        """
        snapshot = self._snapshot
        prepared = snapshot.quote
        if snapshot.state != QuoteCycleState.PREPARED_QUOTE_READY or prepared is None:
            logger.info(f"Execute ignored while {snapshot.state.value}")
            return None

        if self._pipeline.time_left(prepared) == 0:
            error = QuoteExpired("Quote expired. Please request a new quote.")
            self._update(time_left=0, error=error.message, error_category=error.category.value)
            return None

        cycle = self._cycle
        intent = self._intent
        self._transition(
            QuoteCycleState.FETCHING_FINAL_QUOTE,
            loading=True,
            error=None,
            error_category=None,
            execution_success=False,
        )

        try:
            final = await self._pipeline.fetch_final_quote(prepared, intent)
            if not self._still(cycle, QuoteCycleState.FETCHING_FINAL_QUOTE):
                return None
            self._final_quote = final

            with bound_contextvars(quote_id=final.id):
                return await self._sign_and_submit(final, cycle)
        except QuoteError as e:
            self._fail_execution(cycle, e.message, e.category)
        except Exception as e:
            logger.exception(f"Unexpected error during execution: {e}")
            self._fail_execution(cycle, str(e), ErrorCategory.TRANSPORT)
        return None

    async def _sign_and_submit(self, final: FinalQuote, cycle: int) -> Optional[ExecutionAcceptance]:
        self._transition(QuoteCycleState.SIGNING, quote_id=final.id)
        await self._driver.sign_quote(final)
        if not self._still(cycle, QuoteCycleState.SIGNING):
            self._final_quote = None
            return None

        # Drop the reference before the network call: nothing can submit it again
        self._final_quote = None
        self._transition(QuoteCycleState.SUBMITTING)
        acceptance = await self._driver.submit(final)

        if not self._still(cycle, QuoteCycleState.SUBMITTING):
            logger.info(f"Quote {final.id} accepted after the cycle was reset")
            return None

        self._countdown.stop()
        self._pipeline.invalidate()
        self._transition(
            QuoteCycleState.POLLING,
            quote=None,
            expires_at=None,
            time_left=0,
            loading=False,
            execution_success=True,
            is_polling=True,
            polling_started_at=self._clock(),
        )
        self._start_polling(final.id, cycle)
        return acceptance

    def _still(self, cycle: int, state: QuoteCycleState) -> bool:
        return cycle == self._cycle and self._snapshot.state == state

    def _fail_execution(self, cycle: int, message: str, category: ErrorCategory) -> None:
        self._final_quote = None
        if cycle != self._cycle or self._snapshot.state not in EXECUTING_STATES:
            logger.debug(f"Discarding stale execution error: {message}")
            return
        self._countdown.stop()
        self._pipeline.invalidate()
        self._transition(
            QuoteCycleState.FAILED,
            quote=None,
            expires_at=None,
            time_left=0,
            loading=False,
            error=message,
            error_category=category.value,
        )

    # ------------------------------------------------------------------
    # Polling
    # ------------------------------------------------------------------

    def _start_polling(self, quote_id: str, cycle: int) -> None:
        self._stop_polling()
        self._poll_task = asyncio.get_running_loop().create_task(self._poll(quote_id, cycle))

    def _stop_polling(self) -> Optional[asyncio.Task]:
        task, self._poll_task = self._poll_task, None
        if task is not None and not task.done():
            task.cancel()
            return task
        return None

    async def _poll(self, quote_id: str, cycle: int) -> None:
        with bound_contextvars(quote_id=quote_id):
            try:
                async for status in self._poller.poll_until_terminal(quote_id):
                    if not self._is_current_poll(cycle):
                        return
                    if status.kind == StatusKind.COMPLETED:
                        self._finish_polling(
                            QuoteCycleState.COMPLETED,
                            status=status,
                            completed_status=status,
                        )
                    elif status.kind in FAILURE_MESSAGES:
                        self._finish_polling(
                            QuoteCycleState.FAILED,
                            status=status,
                            error=FAILURE_MESSAGES[status.kind],
                            error_category=ErrorCategory.TRANSPORT.value,
                        )
                    else:
                        self._update(status=status)
            except PollingTimedOut as e:
                if self._is_current_poll(cycle):
                    logger.warning(e.message)
                    self._finish_polling(QuoteCycleState.TIMED_OUT, polling_timeout=True)
            finally:
                if self._poll_task is asyncio.current_task():
                    self._poll_task = None

    def _is_current_poll(self, cycle: int) -> bool:
        return cycle == self._cycle and self._poll_task is asyncio.current_task()

    def _finish_polling(self, state: QuoteCycleState, **changes: Any) -> None:
        self._poll_task = None
        changes.update(is_polling=False, loading=False)
        if self._snapshot.state in EXECUTING_STATES:
            # A new execution is in flight; only record the outcome
            self._update(**changes)
        else:
            self._transition(state, **changes)

    # ------------------------------------------------------------------
    # Resets
    # ------------------------------------------------------------------

    def reset_quote(self) -> None:
        """Clear the quote and countdown. An active poller keeps running."""
        self._drop_quote()
        state = self._snapshot.state
        if state in QUOTE_STATES:
            self._transition(
                QuoteCycleState.IDLE, quote=None, expires_at=None, time_left=0, loading=False
            )
        else:
            self._update(quote=None, expires_at=None, time_left=0)

    def reset_ui_only(self) -> None:
        """
        Clear the quote and form-facing status.

        An active poller keeps running and an observed completion is kept.
        """
        self._drop_quote()
        state = self._snapshot.state
        if state not in EXECUTING_STATES:
            state = QuoteCycleState.POLLING if self.is_polling else QuoteCycleState.IDLE
        self._transition(
            state,
            quote=None,
            expires_at=None,
            time_left=0,
            status=None,
            error=None,
            error_category=None,
            execution_success=False,
            polling_timeout=False,
            loading=state in EXECUTING_STATES,
        )

    def reset_for_new_cycle(self) -> None:
        """Stop the countdown and the poller and clear everything."""
        self._cycle += 1
        self._drop_quote()
        self._final_quote = None
        self._stop_polling()
        logger.info("Quote cycle reset")
        self._snapshot = QuoteSnapshot()
        self._notify()

    def clear_execution_success(self) -> None:
        self._update(execution_success=False)

    async def aclose(self) -> None:
        """Stop every background task owned by the controller."""
        self._cycle += 1
        self._request_seq += 1
        self._countdown.reset()
        task = self._stop_polling()
        if task is not None:
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._listeners.clear()

    def _drop_quote(self) -> None:
        # In-flight fetches are not cancelled; bumping the sequence discards them
        self._request_seq += 1
        self._fetch_task = None
        self._fetch_key = None
        self._intent = None
        self._countdown.reset()
        self._pipeline.invalidate()

    # ------------------------------------------------------------------
    # Countdown callbacks
    # ------------------------------------------------------------------

    def _on_tick(self, time_left: int) -> None:
        self._update(time_left=time_left)

    def _on_expire(self) -> None:
        if self._snapshot.state == QuoteCycleState.PREPARED_QUOTE_READY:
            logger.info("Prepared quote expired")

    # ------------------------------------------------------------------
    # Snapshot updates
    # ------------------------------------------------------------------

    def _transition(self, to_state: QuoteCycleState, **changes: Any) -> None:
        from_state = self._snapshot.state
        self._snapshot = replace(self._snapshot, state=to_state, **changes)
        if from_state != to_state:
            logger.info(f"Quote cycle: {from_state.value} -> {to_state.value}")
        self._notify()

    def _update(self, **changes: Any) -> None:
        self._snapshot = replace(self._snapshot, **changes)
        self._notify()

    def _notify(self) -> None:
        snapshot = self._snapshot
        for listener in list(self._listeners):
            try:
                listener(snapshot)
            except Exception as e:
                logger.error(f"Snapshot listener error: {e}")
