"""
Tests for the Quote Lifecycle Controller state machine.
"""

import asyncio

import pytest

from vaultflow.core.quotes.controller import QuoteLifecycleController
from vaultflow.core.quotes.executor import ExecutionDriver
from vaultflow.core.quotes.models import EvmAccount, QuoteCycleState, StatusKind
from vaultflow.core.quotes.pipeline import QuoteRequestPipeline
from vaultflow.core.quotes.poller import StatusPoller
from vaultflow.core.quotes.signing import SignatureDeclined, SigningAdapter
from vaultflow.core.quotes.strategies import CallQuoteStrategy
from vaultflow.providers.onebalance import OneBalanceApiError

from quote_fakes import (
    PREDICTED,
    SIGNER,
    DummyProvider,
    FakeClock,
    RecordingSigner,
    StaticAccounts,
    deposit_intent,
    status_response,
    wait_for_state,
)

ACCOUNT = EvmAccount(account_address=PREDICTED, session_address=SIGNER, admin_address=SIGNER)
TICK = 0.01

S = QuoteCycleState


class GatedSigner(RecordingSigner):
    """Signer that waits for `gate` before answering."""

    def __init__(self):
        super().__init__()
        self.gate = asyncio.Event()

    async def sign_typed_data(self, payload):
        await self.gate.wait()
        return await super().sign_typed_data(payload)


class DecliningSigner:
    address = SIGNER

    async def sign_typed_data(self, payload):
        raise SignatureDeclined("user declined")


def _controller(provider=None, *, signer=None, clock=None):
    provider = provider or DummyProvider()
    clock = clock or FakeClock()
    signing = SigningAdapter(signer or RecordingSigner())
    pipeline = QuoteRequestPipeline(
        CallQuoteStrategy(provider, signing),
        provider,
        StaticAccounts(ACCOUNT),
        clock=clock,
        quote_validity_s=30,
        refresh_threshold_s=20,
    )
    poller = StatusPoller(provider, poll_interval_s=TICK, timeout_s=TICK * 5)
    return QuoteLifecycleController(
        pipeline,
        ExecutionDriver(provider, signing),
        poller,
        clock=clock,
        tick_interval_s=TICK,
    )


def _gate(mock):
    """Make an AsyncMock wait for the returned event before answering."""
    gate = asyncio.Event()
    response = mock.return_value

    async def gated(*args, **kwargs):
        await gate.wait()
        return response

    mock.side_effect = gated
    return gate


def _record_states(controller):
    states = []

    def listener(snapshot):
        if not states or states[-1] != snapshot.state:
            states.append(snapshot.state)

    controller.subscribe(listener)
    return states


# =============================================================================
# Requesting quotes
# =============================================================================

@pytest.mark.asyncio
async def test_request_quote_reaches_ready_and_starts_countdown():
    controller = _controller()

    prepared = await controller.request_quote(deposit_intent())

    snapshot = controller.get_snapshot()
    assert snapshot.state == S.PREPARED_QUOTE_READY
    assert snapshot.quote is prepared
    assert snapshot.time_left == 30
    assert snapshot.loading is False
    assert controller.countdown.running is True
    await controller.aclose()


@pytest.mark.asyncio
async def test_countdown_ticks_reach_the_snapshot():
    clock = FakeClock()
    controller = _controller(clock=clock)
    await controller.request_quote(deposit_intent())

    clock.advance(7)
    await asyncio.sleep(TICK * 3)

    assert controller.get_snapshot().time_left == 23
    await controller.aclose()


@pytest.mark.asyncio
async def test_input_error_returns_to_idle_without_quote_request():
    provider = DummyProvider(balance="1")
    controller = _controller(provider)

    result = await controller.request_quote(deposit_intent("100"))

    snapshot = controller.get_snapshot()
    assert result is None
    assert snapshot.state == S.IDLE
    assert snapshot.error == "Insufficient balance for 100 USDC"
    assert snapshot.error_category == "input"
    assert snapshot.quote is None
    provider.prepare_call_quote.assert_not_awaited()


@pytest.mark.asyncio
async def test_transport_error_on_prepared_fetch_returns_to_idle():
    provider = DummyProvider()
    provider.prepare_call_quote.side_effect = OneBalanceApiError("Service unavailable", status_code=503)
    controller = _controller(provider)

    await controller.request_quote(deposit_intent())

    snapshot = controller.get_snapshot()
    assert snapshot.state == S.IDLE
    assert snapshot.error == "Service unavailable"
    assert snapshot.error_category == "transport"


@pytest.mark.asyncio
async def test_reuse_window_controls_new_prepared_requests():
    clock = FakeClock()
    provider = DummyProvider()
    controller = _controller(provider, clock=clock)

    first = await controller.request_quote(deposit_intent())
    clock.advance(9)  # 21s left
    again = await controller.request_quote(deposit_intent())
    assert again is first
    assert provider.prepare_call_quote.await_count == 1

    clock.advance(1)  # 20s left
    refreshed = await controller.request_quote(deposit_intent())
    assert refreshed is not first
    assert provider.prepare_call_quote.await_count == 2
    assert controller.get_snapshot().state == S.PREPARED_QUOTE_READY
    await controller.aclose()


@pytest.mark.asyncio
async def test_silent_refresh_does_not_touch_the_signer():
    clock = FakeClock()
    signer = RecordingSigner()
    controller = _controller(signer=signer, clock=clock)

    await controller.request_quote(deposit_intent())
    clock.advance(15)
    await controller.request_quote(deposit_intent())

    assert signer.signed == []
    await controller.aclose()


@pytest.mark.asyncio
async def test_equivalent_requests_in_flight_share_one_fetch():
    provider = DummyProvider()
    gate = _gate(provider.prepare_call_quote)
    controller = _controller(provider)

    first = asyncio.create_task(controller.request_quote(deposit_intent()))
    await asyncio.sleep(TICK)
    second = asyncio.create_task(controller.request_quote(deposit_intent()))
    await asyncio.sleep(TICK)
    gate.set()

    results = await asyncio.gather(first, second)

    assert results[0] is results[1]
    assert results[0] is not None
    assert provider.prepare_call_quote.await_count == 1
    await controller.aclose()


@pytest.mark.asyncio
async def test_different_request_during_fetch_is_rejected():
    provider = DummyProvider()
    gate = _gate(provider.prepare_call_quote)
    controller = _controller(provider)

    first = asyncio.create_task(controller.request_quote(deposit_intent("100")))
    await asyncio.sleep(TICK)
    assert await controller.request_quote(deposit_intent("50")) is None
    gate.set()
    await first

    assert provider.prepare_call_quote.await_count == 1
    assert controller.get_snapshot().quote.intent_key == deposit_intent("100").key
    await controller.aclose()


@pytest.mark.asyncio
async def test_request_rejected_while_signing():
    provider = DummyProvider()
    signer = GatedSigner()
    controller = _controller(provider, signer=signer)
    await controller.request_quote(deposit_intent())

    execution = asyncio.create_task(controller.execute())
    await wait_for_state(controller, S.FETCHING_FINAL_QUOTE, S.SIGNING)
    assert await controller.request_quote(deposit_intent("1")) is None

    signer.gate.set()
    await execution
    assert provider.prepare_call_quote.await_count == 1
    await controller.aclose()


# =============================================================================
# Execution
# =============================================================================

@pytest.mark.asyncio
async def test_execute_runs_full_cycle_to_completed():
    provider = DummyProvider()
    controller = _controller(provider)
    states = _record_states(controller)
    await controller.request_quote(deposit_intent())

    acceptance = await controller.execute()

    snapshot = controller.get_snapshot()
    assert acceptance.success is True
    assert snapshot.state == S.POLLING
    assert snapshot.execution_success is True
    assert snapshot.quote is None
    assert snapshot.time_left == 0
    assert snapshot.is_polling is True
    assert snapshot.quote_id == "quote-1"
    assert controller.countdown.running is False

    snapshot = await wait_for_state(controller, S.COMPLETED)
    assert snapshot.completed_status.kind == StatusKind.COMPLETED
    assert snapshot.status.hash == "0xfeed"
    assert snapshot.is_polling is False
    assert states == [
        S.FETCHING_PREPARED_QUOTE,
        S.PREPARED_QUOTE_READY,
        S.FETCHING_FINAL_QUOTE,
        S.SIGNING,
        S.SUBMITTING,
        S.POLLING,
        S.COMPLETED,
    ]
    await controller.aclose()


@pytest.mark.asyncio
async def test_double_execute_submits_once():
    provider = DummyProvider()
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())

    results = await asyncio.gather(controller.execute(), controller.execute())

    assert sum(1 for r in results if r is not None) == 1
    assert provider.execute_quote.await_count == 1
    assert provider.fetch_call_quote.await_count == 1
    await controller.aclose()


@pytest.mark.asyncio
async def test_reset_racing_submission_never_resubmits():
    provider = DummyProvider()
    gate = _gate(provider.execute_quote)
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())

    execution = asyncio.create_task(controller.execute())
    await wait_for_state(controller, S.SUBMITTING)
    controller.reset_for_new_cycle()
    assert await controller.execute() is None
    gate.set()

    assert await execution is None
    await asyncio.sleep(TICK * 3)
    assert provider.execute_quote.await_count == 1
    assert controller.get_snapshot().state == S.IDLE
    provider.get_execution_status.assert_not_awaited()


@pytest.mark.asyncio
async def test_rejected_execution_fails_the_cycle():
    provider = DummyProvider()
    provider.execute_quote.return_value = {"success": False, "error": "Insufficient gas sponsorship"}
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())

    assert await controller.execute() is None

    snapshot = controller.get_snapshot()
    assert snapshot.state == S.FAILED
    assert snapshot.error == "Insufficient gas sponsorship"
    assert snapshot.error_category == "transport"
    assert snapshot.execution_success is False
    assert controller.countdown.running is False
    await asyncio.sleep(TICK * 3)
    assert provider.execute_quote.await_count == 1


@pytest.mark.asyncio
async def test_declined_signature_fails_with_signing_category():
    provider = DummyProvider()
    controller = _controller(provider, signer=DecliningSigner())
    await controller.request_quote(deposit_intent())

    await controller.execute()

    snapshot = controller.get_snapshot()
    assert snapshot.state == S.FAILED
    assert snapshot.error_category == "signing"
    assert "declined" in snapshot.error
    provider.execute_quote.assert_not_awaited()


@pytest.mark.asyncio
async def test_failed_final_quote_fails_the_cycle():
    provider = DummyProvider()
    provider.fetch_call_quote.side_effect = OneBalanceApiError("Quote not found", status_code=404)
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())

    await controller.execute()

    assert controller.get_snapshot().state == S.FAILED
    assert controller.get_snapshot().error == "Quote not found"


@pytest.mark.asyncio
async def test_new_request_after_failure_starts_fresh_cycle():
    provider = DummyProvider()
    provider.execute_quote.return_value = {"success": False, "error": "nope"}
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())
    await controller.execute()

    await controller.request_quote(deposit_intent())

    snapshot = controller.get_snapshot()
    assert snapshot.state == S.PREPARED_QUOTE_READY
    assert snapshot.error is None
    assert provider.prepare_call_quote.await_count == 2
    await controller.aclose()


@pytest.mark.asyncio
async def test_execute_with_expired_quote_keeps_quote():
    clock = FakeClock()
    provider = DummyProvider()
    controller = _controller(provider, clock=clock)
    prepared = await controller.request_quote(deposit_intent())

    clock.advance(31)
    assert await controller.execute() is None

    snapshot = controller.get_snapshot()
    assert snapshot.state == S.PREPARED_QUOTE_READY
    assert snapshot.quote is prepared
    assert snapshot.error_category == "input"
    assert "expired" in snapshot.error.lower()
    provider.fetch_call_quote.assert_not_awaited()
    await controller.aclose()


@pytest.mark.asyncio
async def test_execute_without_quote_is_ignored():
    provider = DummyProvider()
    controller = _controller(provider)

    assert await controller.execute() is None
    assert controller.get_snapshot().state == S.IDLE
    provider.fetch_call_quote.assert_not_awaited()


# =============================================================================
# Polling outcomes
# =============================================================================

@pytest.mark.asyncio
@pytest.mark.parametrize(
    "raw,message",
    [("FAILED", "Transaction failed"), ({"status": "REFUNDED"}, "Transaction refunded")],
)
async def test_failed_or_refunded_status_fails_the_cycle(raw, message):
    provider = DummyProvider()
    provider.get_execution_status.return_value = status_response(raw)
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())
    await controller.execute()

    snapshot = await wait_for_state(controller, S.FAILED)

    assert snapshot.error == message
    assert snapshot.status is not None
    assert snapshot.completed_status is None
    assert provider.get_execution_status.await_count == 1


@pytest.mark.asyncio
async def test_polling_timeout_is_not_a_failure():
    provider = DummyProvider()
    provider.get_execution_status.return_value = status_response("PENDING")
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())
    await controller.execute()

    snapshot = await wait_for_state(controller, S.TIMED_OUT, S.FAILED)

    assert snapshot.state == S.TIMED_OUT
    assert snapshot.polling_timeout is True
    assert snapshot.error is None
    assert snapshot.is_polling is False
    assert snapshot.status.kind == StatusKind.PENDING
    assert provider.get_execution_status.await_count == 5


# =============================================================================
# Resets
# =============================================================================

@pytest.mark.asyncio
async def test_reset_for_new_cycle_silences_countdown():
    controller = _controller()
    notifications = []
    controller.subscribe(notifications.append)
    await controller.request_quote(deposit_intent())
    await asyncio.sleep(TICK * 3)

    controller.reset_for_new_cycle()
    count = len(notifications)
    await asyncio.sleep(TICK * 5)

    assert len(notifications) == count
    assert controller.countdown.running is False
    assert controller.get_snapshot() == type(controller.get_snapshot())()


@pytest.mark.asyncio
async def test_reset_for_new_cycle_stops_polling():
    provider = DummyProvider()
    provider.get_execution_status.return_value = status_response("PENDING")
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())
    await controller.execute()
    await asyncio.sleep(TICK * 2)

    controller.reset_for_new_cycle()
    polls = provider.get_execution_status.await_count
    await asyncio.sleep(TICK * 8)

    assert provider.get_execution_status.await_count == polls
    assert controller.is_polling is False
    assert controller.get_snapshot().state == S.IDLE


@pytest.mark.asyncio
async def test_reset_ui_only_keeps_completed_status():
    controller = _controller()
    await controller.request_quote(deposit_intent())
    await controller.execute()
    await wait_for_state(controller, S.COMPLETED)

    controller.reset_ui_only()

    snapshot = controller.get_snapshot()
    assert snapshot.quote is None
    assert snapshot.status is None
    assert snapshot.execution_success is False
    assert snapshot.completed_status is not None
    assert snapshot.state == S.IDLE

    controller.reset_for_new_cycle()
    assert controller.get_snapshot().completed_status is None


@pytest.mark.asyncio
async def test_reset_ui_only_lets_background_poll_finish():
    provider = DummyProvider()
    provider.get_execution_status.side_effect = [
        status_response("PENDING"),
        status_response("PENDING"),
        status_response("COMPLETED"),
    ]
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())
    await controller.execute()

    controller.reset_ui_only()
    snapshot = controller.get_snapshot()
    assert snapshot.state == S.POLLING
    assert snapshot.is_polling is True
    assert snapshot.execution_success is False

    snapshot = await wait_for_state(controller, S.COMPLETED)
    assert snapshot.completed_status.kind == StatusKind.COMPLETED


@pytest.mark.asyncio
async def test_reset_quote_leaves_poller_running():
    provider = DummyProvider()
    provider.get_execution_status.side_effect = [
        status_response("PENDING"),
        status_response("COMPLETED"),
    ]
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())
    await controller.execute()

    controller.reset_quote()
    assert controller.get_snapshot().state == S.POLLING
    assert controller.get_snapshot().execution_success is True

    await wait_for_state(controller, S.COMPLETED)


@pytest.mark.asyncio
async def test_reset_quote_clears_ready_quote():
    provider = DummyProvider()
    controller = _controller(provider)
    await controller.request_quote(deposit_intent())

    controller.reset_quote()

    snapshot = controller.get_snapshot()
    assert snapshot.state == S.IDLE
    assert snapshot.quote is None
    assert controller.countdown.running is False

    await controller.request_quote(deposit_intent())
    assert provider.prepare_call_quote.await_count == 2
    await controller.aclose()


@pytest.mark.asyncio
async def test_stale_prepared_response_is_discarded():
    provider = DummyProvider()
    gate = _gate(provider.prepare_call_quote)
    controller = _controller(provider)

    request = asyncio.create_task(controller.request_quote(deposit_intent()))
    await asyncio.sleep(TICK)
    controller.reset_quote()
    gate.set()

    assert await request is None
    snapshot = controller.get_snapshot()
    assert snapshot.state == S.IDLE
    assert snapshot.quote is None
    assert controller.countdown.running is False


# =============================================================================
# Observer interface
# =============================================================================

@pytest.mark.asyncio
async def test_unsubscribe_and_faulty_listeners():
    controller = _controller()
    seen = []

    def broken(snapshot):
        raise RuntimeError("render failed")

    controller.subscribe(broken)
    unsubscribe = controller.subscribe(seen.append)
    await controller.request_quote(deposit_intent())
    assert seen

    unsubscribe()
    count = len(seen)
    controller.reset_quote()
    assert len(seen) == count
    assert controller.get_snapshot().state == S.IDLE


@pytest.mark.asyncio
async def test_clear_execution_success():
    controller = _controller()
    await controller.request_quote(deposit_intent())
    await controller.execute()

    controller.clear_execution_success()

    assert controller.get_snapshot().execution_success is False
    await controller.aclose()
