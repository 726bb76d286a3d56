"""
Wiring for one flow.

Builds a QuoteLifecycleController with its pipeline, driver and poller
around an explicitly constructed provider. Deposit and withdraw flows get
separate controllers; they may share the provider and signer.
"""

import time
from typing import Callable, Optional

from ...config import Settings, settings
from ...providers.onebalance import OneBalanceProvider
from ...services.account import PredictedAccountResolver
from .controller import QuoteLifecycleController
from .executor import ExecutionDriver
from .models import IntentKind
from .pipeline import QuoteRequestPipeline
from .poller import StatusPoller
from .signing import Signer, SigningAdapter
from .strategies import CallQuoteStrategy, strategy_for


def strategy_name_for(kind: IntentKind, config: Settings = settings) -> str:
    if kind == IntentKind.DEPOSIT:
        return CallQuoteStrategy.name
    return config.withdraw_quote_strategy


def build_controller(
    kind: IntentKind,
    provider: OneBalanceProvider,
    signer: Signer,
    *,
    config: Optional[Settings] = None,
    accounts: Optional[PredictedAccountResolver] = None,
    clock: Callable[[], float] = time.time,
) -> QuoteLifecycleController:
    """
    Build a fully wired controller for a deposit or withdraw flow.

    Args:
        kind: Flow the controller serves
        provider: Quoting backend client (owned by the caller)
        signer: Typed-data signer for the user's session key
        config: Settings override (default: module settings)
        accounts: Shared account resolver, so sibling flows predict once
        clock: Epoch-seconds clock
    """
    config = config or settings
    signing = SigningAdapter(signer)
    strategy = strategy_for(
        strategy_name_for(kind, config),
        provider,
        signing,
        deposit_chain=config.deposit_target_chain,
    )

    pipeline = QuoteRequestPipeline(
        strategy,
        provider,
        accounts or PredictedAccountResolver(provider, signer.address),
        clock=clock,
        quote_validity_s=config.quote_validity_seconds,
        refresh_threshold_s=config.quote_refresh_threshold_seconds,
    )
    poller = StatusPoller(
        provider,
        poll_interval_s=config.status_poll_interval_seconds,
        timeout_s=config.status_poll_timeout_seconds,
    )
    return QuoteLifecycleController(
        pipeline,
        ExecutionDriver(provider, signing),
        poller,
        clock=clock,
        tick_interval_s=config.countdown_tick_seconds,
    )
