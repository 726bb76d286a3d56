"""
Quote request pipeline.

Validates an intent, checks the live aggregated balance, and obtains the
preparatory and final quotes through the intent kind's strategy. Holds the
single cached prepared quote used to deduplicate identical requests.
"""

from __future__ import annotations

import logging
import math
import time
from typing import Any, Callable, Dict, Optional, Protocol

from ...config import settings
from ...providers.base import BalanceSource
from ...providers.onebalance import OneBalanceError
from ...services.address import validate_address
from .amounts import from_smallest_unit, to_smallest_unit
from .errors import (
    InsufficientBalance,
    InvalidAddress,
    InvalidQuoteResponse,
    NoBalanceForAsset,
    QuoteRequestFailed,
)
from .models import EvmAccount, FinalQuote, PreparedQuote, WithdrawIntent
from .strategies import Intent, QuoteStrategy

logger = logging.getLogger(__name__)


class AccountSource(Protocol):
    async def get_account(self) -> EvmAccount:
        ...


class QuoteRequestPipeline:
    """
    fetch_prepared_quote() / fetch_final_quote() for one flow.

    Reusing a cached prepared quote is a correctness rule: a second
    preparatory request for the same intent would ask the signer to approve
    a new operation and can collide on the account nonce.
    """

    def __init__(
        self,
        strategy: QuoteStrategy,
        balances: BalanceSource,
        accounts: AccountSource,
        *,
        clock: Callable[[], float] = time.time,
        quote_validity_s: Optional[float] = None,
        refresh_threshold_s: Optional[float] = None,
    ) -> None:
        self._strategy = strategy
        self._balances = balances
        self._accounts = accounts
        self._clock = clock
        self.quote_validity_s = (
            quote_validity_s if quote_validity_s is not None else settings.quote_validity_seconds
        )
        self.refresh_threshold_s = (
            refresh_threshold_s if refresh_threshold_s is not None
            else settings.quote_refresh_threshold_seconds
        )
        self._cached: Optional[PreparedQuote] = None
        self._epoch = 0

    @property
    def strategy(self) -> QuoteStrategy:
        return self._strategy

    def time_left(self, prepared: PreparedQuote) -> int:
        return max(0, math.floor(prepared.expires_at - self._clock()))

    def cached_quote(self, intent: Intent) -> Optional[PreparedQuote]:
        """The cached quote for `intent` if it still has enough validity left."""
        cached = self._cached
        if cached is None or cached.intent_key != intent.key:
            return None
        if self.time_left(cached) <= self.refresh_threshold_s:
            return None
        return cached

    def invalidate(self) -> None:
        """Drop the cached quote. A fetch already in flight will not re-cache."""
        self._cached = None
        self._epoch += 1

    async def fetch_prepared_quote(self, intent: Intent) -> PreparedQuote:
        cached = self.cached_quote(intent)
        if cached is not None:
            logger.debug(f"Reusing prepared quote ({self.time_left(cached)}s left)")
            return cached

        epoch = self._epoch
        amount_units = self._check_intent(intent)
        account = await self._get_account()
        self._strategy.check_account(intent, account)
        await self._check_balance(intent, account, amount_units)

        try:
            prepared = await self._strategy.prepare(
                intent,
                account,
                amount_units,
                expires_at=self._clock() + self.quote_validity_s,
            )
        except OneBalanceError as e:
            raise QuoteRequestFailed(str(e), status_code=getattr(e, "status_code", None)) from e

        if epoch == self._epoch:
            self._cached = prepared
        logger.info(
            f"Prepared {intent.kind.value} quote for {intent.amount} {intent.asset.symbol} "
            f"via {self._strategy.name} ({self.time_left(prepared)}s valid)"
        )
        return prepared

    async def fetch_final_quote(self, prepared: PreparedQuote, intent: Optional[Intent] = None) -> FinalQuote:
        """Exchange a prepared quote for the executable bundle. Consumes the cache entry."""
        if self._cached is prepared:
            self.invalidate()
        try:
            quote = await self._strategy.finalize(prepared)
        except OneBalanceError as e:
            raise QuoteRequestFailed(str(e), status_code=getattr(e, "status_code", None)) from e
        logger.info(
            f"Final quote {quote.id}: {len(quote.origin_chains_operations)} origin operation(s)"
            f"{', destination operation' if quote.destination_chain_operation else ''}"
        )
        return quote

    def _check_intent(self, intent: Intent) -> int:
        amount_units = to_smallest_unit(intent.amount, intent.asset.decimals)
        if isinstance(intent, WithdrawIntent):
            validation = validate_address(intent.recipient_address)
            if not validation.is_valid:
                raise InvalidAddress(validation.error or "Invalid recipient address")
        self._strategy.check_intent(intent)
        return amount_units

    async def _get_account(self) -> EvmAccount:
        return await self._accounts.get_account()

    async def _check_balance(self, intent: Intent, account: EvmAccount, amount_units: int) -> None:
        # Always re-fetched: a sibling flow on the same account may have spent it.
        try:
            data = await self._balances.get_aggregated_balance(account.account_address)
        except OneBalanceError as e:
            raise QuoteRequestFailed(f"Failed to fetch balance: {e}") from e

        entry = _find_balance(data, intent.asset.aggregated_asset_id)
        if entry is None:
            raise NoBalanceForAsset(f"No balance found for {intent.asset.symbol}")
        try:
            available = int(str(entry.get("balance", "0")))
        except ValueError as e:
            raise InvalidQuoteResponse(f"Invalid balance for {intent.asset.symbol}") from e

        logger.debug(
            f"Available {from_smallest_unit(available, intent.asset.decimals)} {intent.asset.symbol}, "
            f"requested {intent.amount}"
        )
        if available < amount_units:
            raise InsufficientBalance(
                f"Insufficient balance for {intent.amount} {intent.asset.symbol}",
                required=amount_units,
                available=available,
            )


def _find_balance(data: Any, aggregated_asset_id: str) -> Optional[Dict[str, Any]]:
    if not isinstance(data, dict):
        return None
    for entry in data.get("balanceByAggregatedAsset") or []:
        if isinstance(entry, dict) and entry.get("aggregatedAssetId") == aggregated_asset_id:
            return entry
    return None
