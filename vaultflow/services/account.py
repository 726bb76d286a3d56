"""
Smart-account resolution.

The quoting backend addresses users by a counterfactual smart-account
address predicted from the signer (session and admin are the same key).
The prediction is stable per signer, so it is fetched once and cached.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Optional

from ..core.quotes.errors import AccountUnavailable
from ..core.quotes.models import EvmAccount
from ..providers.onebalance import OneBalanceError, OneBalanceProvider

logger = logging.getLogger(__name__)


class PredictedAccountResolver:
    """Resolve and cache the EvmAccount for one signer."""

    def __init__(self, provider: OneBalanceProvider, signer_address: str) -> None:
        self._provider = provider
        self._signer_address = signer_address
        self._predicted: Optional[str] = None
        self._lock = asyncio.Lock()

    @property
    def predicted_address(self) -> Optional[str]:
        return self._predicted

    @property
    def signer_address(self) -> str:
        return self._signer_address

    async def get_account(self) -> EvmAccount:
        if self._predicted is None:
            async with self._lock:
                if self._predicted is None:
                    self._predicted = await self._predict()
        return EvmAccount(
            account_address=self._predicted,
            session_address=self._signer_address,
            admin_address=self._signer_address,
        )

    def clear(self) -> None:
        """Forget the cached prediction (e.g. after the signer changed)."""
        self._predicted = None

    async def _predict(self) -> str:
        try:
            predicted = await self._provider.predict_address(self._signer_address, self._signer_address)
        except OneBalanceError as e:
            logger.error(f"Failed to predict address for {self._signer_address}: {e}")
            raise AccountUnavailable(f"Failed to get account address: {e}") from e
        if not predicted:
            raise AccountUnavailable("Failed to get account address")
        logger.info(f"Predicted account {predicted} for signer {self._signer_address}")
        return predicted
