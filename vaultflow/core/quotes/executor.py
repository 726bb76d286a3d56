"""
Execution driver.

Signs every operation of a final quote and submits the bundle to the
execution endpoint. A quote id is submitted at most once per driver.
"""

from __future__ import annotations

import logging
from typing import Set

from ...providers.onebalance import OneBalanceError, OneBalanceProvider
from .errors import DuplicateSubmission, ExecutionRejected, InvalidQuoteResponse
from .models import ExecutionAcceptance, FinalQuote
from .signing import SigningAdapter

logger = logging.getLogger(__name__)


class ExecutionDriver:
    """sign_quote() -> submit(); execute() does both."""

    def __init__(self, provider: OneBalanceProvider, signing: SigningAdapter) -> None:
        self._provider = provider
        self._signing = signing
        self._submitted: Set[str] = set()

    @property
    def signing(self) -> SigningAdapter:
        return self._signing

    def was_submitted(self, quote_id: str) -> bool:
        return quote_id in self._submitted

    async def sign_quote(self, quote: FinalQuote) -> FinalQuote:
        """
        Sign origin operations in array order, then the destination operation.

        The quote's operations are replaced by their signed counterparts once
        every origin operation is signed.
        """
        if quote.origin_chains_operations:
            quote.origin_chains_operations[:] = await self._signing.sign_sequentially(
                quote.origin_chains_operations
            )
            logger.debug(f"Signed {len(quote.origin_chains_operations)} origin operation(s)")

        if quote.destination_chain_operation is not None:
            quote.destination_chain_operation = await self._signing.sign(quote.destination_chain_operation)
            logger.debug("Signed destination operation")
        return quote

    async def submit(self, quote: FinalQuote) -> ExecutionAcceptance:
        if quote.id in self._submitted:
            raise DuplicateSubmission(f"Quote {quote.id} was already submitted")
        if not quote.is_fully_signed:
            raise InvalidQuoteResponse(f"Quote {quote.id} has unsigned operations")

        payload = quote.to_dict()
        self._submitted.add(quote.id)

        try:
            data = await self._provider.execute_quote(payload)
        except OneBalanceError as e:
            raise ExecutionRejected(f"Failed to execute quote: {e}") from e

        acceptance = ExecutionAcceptance.from_dict(data if isinstance(data, dict) else {})
        if not acceptance.success:
            raise ExecutionRejected(acceptance.error or "Execution was not accepted")

        logger.info(f"Quote {quote.id} accepted for execution")
        return acceptance

    async def execute(self, quote: FinalQuote) -> ExecutionAcceptance:
        await self.sign_quote(quote)
        return await self.submit(quote)
