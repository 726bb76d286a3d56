"""
Quote request strategies.

A strategy owns the request shape for one kind of intent: which endpoint
produces the preparatory quote, what payload it takes, and how the final
quote is obtained from it.

- CallQuoteStrategy: prepare-call-quote, sign the preparatory operation,
  then call-quote. Used for vault deposits and for call-based withdrawals.
- TransferQuoteStrategy: a single v1 quote for an aggregated-asset transfer
  to a recipient account. The response already is the final quote.
"""

from __future__ import annotations

import copy
import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional, Union

from ...providers.onebalance import OneBalanceProvider
from ...services.address import caip2_chain, format_account_id
from .calldata import build_deposit_call_data, build_withdraw_call_data
from .errors import InvalidAddress, InvalidQuoteResponse, UnsupportedAssetForChain
from .models import (
    ChainOperation,
    DepositIntent,
    EvmAccount,
    FinalQuote,
    PreparedQuote,
    WithdrawIntent,
)
from .signing import SigningAdapter

logger = logging.getLogger(__name__)

Intent = Union[DepositIntent, WithdrawIntent]


def parse_final_quote(data: Any) -> FinalQuote:
    """Validate and parse a final quote response."""
    if not isinstance(data, dict) or not data.get("id") or not data.get("account") \
            or data.get("originChainsOperations") is None:
        raise InvalidQuoteResponse("Invalid quote received from API")
    try:
        return FinalQuote.from_dict(data)
    except (KeyError, TypeError, ValueError) as e:
        raise InvalidQuoteResponse(f"Invalid quote received from API: {e}") from e


def _remote_expiry(data: Dict[str, Any]) -> Optional[float]:
    raw = data.get("expirationTimestamp")
    if raw in (None, ""):
        return None
    try:
        return float(raw)
    except (TypeError, ValueError):
        return None


class QuoteStrategy(ABC):
    """Request shape for one kind of intent."""

    name: str

    def __init__(self, provider: OneBalanceProvider, signing: SigningAdapter) -> None:
        self._provider = provider
        self._signing = signing

    @abstractmethod
    def check_intent(self, intent: Intent) -> None:
        """Local preconditions, raised as input errors before any network call."""

    def check_account(self, intent: Intent, account: EvmAccount) -> None:
        """Preconditions that need the resolved smart account."""

    @abstractmethod
    async def prepare(
        self,
        intent: Intent,
        account: EvmAccount,
        amount_units: int,
        expires_at: float,
    ) -> PreparedQuote:
        """Request the preparatory quote."""

    @abstractmethod
    async def finalize(self, prepared: PreparedQuote) -> FinalQuote:
        """Turn a prepared quote into an executable final quote."""


class CallQuoteStrategy(QuoteStrategy):
    """prepare-call-quote -> sign -> call-quote."""

    name = "call"

    def __init__(
        self,
        provider: OneBalanceProvider,
        signing: SigningAdapter,
        deposit_chain: Optional[str] = None,
    ) -> None:
        super().__init__(provider, signing)
        self._deposit_chain = caip2_chain(deposit_chain) if deposit_chain else None

    def check_intent(self, intent: Intent) -> None:
        if (
            isinstance(intent, DepositIntent)
            and self._deposit_chain
            and caip2_chain(intent.target_chain) != self._deposit_chain
        ):
            raise UnsupportedAssetForChain(
                f"Deposits are only accepted on {self._deposit_chain}",
                chain=intent.target_chain,
            )
        if isinstance(intent, WithdrawIntent) and not intent.vault_address:
            raise InvalidAddress("A vault address is required for call-based withdrawals")
        if intent.asset.entity_for_chain(intent.target_chain) is None:
            raise UnsupportedAssetForChain(
                f"{intent.asset.symbol} is not available on {intent.target_chain}",
                chain=intent.target_chain,
            )

    def check_account(self, intent: Intent, account: EvmAccount) -> None:
        # withdraw(address) pays out to the smart account itself
        if (
            isinstance(intent, WithdrawIntent)
            and intent.recipient_address.strip().lower() != account.account_address.lower()
        ):
            raise InvalidAddress(
                f"Call-based withdrawals pay out to {account.account_address}; "
                "use the transfer strategy for another recipient"
            )

    def build_request(self, intent: Intent, account: EvmAccount, amount_units: int) -> Dict[str, Any]:
        entity = intent.asset.entity_for_chain(intent.target_chain)
        asset_type = entity.asset_type
        vault = intent.vault_address

        if isinstance(intent, DepositIntent):
            call_data = build_deposit_call_data(account.account_address, amount_units)
            required_amount = str(amount_units)
        else:
            # Bot-managed vaults withdraw the user's whole position
            call_data = build_withdraw_call_data(account.account_address)
            required_amount = "0"

        request: Dict[str, Any] = {
            "account": account.to_dict(),
            "targetChain": intent.target_chain,
            "calls": [{"to": vault, "data": call_data, "value": "0x0"}],
            "tokensRequired": [{"assetType": asset_type, "amount": required_amount}],
        }
        if isinstance(intent, DepositIntent):
            request["allowanceRequirements"] = [
                {"assetType": asset_type, "amount": required_amount, "spender": vault}
            ]
        return request

    async def prepare(
        self,
        intent: Intent,
        account: EvmAccount,
        amount_units: int,
        expires_at: float,
    ) -> PreparedQuote:
        request = self.build_request(intent, account, amount_units)
        logger.debug(f"prepare-call-quote request: {request}")
        data = await self._provider.prepare_call_quote(request)

        if not isinstance(data, dict) or not data.get("chainOperation"):
            raise InvalidQuoteResponse("Invalid response: missing chainOperation")
        try:
            operation = ChainOperation.from_dict(data["chainOperation"])
        except (KeyError, TypeError, ValueError) as e:
            raise InvalidQuoteResponse(f"Invalid response: malformed chainOperation ({e})") from e

        tamper_proof_signature = data.get("tamperProofSignature") or ""
        return PreparedQuote(
            intent_key=intent.key,
            expires_at=expires_at,
            tamper_proof_signature=tamper_proof_signature,
            chain_operation=operation,
            call_request={
                "fromAggregatedAssetId": intent.asset.aggregated_asset_id,
                "account": account.to_dict(),
                "tamperProofSignature": tamper_proof_signature,
            },
            request=request,
        )

    async def finalize(self, prepared: PreparedQuote) -> FinalQuote:
        if prepared.chain_operation is None:
            raise InvalidQuoteResponse("Prepared quote has no chain operation")
        signed = await self._signing.sign(prepared.chain_operation)
        request = {**prepared.call_request, "chainOperation": signed.to_dict()}
        data = await self._provider.fetch_call_quote(request)
        return parse_final_quote(data)


class TransferQuoteStrategy(QuoteStrategy):
    """Single v1 quote: aggregated asset -> chain asset at a recipient account."""

    name = "transfer"

    def check_intent(self, intent: Intent) -> None:
        if not isinstance(intent, WithdrawIntent):
            raise TypeError("TransferQuoteStrategy only handles withdrawals")

    def build_request(self, intent: WithdrawIntent, account: EvmAccount, amount_units: int) -> Dict[str, Any]:
        entity = intent.asset.entity_for_chain(intent.target_chain)
        to_asset_id = entity.asset_type if entity else intent.asset.aggregated_asset_id
        return {
            "from": {
                "account": account.to_dict(),
                "asset": {"assetId": intent.asset.aggregated_asset_id},
                "amount": str(amount_units),
            },
            "to": {
                "asset": {"assetId": to_asset_id},
                "account": format_account_id(intent.target_chain, intent.recipient_address),
            },
        }

    async def prepare(
        self,
        intent: Intent,
        account: EvmAccount,
        amount_units: int,
        expires_at: float,
    ) -> PreparedQuote:
        request = self.build_request(intent, account, amount_units)
        logger.debug(f"v1 quote request: {request}")
        data = await self._provider.fetch_quote(request)
        quote = parse_final_quote(data)
        if not quote.origin_chains_operations:
            raise InvalidQuoteResponse("No operations to sign in the quote")

        remote_expiry = _remote_expiry(data)
        if remote_expiry is not None:
            expires_at = min(expires_at, remote_expiry)

        return PreparedQuote(
            intent_key=intent.key,
            expires_at=expires_at,
            tamper_proof_signature=quote.tamper_proof_signature,
            call_request={
                "fromAggregatedAssetId": intent.asset.aggregated_asset_id,
                "account": quote.account.to_dict(),
            },
            request=request,
            quote=quote,
        )

    async def finalize(self, prepared: PreparedQuote) -> FinalQuote:
        if prepared.quote is None:
            raise InvalidQuoteResponse("Prepared quote carries no final quote")
        # Signatures attach to the copy; the prepared quote stays pristine.
        return copy.deepcopy(prepared.quote)


def strategy_for(
    kind: str,
    provider: OneBalanceProvider,
    signing: SigningAdapter,
    deposit_chain: Optional[str] = None,
) -> QuoteStrategy:
    """Build a strategy by name ('call' or 'transfer')."""
    if kind == CallQuoteStrategy.name:
        return CallQuoteStrategy(provider, signing, deposit_chain=deposit_chain)
    if kind == TransferQuoteStrategy.name:
        return TransferQuoteStrategy(provider, signing)
    raise ValueError(f"Unknown quote strategy: {kind}")
