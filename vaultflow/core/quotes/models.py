"""
Quote lifecycle models and types.

Wire payloads use the backend's camelCase keys; dataclasses hold the
snake_case view and convert with to_dict()/from_dict().
"""

from __future__ import annotations

import copy
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple


class IntentKind(str, Enum):
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"


@dataclass(frozen=True)
class AggregatedAssetEntity:
    """Chain-specific sub-entity of an aggregated asset."""
    asset_type: str                 # CAIP-19, e.g. eip155:42161/erc20:0x...
    decimals: int
    name: str = ""
    symbol: str = ""

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AggregatedAssetEntity":
        return cls(
            asset_type=data["assetType"],
            decimals=int(data["decimals"]),
            name=data.get("name", ""),
            symbol=data.get("symbol", ""),
        )


@dataclass(frozen=True)
class Asset:
    """A logical token spanning several chains (e.g. ob:usdc)."""
    aggregated_asset_id: str
    symbol: str
    decimals: int
    name: str = ""
    aggregated_entities: Tuple[AggregatedAssetEntity, ...] = ()

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Asset":
        return cls(
            aggregated_asset_id=data["aggregatedAssetId"],
            symbol=data["symbol"],
            decimals=int(data["decimals"]),
            name=data.get("name", ""),
            aggregated_entities=tuple(
                AggregatedAssetEntity.from_dict(e) for e in data.get("aggregatedEntities", [])
            ),
        )

    def entity_for_chain(self, chain: str) -> Optional[AggregatedAssetEntity]:
        """Return the sub-entity living on a CAIP-2 chain, if any."""
        prefix = f"{chain}/"
        for entity in self.aggregated_entities:
            if entity.asset_type.startswith(prefix):
                return entity
        return None


@dataclass(frozen=True)
class EvmAccount:
    account_address: str
    session_address: str
    admin_address: str

    def to_dict(self) -> Dict[str, str]:
        return {
            "accountAddress": self.account_address,
            "sessionAddress": self.session_address,
            "adminAddress": self.admin_address,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvmAccount":
        return cls(
            account_address=data["accountAddress"],
            session_address=data.get("sessionAddress", ""),
            admin_address=data.get("adminAddress", ""),
        )


@dataclass(frozen=True)
class DepositIntent:
    """Deposit `amount` of `asset` into the vault at `vault_address`."""
    asset: Asset
    amount: str                     # Human decimal string, e.g. "100.5"
    target_chain: str               # CAIP-2
    vault_address: str

    kind = IntentKind.DEPOSIT

    @property
    def key(self) -> Tuple[str, ...]:
        return (self.kind.value, self.asset.aggregated_asset_id, self.amount, self.vault_address.lower())


@dataclass(frozen=True)
class WithdrawIntent:
    """
    Withdraw `amount` of `asset` to `recipient_address` on `target_chain`.

    With the call-quote strategy the vault's withdraw(address) pays the whole
    position out to the smart account, so `recipient_address` must be that
    account. The request then carries a zero token amount; `amount` is still
    checked against the aggregated balance.
    """
    asset: Asset
    amount: str
    target_chain: str
    recipient_address: str
    vault_address: Optional[str] = None   # Only used by the call-quote strategy

    kind = IntentKind.WITHDRAW

    @property
    def key(self) -> Tuple[str, ...]:
        return (
            self.kind.value,
            self.asset.aggregated_asset_id,
            self.amount,
            self.target_chain,
            self.recipient_address.lower(),
        )


@dataclass(frozen=True)
class UserOperation:
    """
    User-operation payload as returned by the quoting backend.

    All numeric fields stay as the backend's strings so a signed operation
    round-trips byte for byte.
    """
    sender: str
    nonce: str
    call_data: str
    call_gas_limit: str = "0"
    verification_gas_limit: str = "0"
    pre_verification_gas: str = "0"
    max_fee_per_gas: str = "0"
    max_priority_fee_per_gas: str = "0"
    paymaster: str = ""
    paymaster_verification_gas_limit: str = "0"
    paymaster_post_op_gas_limit: str = "0"
    paymaster_data: str = "0x"
    signature: str = "0x"

    def with_signature(self, signature: str) -> "UserOperation":
        return replace(self, signature=signature)

    def to_dict(self) -> Dict[str, str]:
        return {
            "sender": self.sender,
            "nonce": self.nonce,
            "callData": self.call_data,
            "callGasLimit": self.call_gas_limit,
            "verificationGasLimit": self.verification_gas_limit,
            "preVerificationGas": self.pre_verification_gas,
            "maxFeePerGas": self.max_fee_per_gas,
            "maxPriorityFeePerGas": self.max_priority_fee_per_gas,
            "paymaster": self.paymaster,
            "paymasterVerificationGasLimit": self.paymaster_verification_gas_limit,
            "paymasterPostOpGasLimit": self.paymaster_post_op_gas_limit,
            "paymasterData": self.paymaster_data,
            "signature": self.signature,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "UserOperation":
        def s(key: str, default: str) -> str:
            value = data.get(key)
            return default if value is None else str(value)

        return cls(
            sender=data["sender"],
            nonce=str(data["nonce"]),
            call_data=data["callData"],
            call_gas_limit=s("callGasLimit", "0"),
            verification_gas_limit=s("verificationGasLimit", "0"),
            pre_verification_gas=s("preVerificationGas", "0"),
            max_fee_per_gas=s("maxFeePerGas", "0"),
            max_priority_fee_per_gas=s("maxPriorityFeePerGas", "0"),
            paymaster=s("paymaster", ""),
            paymaster_verification_gas_limit=s("paymasterVerificationGasLimit", "0"),
            paymaster_post_op_gas_limit=s("paymasterPostOpGasLimit", "0"),
            paymaster_data=s("paymasterData", "0x"),
            signature=s("signature", "0x"),
        )


@dataclass(frozen=True)
class TypedData:
    """EIP-712 typed-data payload."""
    domain: Dict[str, Any]
    types: Dict[str, Any]
    primary_type: str
    message: Dict[str, Any]

    def is_well_formed(self) -> bool:
        return (
            isinstance(self.domain, dict)
            and isinstance(self.types, dict)
            and isinstance(self.message, dict)
            and bool(self.primary_type)
            and self.primary_type in self.types
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "domain": copy.deepcopy(self.domain),
            "types": copy.deepcopy(self.types),
            "primaryType": self.primary_type,
            "message": copy.deepcopy(self.message),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TypedData":
        return cls(
            domain=data.get("domain") or {},
            types=data.get("types") or {},
            primary_type=data.get("primaryType") or "",
            message=data.get("message") or {},
        )


@dataclass(frozen=True)
class ChainOperation:
    """One signable unit of on-chain work."""
    user_op: UserOperation
    typed_data_to_sign: TypedData
    asset_type: str = ""
    amount: str = "0"

    @property
    def is_signed(self) -> bool:
        return self.user_op.signature not in ("", "0x")

    def signed(self, signature: str) -> "ChainOperation":
        return replace(self, user_op=self.user_op.with_signature(signature))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "userOp": self.user_op.to_dict(),
            "typedDataToSign": self.typed_data_to_sign.to_dict(),
            "assetType": self.asset_type,
            "amount": self.amount,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ChainOperation":
        return cls(
            user_op=UserOperation.from_dict(data["userOp"]),
            typed_data_to_sign=TypedData.from_dict(data["typedDataToSign"]),
            asset_type=data.get("assetType", ""),
            amount=str(data.get("amount", "0")),
        )


@dataclass
class FinalQuote:
    """
    Fully specified multi-operation bundle, ready to be signed and executed.

    Only the operations are ever mutated, and only to attach signatures.
    """
    id: str
    account: EvmAccount
    origin_chains_operations: List[ChainOperation]
    expiration_timestamp: str
    tamper_proof_signature: str
    destination_chain_operation: Optional[ChainOperation] = None
    origin_token: Optional[Dict[str, Any]] = None
    destination_token: Optional[Dict[str, Any]] = None

    def operations_in_signing_order(self) -> List[ChainOperation]:
        ops = list(self.origin_chains_operations)
        if self.destination_chain_operation is not None:
            ops.append(self.destination_chain_operation)
        return ops

    @property
    def is_fully_signed(self) -> bool:
        return all(op.is_signed for op in self.operations_in_signing_order())

    def to_dict(self) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "id": self.id,
            "account": self.account.to_dict(),
            "originChainsOperations": [op.to_dict() for op in self.origin_chains_operations],
            "expirationTimestamp": self.expiration_timestamp,
            "tamperProofSignature": self.tamper_proof_signature,
        }
        if self.destination_chain_operation is not None:
            data["destinationChainOperation"] = self.destination_chain_operation.to_dict()
        if self.origin_token is not None:
            data["originToken"] = self.origin_token
        if self.destination_token is not None:
            data["destinationToken"] = self.destination_token
        return data

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FinalQuote":
        destination = data.get("destinationChainOperation")
        return cls(
            id=data["id"],
            account=EvmAccount.from_dict(data["account"]),
            origin_chains_operations=[
                ChainOperation.from_dict(op) for op in data["originChainsOperations"]
            ],
            expiration_timestamp=str(data.get("expirationTimestamp", "")),
            tamper_proof_signature=data.get("tamperProofSignature", ""),
            destination_chain_operation=ChainOperation.from_dict(destination) if destination else None,
            origin_token=data.get("originToken"),
            destination_token=data.get("destinationToken"),
        )


@dataclass(frozen=True)
class PreparedQuote:
    """
    Preparatory, unsigned quote for one intent.

    Created by the pipeline and never mutated; signing produces new
    ChainOperation objects. `quote` is populated only when the preparatory
    endpoint already priced the whole bundle.
    """
    intent_key: Tuple[str, ...]
    expires_at: float                                   # Epoch seconds
    tamper_proof_signature: str = ""
    chain_operation: Optional[ChainOperation] = None
    call_request: Dict[str, Any] = field(default_factory=dict)
    request: Dict[str, Any] = field(default_factory=dict)
    quote: Optional[FinalQuote] = None


@dataclass(frozen=True)
class ExecutionAcceptance:
    success: bool
    error: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ExecutionAcceptance":
        return cls(success=data.get("success") is True, error=data.get("error"))


class StatusKind(str, Enum):
    """Normalized execution status."""
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"

    @property
    def is_terminal(self) -> bool:
        return self in (StatusKind.COMPLETED, StatusKind.FAILED, StatusKind.REFUNDED)

    @classmethod
    def parse(cls, value: Any) -> Optional["StatusKind"]:
        """Accept a bare string or a nested {"status": str} object."""
        if isinstance(value, dict):
            value = value.get("status")
        if not isinstance(value, str) or not value:
            return None
        try:
            return cls(value.strip().upper())
        except ValueError:
            return None


def _parse_chain_id(value: Any) -> Optional[int]:
    """Numeric chain id from 42161, "42161" or "eip155:42161"; None otherwise."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().rsplit(":", 1)[-1]
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


@dataclass(frozen=True)
class OperationReceipt:
    hash: Optional[str] = None
    chain_id: Optional[int] = None
    explorer_url: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "OperationReceipt":
        return cls(
            hash=data.get("hash"),
            chain_id=_parse_chain_id(data.get("chainId")),
            explorer_url=data.get("explorerUrl"),
        )


def _receipts(operations: Any) -> Tuple[OperationReceipt, ...]:
    if not isinstance(operations, list):
        return ()
    return tuple(OperationReceipt.from_dict(op) for op in operations if isinstance(op, dict))


@dataclass(frozen=True)
class ExecutionStatus:
    """Status snapshot of a submitted bundle."""
    quote_id: str
    kind: StatusKind
    origin_operations: Tuple[OperationReceipt, ...] = ()
    destination_operations: Tuple[OperationReceipt, ...] = ()
    user: Optional[str] = None
    recipient_account_id: Optional[str] = None

    @property
    def is_terminal(self) -> bool:
        return self.kind.is_terminal

    @property
    def hash(self) -> Optional[str]:
        return self.origin_operations[0].hash if self.origin_operations else None

    @property
    def explorer_url(self) -> Optional[str]:
        return self.origin_operations[0].explorer_url if self.origin_operations else None

    @classmethod
    def from_response(cls, data: Dict[str, Any], quote_id: str = "") -> Optional["ExecutionStatus"]:
        """Normalize a status response; None when it carries no usable status."""
        if not isinstance(data, dict):
            return None
        kind = StatusKind.parse(data.get("status"))
        if kind is None:
            return None
        return cls(
            quote_id=data.get("quoteId") or quote_id,
            kind=kind,
            origin_operations=_receipts(data.get("originChainOperations")),
            destination_operations=_receipts(data.get("destinationChainOperations")),
            user=data.get("user"),
            recipient_account_id=data.get("recipientAccountId"),
        )


class QuoteCycleState(str, Enum):
    """States of one quote cycle."""
    IDLE = "idle"
    FETCHING_PREPARED_QUOTE = "fetching_prepared_quote"
    PREPARED_QUOTE_READY = "prepared_quote_ready"
    FETCHING_FINAL_QUOTE = "fetching_final_quote"
    SIGNING = "signing"
    SUBMITTING = "submitting"
    POLLING = "polling"
    COMPLETED = "completed"
    FAILED = "failed"
    TIMED_OUT = "timed_out"


@dataclass(frozen=True)
class QuoteSnapshot:
    """Read-only view of the controller state handed to subscribers."""
    state: QuoteCycleState = QuoteCycleState.IDLE
    quote: Optional[PreparedQuote] = None
    expires_at: Optional[float] = None
    status: Optional[ExecutionStatus] = None
    loading: bool = False
    error: Optional[str] = None
    error_category: Optional[str] = None
    is_polling: bool = False
    time_left: int = 0
    execution_success: bool = False
    polling_timeout: bool = False
    completed_status: Optional[ExecutionStatus] = None
    quote_id: Optional[str] = None
    polling_started_at: Optional[float] = None

    @property
    def is_quote_expired(self) -> bool:
        return self.state == QuoteCycleState.PREPARED_QUOTE_READY and self.time_left == 0
