"""
Quote Lifecycle

Turns a deposit or withdraw intent into a signed bundle of chain operations,
submits it once and follows it to a terminal status:
- QuoteLifecycleController: state machine with subscribe()/get_snapshot()
- QuoteRequestPipeline: validation, balance check, prepared/final quotes
- ExecutionDriver: sequential signing and single submission
- StatusPoller: bounded polling of execution status
- CountdownTimer: quote validity countdown

Usage:
    from vaultflow.core.quotes import DepositIntent, IntentKind
    from vaultflow.core.quotes.factory import build_controller

    controller = build_controller(IntentKind.DEPOSIT, provider, signer)
    await controller.request_quote(DepositIntent(asset, "100", "eip155:42161", vault))
    await controller.execute()
"""

from .models import (
    IntentKind,
    AggregatedAssetEntity,
    Asset,
    EvmAccount,
    DepositIntent,
    WithdrawIntent,
    UserOperation,
    TypedData,
    ChainOperation,
    FinalQuote,
    PreparedQuote,
    ExecutionAcceptance,
    StatusKind,
    OperationReceipt,
    ExecutionStatus,
    QuoteCycleState,
    QuoteSnapshot,
)

from .errors import (
    ErrorCategory,
    QuoteError,
    InputError,
    InvalidAmount,
    InsufficientBalance,
    NoBalanceForAsset,
    UnsupportedAssetForChain,
    InvalidAddress,
    AccountUnavailable,
    QuoteExpired,
    QuoteRequestFailed,
    ExecutionRejected,
    DuplicateSubmission,
    SigningError,
    SigningRejected,
    SigningUnavailable,
    InvalidQuoteResponse,
    PollingTimedOut,
)

from .countdown import CountdownTimer
from .signing import LocalAccountSigner, SignatureDeclined, Signer, SigningAdapter
from .strategies import CallQuoteStrategy, QuoteStrategy, TransferQuoteStrategy, strategy_for
from .pipeline import QuoteRequestPipeline
from .executor import ExecutionDriver
from .poller import StatusPoller
from .controller import QuoteLifecycleController
from .debounce import DebouncedQuoteRequester

__all__ = [
    # Models
    "IntentKind",
    "AggregatedAssetEntity",
    "Asset",
    "EvmAccount",
    "DepositIntent",
    "WithdrawIntent",
    "UserOperation",
    "TypedData",
    "ChainOperation",
    "FinalQuote",
    "PreparedQuote",
    "ExecutionAcceptance",
    "StatusKind",
    "OperationReceipt",
    "ExecutionStatus",
    "QuoteCycleState",
    "QuoteSnapshot",
    # Errors
    "ErrorCategory",
    "QuoteError",
    "InputError",
    "InvalidAmount",
    "InsufficientBalance",
    "NoBalanceForAsset",
    "UnsupportedAssetForChain",
    "InvalidAddress",
    "AccountUnavailable",
    "QuoteExpired",
    "QuoteRequestFailed",
    "ExecutionRejected",
    "DuplicateSubmission",
    "SigningError",
    "SigningRejected",
    "SigningUnavailable",
    "InvalidQuoteResponse",
    "PollingTimedOut",
    # Components
    "CountdownTimer",
    "LocalAccountSigner",
    "SignatureDeclined",
    "Signer",
    "SigningAdapter",
    "CallQuoteStrategy",
    "QuoteStrategy",
    "TransferQuoteStrategy",
    "strategy_for",
    "QuoteRequestPipeline",
    "ExecutionDriver",
    "StatusPoller",
    "QuoteLifecycleController",
    "DebouncedQuoteRequester",
]
