"""
Quote lifecycle errors.

Every failure the lifecycle can surface is a QuoteError carrying an
ErrorCategory, so the controller can store a display message together with
a category a UI can branch on (retry signing vs. generic failure vs.
unknown outcome).
"""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Categories of quote lifecycle errors."""

    INPUT = "input"                    # Rejected before any network call
    TRANSPORT = "transport"            # Network or remote-service failure
    SIGNING = "signing"                # Signer declined or unavailable
    RESPONSE_SHAPE = "response_shape"  # Remote answer missing required fields
    TIMEOUT = "timeout"                # Outcome unknown, not a failure


class QuoteError(Exception):
    """Base class for quote lifecycle errors."""

    category: ErrorCategory = ErrorCategory.TRANSPORT

    def __init__(self, message: str, category: Optional[ErrorCategory] = None):
        super().__init__(message)
        self.message = message
        if category is not None:
            self.category = category


# Input errors


class InputError(QuoteError):
    category = ErrorCategory.INPUT


class InvalidAmount(InputError):
    """Amount does not parse to a positive number."""


class InsufficientBalance(InputError):
    """Requested amount exceeds the aggregated balance."""

    def __init__(self, message: str, required: int = 0, available: int = 0):
        super().__init__(message)
        self.required = required
        self.available = available


class NoBalanceForAsset(InputError):
    """The balance source has no entry for the aggregated asset."""


class UnsupportedAssetForChain(InputError):
    """The asset has no sub-entity on the target chain."""

    def __init__(self, message: str, chain: Optional[str] = None):
        super().__init__(message)
        self.chain = chain


class InvalidAddress(InputError):
    """Recipient address failed validation."""


class AccountUnavailable(InputError):
    """The smart-account address could not be resolved."""


class QuoteExpired(InputError):
    """The prepared quote ran out of validity before execution."""


# Transport errors


class QuoteRequestFailed(QuoteError):
    """Preparatory or final quote request failed in transit."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class ExecutionRejected(QuoteError):
    """The execution endpoint refused the signed bundle."""


class DuplicateSubmission(QuoteError):
    """A final quote was handed to the execution endpoint a second time."""


# Signing errors


class SigningError(QuoteError):
    category = ErrorCategory.SIGNING


class SigningRejected(SigningError):
    """The user declined the signature request."""


class SigningUnavailable(SigningError):
    """No signer is attached."""


# Response shape errors


class InvalidQuoteResponse(QuoteError):
    category = ErrorCategory.RESPONSE_SHAPE


# Polling


class PollingTimedOut(QuoteError):
    """No terminal status before the polling deadline. Outcome unknown."""

    category = ErrorCategory.TIMEOUT

    def __init__(self, quote_id: str, attempts: int):
        super().__init__(f"Status for quote {quote_id} unknown after {attempts} polls")
        self.quote_id = quote_id
        self.attempts = attempts
