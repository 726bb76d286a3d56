"""
Typed-data signing for chain operations.

The adapter is the only place that talks to a signer. Each sign() call
awaits the signer exactly once, and a lock keeps calls strictly sequential
because an embedded wallet handles one approval at a time.
"""

from __future__ import annotations

import asyncio
import logging
import re
from typing import Any, Dict, List, Optional, Protocol

from eth_account import Account
from eth_account.messages import encode_typed_data

from .errors import SigningError, SigningRejected, SigningUnavailable
from .models import ChainOperation

logger = logging.getLogger(__name__)

_HEX_SIGNATURE_RE = re.compile(r"^0x[0-9a-fA-F]+$")


class SignatureDeclined(Exception):
    """Raised by signer implementations when the user refuses to sign."""


class Signer(Protocol):
    address: str

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        ...


class LocalAccountSigner:
    """EIP-712 signer backed by a local private key."""

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(private_key)

    @property
    def address(self) -> str:
        return self._account.address

    async def sign_typed_data(self, typed_data: Dict[str, Any]) -> str:
        signable = encode_typed_data(full_message=typed_data)
        signed = self._account.sign_message(signable)
        return "0x" + bytes(signed.signature).hex()


class SigningAdapter:
    """Turns unsigned chain operations into signed ones."""

    def __init__(self, signer: Optional[Signer] = None) -> None:
        self._signer = signer
        self._lock = asyncio.Lock()

    @property
    def signer(self) -> Optional[Signer]:
        return self._signer

    def attach(self, signer: Optional[Signer]) -> None:
        self._signer = signer

    async def sign(self, operation: ChainOperation) -> ChainOperation:
        """
        Sign one operation.

        Returns a copy of `operation` whose only difference is the populated
        user-operation signature.

        Raises:
            SigningUnavailable: no signer attached, or the signer failed
            SigningRejected: the user declined
            SigningError: malformed typed data or signature
        """
        if self._signer is None:
            raise SigningUnavailable("No signer attached")
        if not operation.typed_data_to_sign.is_well_formed():
            raise SigningError("Typed data to sign is malformed")

        payload = operation.typed_data_to_sign.to_dict()
        async with self._lock:
            try:
                signature = await self._signer.sign_typed_data(payload)
            except SignatureDeclined as e:
                raise SigningRejected(f"Signature request declined: {e}") from e
            except Exception as e:
                logger.error(f"Signer failed: {e}")
                raise SigningUnavailable(f"Signer unavailable: {e}") from e

        if not isinstance(signature, str) or not _HEX_SIGNATURE_RE.match(signature):
            raise SigningError("Signer returned a non-hex signature")
        return operation.signed(signature)

    async def sign_sequentially(self, operations: List[ChainOperation]) -> List[ChainOperation]:
        """Sign operations one after another, preserving order."""
        signed: List[ChainOperation] = []
        for operation in operations:
            signed.append(await self.sign(operation))
        return signed
