"""Helpers for validating EVM addresses and building CAIP identifiers."""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional

from eth_utils import is_address, is_checksum_address

_EVM_ADDRESS_RE = re.compile(r"^0x[a-fA-F0-9]{40}$")
_ENS_NAME_RE = re.compile(r"^[a-zA-Z0-9-]+\.eth$")


@dataclass(frozen=True)
class AddressValidation:
    is_valid: bool
    error: Optional[str] = None


def is_valid_evm_address(address: str) -> bool:
    """Hex address with 0x prefix; mixed-case input must carry a valid checksum."""
    if not address or not _EVM_ADDRESS_RE.match(address):
        return False
    digits = address[2:]
    if digits.islower() or digits.isupper() or digits.isdigit():
        return is_address(address)
    return is_checksum_address(address)


def is_ens_name(address: str) -> bool:
    return bool(address) and bool(_ENS_NAME_RE.match(address))


def validate_address(address: Optional[str]) -> AddressValidation:
    """Validate a recipient address, returning a display message on failure."""
    if not address or not isinstance(address, str) or not address.strip():
        return AddressValidation(is_valid=False, error="Address is required")

    trimmed = address.strip()
    if is_ens_name(trimmed):
        return AddressValidation(
            is_valid=False,
            error="ENS names must be resolved to an address before withdrawing",
        )
    if not is_valid_evm_address(trimmed):
        return AddressValidation(
            is_valid=False,
            error="Invalid address format. Please enter a valid Ethereum address (0x...)",
        )
    return AddressValidation(is_valid=True)


def chain_reference(chain: str) -> str:
    """'eip155:8453' -> '8453'; bare references pass through."""
    chain = chain.strip()
    return chain.split(":", 1)[1] if chain.startswith("eip155:") else chain


def caip2_chain(chain: str) -> str:
    """'8453' -> 'eip155:8453'."""
    return f"eip155:{chain_reference(chain)}"


def format_account_id(chain: str, address: str) -> str:
    """CAIP-10 account id, e.g. eip155:8453:0xabc..."""
    return f"eip155:{chain_reference(chain)}:{address.strip()}"


def chain_id_from_asset_type(asset_type: str) -> Optional[str]:
    """'eip155:42161/erc20:0x...' -> '42161'."""
    if ":" not in asset_type:
        return None
    reference = asset_type.split(":", 1)[1].split("/", 1)[0]
    return reference or None
