"""
Vault call-data builders.

Minimal ABI encoding for the two static-argument vault entry points the
flows call: deposit(address,uint256) and withdraw(address).
"""

from __future__ import annotations

from eth_utils import keccak

DEPOSIT_SIGNATURE = "deposit(address,uint256)"
WITHDRAW_SIGNATURE = "withdraw(address)"


def _strip_0x(value: str) -> str:
    return value[2:] if value.startswith("0x") else value


def _encode_uint(value: int) -> str:
    if value < 0:
        raise ValueError("Value must be non-negative")
    if value >= 2 ** 256:
        raise ValueError("Value does not fit in uint256")
    return hex(value)[2:].rjust(64, "0")


def _encode_address(address: str) -> str:
    addr = _strip_0x(address).lower()
    if len(addr) != 40:
        raise ValueError(f"Invalid address length: {address}")
    return addr.rjust(64, "0")


def function_selector(signature: str) -> str:
    return "0x" + keccak(text=signature)[:4].hex()


def build_deposit_call_data(user_address: str, amount: int) -> str:
    """Calldata for deposit(address user, uint256 amount)."""
    return function_selector(DEPOSIT_SIGNATURE) + _encode_address(user_address) + _encode_uint(amount)


def build_withdraw_call_data(user_address: str) -> str:
    """Calldata for withdraw(address user)."""
    return function_selector(WITHDRAW_SIGNATURE) + _encode_address(user_address)
