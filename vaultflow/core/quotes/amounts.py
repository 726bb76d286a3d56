"""Decimal-string <-> smallest-unit integer conversion."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, DecimalException, InvalidOperation, localcontext

from .errors import InvalidAmount


def parse_amount(amount: str) -> Decimal:
    """Parse a human decimal string, rejecting anything that is not a positive number."""
    try:
        value = Decimal(str(amount).strip())
    except (InvalidOperation, ValueError):
        raise InvalidAmount(f"Invalid amount: {amount!r}")
    if not value.is_finite() or value <= 0:
        raise InvalidAmount(f"Amount must be a positive number: {amount!r}")
    return value


def to_smallest_unit(amount: str, decimals: int) -> int:
    """
    Convert "100.5" with 6 decimals to 100500000.

    Digits beyond the asset's precision are rounded half-up, never truncated
    through a float.
    """
    if decimals < 0:
        raise ValueError("decimals must be non-negative")
    value = parse_amount(amount)
    with localcontext() as ctx:
        ctx.prec = 100
        try:
            scaled = value.scaleb(decimals).quantize(Decimal(1), rounding=ROUND_HALF_UP)
        except DecimalException:
            raise InvalidAmount(f"Amount is too large: {amount!r}")
    units = int(scaled)
    if units <= 0:
        raise InvalidAmount(f"Amount {amount!r} is below the smallest unit of the asset")
    return units


def from_smallest_unit(units: int, decimals: int) -> str:
    """Inverse of to_smallest_unit for display, without trailing zeros."""
    value = Decimal(int(units)).scaleb(-decimals)
    text = format(value, "f")
    if "." in text:
        text = text.rstrip("0").rstrip(".")
    return text or "0"
