"""External service providers"""

from .base import BalanceSource, Provider
from .onebalance import OneBalanceApiError, OneBalanceConfig, OneBalanceError, OneBalanceProvider

__all__ = [
    "Provider",
    "BalanceSource",
    "OneBalanceProvider",
    "OneBalanceConfig",
    "OneBalanceError",
    "OneBalanceApiError",
]
