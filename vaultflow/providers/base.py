from abc import ABC, abstractmethod
from typing import Any, Dict


class Provider(ABC):
    """Base provider interface"""

    name: str
    timeout_s: int = 10

    @abstractmethod
    async def ready(self) -> bool:
        """Check if provider is ready to serve requests"""
        pass

    @abstractmethod
    async def health_check(self) -> Dict[str, Any]:
        """Return provider health status"""
        pass


class BalanceSource(ABC):
    """Source of aggregated multi-chain balances"""

    @abstractmethod
    async def get_aggregated_balance(self, address: str) -> Dict[str, Any]:
        """Return {"balanceByAggregatedAsset": [{"aggregatedAssetId", "balance"}, ...]}"""
        pass
