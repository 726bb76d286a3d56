"""
OneBalance provider for chain-abstracted quotes and execution.

Wraps the quoting backend: preparatory call quotes, final call quotes,
transfer quotes, bundle execution, execution status, aggregated balances
and smart-account address prediction.

One instance is constructed per application and injected into the quote
pipeline, execution driver and status poller.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional

import httpx

from .base import BalanceSource, Provider
from ..config import settings

logger = logging.getLogger(__name__)


class OneBalanceError(Exception):
    """Base OneBalance provider error."""
    pass


class OneBalanceApiError(OneBalanceError):
    """API request failed."""
    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


@dataclass
class OneBalanceConfig:
    """OneBalance provider configuration."""
    api_key: str = ""
    base_url: str = "https://be.onebalance.io"
    timeout_s: float = 30.0


class OneBalanceProvider(Provider, BalanceSource):
    """
    Async client for the OneBalance API.

    Usage:
        provider = OneBalanceProvider()

        prepared = await provider.prepare_call_quote({...})
        quote = await provider.fetch_call_quote({...})
        result = await provider.execute_quote(quote)
        status = await provider.get_execution_status(quote["id"])

        await provider.close()
    """

    name = "onebalance"

    def __init__(
        self,
        config: Optional[OneBalanceConfig] = None,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self._config = config or OneBalanceConfig(
            api_key=settings.onebalance_api_key,
            base_url=settings.onebalance_base_url,
            timeout_s=float(settings.request_timeout_seconds),
        )
        self._transport = transport
        self._client: Optional[httpx.AsyncClient] = None

    def _get_client(self) -> httpx.AsyncClient:
        """Get or create HTTP client."""
        if self._client is None or self._client.is_closed:
            headers = {
                "Content-Type": "application/json",
                "User-Agent": "vaultflow/0.1",
            }
            if self._config.api_key:
                headers["x-api-key"] = self._config.api_key

            self._client = httpx.AsyncClient(
                base_url=self._config.base_url,
                headers=headers,
                timeout=self._config.timeout_s,
                transport=self._transport,
            )
        return self._client

    async def ready(self) -> bool:
        return bool(self._config.base_url)

    async def health_check(self) -> Dict[str, Any]:
        if not await self.ready():
            return {"status": "disabled", "reason": "OneBalance base URL not configured"}

        try:
            response = await self._get_client().get("/api/chains/supported-list")
            if response.status_code == 200:
                return {"status": "healthy"}
            return {"status": "degraded", "code": response.status_code}
        except Exception as e:
            return {"status": "error", "reason": str(e)}

    async def _request(
        self,
        method: str,
        path: str,
        *,
        json: Optional[Dict[str, Any]] = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            response = await self._get_client().request(method, path, json=json, params=params)
        except httpx.RequestError as e:
            logger.error(f"OneBalance {method} {path} failed: {e}")
            raise OneBalanceApiError(f"Request failed: {e}") from e

        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(f"OneBalance {method} {path} -> {response.status_code}: {message}")
            raise OneBalanceApiError(message, status_code=response.status_code)

        try:
            return response.json()
        except ValueError as e:
            raise OneBalanceApiError(
                f"Invalid JSON from {path}", status_code=response.status_code
            ) from e

    async def prepare_call_quote(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Preparatory quote for an arbitrary contract call."""
        return await self._request("POST", "/api/quotes/prepare-call-quote", json=request)

    async def fetch_call_quote(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Final quote from a signed preparatory chain operation."""
        return await self._request("POST", "/api/quotes/call-quote", json=request)

    async def fetch_quote(self, request: Dict[str, Any]) -> Dict[str, Any]:
        """Aggregated-asset transfer quote ({from, to} request shape)."""
        return await self._request("POST", "/api/v1/quote", json=request)

    async def execute_quote(self, quote: Dict[str, Any]) -> Dict[str, Any]:
        """Submit a fully signed quote for execution."""
        return await self._request("POST", "/api/quotes/execute-quote", json=quote)

    async def get_execution_status(self, quote_id: str) -> Dict[str, Any]:
        return await self._request(
            "GET", "/api/status/get-execution-status", params={"quoteId": quote_id}
        )

    async def get_aggregated_balance(self, address: str) -> Dict[str, Any]:
        return await self._request(
            "GET", "/api/v2/balances/aggregated-balance", params={"address": address}
        )

    async def predict_address(self, session_address: str, admin_address: str) -> Optional[str]:
        data = await self._request(
            "POST",
            "/api/account/predict-address",
            json={"sessionAddress": session_address, "adminAddress": admin_address},
        )
        return (data or {}).get("predictedAddress")

    async def close(self) -> None:
        """Close the HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        for key in ("message", "error", "detail"):
            value = body.get(key)
            if isinstance(value, str) and value:
                return value
    return response.text or f"HTTP {response.status_code}"
