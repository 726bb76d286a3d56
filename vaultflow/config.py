import os

from pathlib import Path
from typing import Any

from pydantic import AliasChoices, Field
from pydantic_settings import BaseSettings, SettingsConfigDict


BASE_DIR = Path(__file__).resolve().parents[1]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=BASE_DIR / ".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    def model_post_init(self, __context: Any) -> None:
        """Ensure we pick up legacy environment variable aliases."""

        super().model_post_init(__context)

        if not self.onebalance_api_key:
            fallback = os.getenv("ONEBALANCE_KEY") or os.getenv("NEXT_PUBLIC_API_KEY")
            if fallback:
                object.__setattr__(self, "onebalance_api_key", fallback)

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")

    # Quoting backend
    onebalance_base_url: str = Field(
        default="https://be.onebalance.io",
        description="Base URL of the quoting/execution backend",
    )
    onebalance_api_key: str = Field(
        default="",
        description="API key sent as x-api-key to the quoting backend",
        validation_alias=AliasChoices("onebalance_api_key", "ONEBALANCE_API_KEY"),
    )
    request_timeout_seconds: int = Field(default=30, description="Request timeout")

    # Flow defaults
    deposit_target_chain: str = Field(
        default="eip155:42161",
        description="CAIP-2 chain where the deposit vault lives",
    )
    withdraw_quote_strategy: str = Field(
        default="transfer",
        description="Quote request shape for withdrawals: 'transfer' (v1 quote) or 'call'",
    )

    # Quote lifecycle timing
    quote_validity_seconds: int = Field(
        default=30,
        ge=1,
        description="Lifetime of a prepared quote",
    )
    quote_refresh_threshold_seconds: int = Field(
        default=20,
        ge=0,
        description="A cached quote is reused only while more than this many seconds remain",
    )
    countdown_tick_seconds: float = Field(default=1.0, gt=0, description="Countdown tick interval")
    status_poll_interval_seconds: float = Field(default=2.0, gt=0, description="Execution status poll interval")
    status_poll_timeout_seconds: float = Field(default=10.0, gt=0, description="Give up polling after this long")
    quote_request_debounce_seconds: float = Field(
        default=1.0,
        ge=0,
        description="Coalescing delay for input-driven quote requests",
    )

    @property
    def has_api_key(self) -> bool:
        return bool(self.onebalance_api_key)

    @property
    def max_poll_attempts(self) -> int:
        return max(1, int(round(self.status_poll_timeout_seconds / self.status_poll_interval_seconds)))


# Global settings instance
settings = Settings()
