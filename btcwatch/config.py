"""
Configuration management for btcwatch.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Environment-based settings.

    All settings can be overridden via BTCWATCH_* environment variables.
    """

    model_config = SettingsConfigDict(
        env_prefix="BTCWATCH_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Tip sources, polled concurrently
    tip_source_urls: list[str] = Field(
        default=[
            "https://blockstream.info/api/blocks/tip",
            "https://mempool.space/api/blocks/tip",
        ],
        description="Esplora 'latest blocks' endpoints",
    )

    # Esplora APIs
    esplora_api_url: str = Field(
        default="https://mempool.space/api",
        description="Address transaction history (mainnet)",
    )
    testnet_esplora_api_url: str = Field(
        default="https://mempool.space/testnet/api",
        description="Address transaction history (testnet)",
    )
    balance_api_url: str = Field(
        default="https://blockstream.info/api",
        description="Address balance lookups",
    )
    http_timeout_seconds: float = Field(default=10.0, description="Per-request timeout")
    max_pages: int = Field(default=1, description="History pages to fetch per address")

    # Polling
    min_refresh_interval_seconds: int = Field(
        default=3, description="Minimum seconds between fetches of one address"
    )
    poll_interval_seconds: float = Field(default=5.0, description="Seconds between poll cycles")
    tip_refresh_seconds: float = Field(default=60.0, description="Seconds between tip refreshes")

    log_level: str = Field(default="INFO", description="Log level")


@dataclass
class WatchConfig:
    """Full watcher configuration."""

    settings: Settings
    mainnet_addresses: list[str] = field(default_factory=list)
    testnet_addresses: list[str] = field(default_factory=list)

    @classmethod
    def from_env(cls, env_path: Optional[Path] = None) -> "WatchConfig":
        """Load configuration from environment."""
        settings = Settings(_env_file=env_path) if env_path else Settings()
        return cls(settings=settings)

    def add_address(self, address: str, network: str = "mainnet") -> None:
        """Add an address to the static watch list."""
        if network == "testnet":
            self.testnet_addresses.append(address.strip())
        else:
            self.mainnet_addresses.append(address.strip())

    def worklists(self) -> dict[str, dict[str, list[str]]]:
        """Static watch list in worklist form."""
        return {
            "mainnet": {"cli": list(self.mainnet_addresses)},
            "testnet": {"cli": list(self.testnet_addresses)},
        }
