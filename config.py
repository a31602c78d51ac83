"""
Configuration module for BSC Transfer Tracker.
Loads environment variables and provides application settings.
"""
from pathlib import Path
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Telegram Bot Configuration
    bot_token: str

    # Moralis Streams (push source for token transfers)
    moralis_api_key: Optional[str] = None
    moralis_streams_url: str = "https://api.moralis-streams.com"
    chain_id: str = "0x38"  # BNB Smart Chain

    # Public base URL Moralis calls back into (ngrok / cloudflared in development)
    webhook_base_url: Optional[str] = None
    # Moralis sends a test webhook right after stream creation
    stream_attach_delay: float = 2.0

    # Webhook server
    host: str = "0.0.0.0"
    port: int = 3001

    # Database Configuration
    database_path: str = "./data/bsc_tracker.db"

    # Price lookups
    coingecko_api_url: str = "https://api.coingecko.com/api/v3"
    coingecko_platform: str = "binance-smart-chain"
    coingecko_api_key: Optional[str] = None
    bsc_rpc_url: str = "https://bsc-dataseed.binance.org/"

    # Gate.io trading
    gateio_api_url: str = "https://api.gateio.ws/api/v4"
    gateio_api_key: Optional[str] = None
    gateio_secret_key: Optional[str] = None

    # Alerting / trading policy
    default_threshold_usd: float = Field(default=1000.0, ge=0)
    trade_size_fraction: float = Field(default=0.01, gt=0, le=1)

    # HTTP client timeout in seconds
    http_timeout: float = 10.0

    # Logging
    log_level: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def trading_enabled(self) -> bool:
        return bool(self.gateio_api_key and self.gateio_secret_key)


def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()


# Create data directory if it doesn't exist
def ensure_data_directory(database_path: Optional[str] = None):
    """Ensure the data directory exists for the database."""
    db_path = Path(database_path or get_settings().database_path)
    db_path.parent.mkdir(parents=True, exist_ok=True)
