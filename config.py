"""
Configuration module for the Funding Arbitrage Scanner.
Loads environment variables and provides application settings.
"""
from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Server
    host: str = "0.0.0.0"
    port: int = 3001
    environment: str = "development"

    # Comma separated list of origins allowed by CORS in production
    allowed_origins: str = "http://localhost:3000,http://localhost:5173"

    # Exchange endpoints
    lighter_api_base: str = "https://mainnet.zklighter.elliot.ai"
    lighter_fallback_urls: str = "https://mainnet.zklighter.elliot.ai,https://api.lighter.xyz"
    hyperliquid_rest_url: str = "https://api.hyperliquid.xyz/info"

    # Upstream timeouts and pacing (seconds)
    request_timeout: float = 10.0
    history_request_timeout: float = 15.0
    # Hyperliquid rate limits aggressively, keep requests spaced out
    hyperliquid_min_request_interval: float = 2.0
    history_request_delay: float = 0.1
    symbol_request_delay: float = 0.2

    # Cache lifetimes (seconds)
    realtime_ttl: int = 60
    historical_ttl: int = 60 * 60
    symbol_history_ttl: int = 24 * 60 * 60

    # How long a reader waits on a synchronous realtime refresh
    sync_refresh_timeout: float = 30.0

    # Push stream
    broadcast_interval: int = 10
    # A subscriber that cannot take a frame within this many seconds is dropped
    broadcast_send_timeout: float = 5.0

    # Logging
    log_level: str = "INFO"
    log_dir: str = "logs"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore"
    )

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def origin_list(self) -> List[str]:
        """Allowed CORS origins as a list."""
        return _split_csv(self.allowed_origins)

    @property
    def lighter_base_urls(self) -> List[str]:
        """Lighter base URLs to try, configured base first."""
        urls = [self.lighter_api_base.rstrip("/")]
        for url in _split_csv(self.lighter_fallback_urls):
            url = url.rstrip("/")
            if url not in urls:
                urls.append(url)
        return urls


def _split_csv(value: str) -> List[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


def get_settings() -> Settings:
    """Get application settings singleton."""
    return Settings()
