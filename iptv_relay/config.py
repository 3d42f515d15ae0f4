"""
Configuration management for the IPTV relay.
Uses pydantic-settings for environment variable loading.
"""
from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # API Configuration
    app_name: str = "IPTV Relay"
    app_version: str = "0.1.0"
    debug: bool = False

    # Server Configuration
    host: str = "0.0.0.0"
    port: int = 8000

    # CORS Configuration
    # The player page origin is arbitrary, so the proxy answers everyone
    cors_origins: list[str] = ["*"]

    # Proxy endpoint
    proxy_path: str = "/api/stream-proxy"
    # Overrides scheme+host written into rewritten playlists (e.g. behind TLS termination)
    public_base_url: Optional[str] = None

    # Upstream fetches
    upstream_user_agent: str = "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36"
    upstream_connect_timeout: float = 15.0
    upstream_read_timeout: float = 30.0
    segment_chunk_size: int = 65536

    # Rate Limiting
    proxy_rate_limit_per_minute: int = 600

    # Playback session
    load_timeout_seconds: float = 15.0
    controls_autohide_seconds: float = 3.0

    # Catalog API
    catalog_timeout: float = 30.0
    epg_short_limit: int = 4

    # Pydantic V2 configuration
    model_config = SettingsConfigDict(env_prefix="IPTV_", env_file=".env")


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()
