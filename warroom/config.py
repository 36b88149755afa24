"""
Configuration Management

All service settings live here and are loaded from environment variables
(or a local .env file) through pydantic-settings.
"""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """
    Application Settings

    Variable names match field names (case-insensitive), e.g. TWITCH_CLIENT_ID
    populates twitch_client_id.
    """

    log_level: str = "INFO"
    log_categories: Optional[str] = None  # Comma-separated categories (refresh,store,upstream,stream,sync,system). If None, show all logs.
    port: int = 8000
    host: str = "0.0.0.0"

    # Twitch Configuration
    twitch_client_id: Optional[str] = None
    twitch_client_secret: Optional[str] = None
    target_channel: Optional[str] = None  # Login of the channel to track (e.g., "channelname")
    twitch_api_base: str = "https://api.twitch.tv/helix"
    twitch_token_url: str = "https://id.twitch.tv/oauth2/token"
    upstream_mode: str = "twitch"  # twitch or mock
    upstream_timeout_seconds: float = 5.0  # Per request; four requests must fit inside the lock TTL
    token_safety_margin_seconds: int = 60  # Renew the app token this long before it expires

    # Snapshot store
    store_backend: str = "redis"  # redis or memory
    redis_url: str = "redis://localhost:6379/0"
    store_key_prefix: str = "warroom"

    # Refresh coordination
    min_refresh_interval_seconds: int = 60  # At most one refresh per window
    refresh_lock_ttl_seconds: int = 25  # Abandoned lock is honoured this long
    recent_videos_fetch_limit: int = 100
    recent_videos_keep: int = 12
    trend_timezone: str = "UTC"  # Calendar used for the 30-day buckets

    # Change stream
    stream_tick_seconds: float = 1.0

    # Client sync (consumer side)
    sync_base_url: str = "http://localhost:8000"
    sync_refresh_interval_seconds: float = 60.0
    sync_refresh_backoff_base_seconds: float = 10.0
    sync_refresh_backoff_max_seconds: float = 600.0
    sync_stream_backoff_base_seconds: float = 1.0
    sync_stream_backoff_max_seconds: float = 15.0

    class Config:
        env_file = ".env"
        case_sensitive = False
        extra = "ignore"  # Allow extra env vars without validation errors


# Loaded once when the module is imported
settings = Settings()
