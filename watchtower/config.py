"""Configuration settings for Watchtower."""

from pydantic_settings import BaseSettings
from typing import Optional


class Settings(BaseSettings):
    """Application settings loaded from environment."""

    # App
    app_name: str = "Watchtower"
    debug: bool = False

    # Upstream media server
    media_server_url: str = "http://plex:32400"
    media_server_token: Optional[str] = None  # Never sent to the browser
    client_id: str = "watchtower-001"
    request_timeout: float = 10.0  # Seconds, per upstream call

    # Auth
    auth_redirect_url: str = "/auth/redirect"

    # Player
    public_url: str = "http://localhost:8000"  # Where the player reaches this server
    resume_tolerance: float = 5.0
    progress_interval: float = 10.0
    watched_threshold: float = 0.9
    seek_debounce: float = 0.5
    direct_play_load_timeout: float = 15.0
    transcode_load_timeout: float = 30.0  # Transcoder has a slow first byte
    min_scrub_buffer: float = 10.0
    max_transport_recoveries: int = 3

    # Proxies
    image_cache_max_age: int = 60 * 60 * 24 * 30  # 30 days
    segment_cache_max_age: int = 3600

    class Config:
        env_file = ".env"
        env_prefix = "WATCHTOWER_"


settings = Settings()
