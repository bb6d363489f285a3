"""
Configuration Management

All runtime options live on a single pydantic-settings model so they can be
loaded from environment variables or a .env file and injected in tests.
"""

from pathlib import Path
from typing import Literal, Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application Settings

    Pydantic automatically loads from environment variables.
    Variable names match field names (case-insensitive).
    """

    log_level: str = "INFO"
    log_categories: Optional[str] = None  # Comma-separated categories (poller,activity,relay,storage,system). If None, show all logs.
    port: int = 8000
    host: str = "0.0.0.0"

    # Relay streams
    transcript_stream_url: str = ""
    heartbeat_stream_url: str = ""
    api_key: Optional[str] = None
    transcript_page_size: int = 1  # Most recent N transcript requests per poll
    heartbeat_page_size: int = 1
    request_timeout_seconds: float = 30.0

    # Polling cadence
    poll_interval_ms: int = 5000  # 2000ms or more is recommended
    monitor_autostart: bool = True

    # Rate-limit backoff
    backoff_initial_ms: int = 2000
    backoff_max_ms: int = 30000

    # Recording activity window
    activity_timeout_ms: int = 5000

    # Status feed shown to the dashboard
    status_log_size: int = 10

    # Dedup state persistence
    state_backend: Literal["memory", "file", "redis"] = "file"
    state_file: Path = Path("data/monitor_state.json")
    dedup_max_entries: Optional[int] = None  # None keeps every id
    redis_host: str = "localhost"
    redis_port: int = 6379
    redis_db: int = 0

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="ignore",  # Allow extra env vars without validation errors
    )

    @property
    def redis_url(self) -> str:
        return f"redis://{self.redis_host}:{self.redis_port}/{self.redis_db}"


# Loaded once when the module is imported
settings = Settings()
