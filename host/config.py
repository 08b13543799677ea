import logging
import os
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

logger = logging.getLogger(__name__)

# Environment variable prefix
ENV_PREFIX = "FEEDSYNC_"


class FeedSettings(BaseSettings):
    """Settings for the feed engine and its remote collaborator, loaded from the environment."""

    # Logging Settings
    log_level: str = Field(default="INFO", description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)")
    log_format: str = Field(default='%(asctime)s - %(name)s - %(levelname)s - %(message)s', description="Logging format string")
    log_to_file: bool = Field(default=False, description="Enable logging to file with rotation")
    log_file_path: str = Field(default="logs/feedsync.log", description="Path to the log file (directory will be created)")
    log_max_bytes: int = Field(default=500_000, description="Maximum size of a log file before rotation")
    log_backup_count: int = Field(default=9, description="Number of rotated log files to keep")

    # Feed Settings
    page_size: int = Field(default=25, gt=0, description="Number of items requested per backfill page")
    pending_window_seconds: float = Field(default=30.0, gt=0, description="How long an optimistic entry may wait for its confirmed item")

    # Remote Feed Service (Socket.IO)
    remote_url: str = Field(default="http://localhost:5001", description="URL of the remote feed service")
    remote_auth_token: Optional[str] = Field(default=None, description="Authentication token sent on connect")
    socket_reconnection_attempts: int = Field(default=3, description="Reconnection attempts before giving up")
    socket_reconnection_delay: int = Field(default=5, description="Delay between reconnection attempts (seconds)")
    socket_timeout: int = Field(default=30, description="Timeout for acknowledged requests (seconds)")

    # Observability
    tracing_enabled: bool = Field(default=False, description="Export OpenTelemetry spans over OTLP")

    model_config = SettingsConfigDict(
        env_file='.env',
        env_file_encoding='utf-8',
        env_prefix=ENV_PREFIX,
        extra='ignore',
        case_sensitive=False
    )


_settings: Optional[FeedSettings] = None


def load_settings() -> FeedSettings:
    """Loads settings from the .env file and environment variables (prefix FEEDSYNC_)."""
    logger.info(f"Loading feed configuration from .env file and environment variables (prefix: '{ENV_PREFIX}')...")

    try:
        from dotenv import load_dotenv
        env_loaded = load_dotenv('.env', override=False)
        logger.debug(f"Manual .env loading result: {env_loaded}")
    except Exception as e:
        logger.warning(f"Failed to manually load .env file: {e}")

    feed_vars = [k for k in os.environ if k.upper().startswith(ENV_PREFIX)]
    logger.debug(f"Found {len(feed_vars)} {ENV_PREFIX} environment variables: {feed_vars}")

    try:
        settings = FeedSettings()
    except Exception as e:
        logger.exception(f"Critical error loading feed configuration: {e}")
        raise ValueError(f"Failed to load configuration: {e}") from e

    logger.info(f"Feed configuration loaded (page_size={settings.page_size}, remote_url={settings.remote_url}).")
    return settings


def get_settings() -> FeedSettings:
    """Returns the process settings, loading them on first use."""
    global _settings
    if _settings is None:
        _settings = load_settings()
    return _settings


def reset_settings() -> None:
    """Forgets cached settings so the next get_settings() reloads them."""
    global _settings
    _settings = None
