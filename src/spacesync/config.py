"""
SpaceSync Configuration.

Centralized configuration management using Pydantic Settings.
Loads configuration from environment variables.
"""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict


def get_xdg_data_dir() -> str:
    """
    Get XDG-compliant data directory for the local key-value store.

    Follows XDG Base Directory Specification:
    - Uses $XDG_DATA_HOME/spacesync if XDG_DATA_HOME is set
    - Falls back to $HOME/.local/share/spacesync if not set
    - Returns relative path .spacesync_data if HOME not available (dev/testing)

    Returns:
        str: Path to data directory
    """
    xdg_data_home = os.getenv("XDG_DATA_HOME")
    if xdg_data_home:
        return str(Path(xdg_data_home) / "spacesync")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "share" / "spacesync")

    # Fallback for development/testing environments without HOME
    return ".spacesync_data"


def get_xdg_state_dir() -> str:
    """
    Get XDG-compliant state directory for SpaceSync logs.

    Follows XDG Base Directory Specification:
    - Uses $XDG_STATE_HOME/spacesync if XDG_STATE_HOME is set
    - Falls back to $HOME/.local/state/spacesync if not set
    - Returns relative path ./logs if HOME not available (dev/testing)

    Returns:
        str: Path to state/logs directory
    """
    xdg_state_home = os.getenv("XDG_STATE_HOME")
    if xdg_state_home:
        return str(Path(xdg_state_home) / "spacesync" / "logs")

    home = os.getenv("HOME")
    if home:
        return str(Path(home) / ".local" / "state" / "spacesync" / "logs")

    return "./logs"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Local key-value store
    store_dir: str = ""  # Defaults to the XDG data dir if empty
    key_prefix: str = "space_"
    storage_quota_bytes: int = 5 * 1024 * 1024  # Same budget as browser localStorage

    # Remote conversation service
    api_base_url: str = "http://localhost:8788"
    api_timeout: float = 15.0
    api_max_retries: int = 3
    credentials_dir: str = ""  # Defaults to ~/.spacesync if empty
    credentials_profile: str = "default"

    # Persistence scheduling
    debounce_seconds: float = 0.5  # Coalescing window for roster/settings writes
    migration_pause_seconds: float = 0.1  # Pause between migrated sessions

    # Cross-context sync
    sync_use_polling: bool = False  # Force watchdog's PollingObserver
    sync_poll_interval: float = 1.0

    # Logging
    log_level: str = "INFO"
    log_dir: str = ""  # XDG-compliant log directory (defaults to XDG state dir if empty)
    log_format: str = "standard"  # standard or json
    log_console_enabled: bool = True
    log_file_enabled: bool = False
    log_max_bytes: int = 10_485_760  # 10MB per log file
    log_backup_count: int = 5
    log_to_stdout: bool = True  # Log INFO/DEBUG to stdout
    log_to_stderr: bool = True  # Log WARNING/ERROR/CRITICAL to stderr

    @property
    def store_directory(self) -> Path:
        """Get the key-value store directory, using XDG default if not specified."""
        if self.store_dir:
            return Path(self.store_dir).expanduser()
        return Path(get_xdg_data_dir()) / "store"

    @property
    def credentials_directory(self) -> Path:
        """Get the credentials directory."""
        if self.credentials_dir:
            return Path(self.credentials_dir).expanduser()
        return Path.home() / ".spacesync"

    @property
    def log_directory(self) -> Path:
        """Get the log directory path, using XDG default if not specified."""
        if self.log_dir:
            return Path(self.log_dir).expanduser()
        return Path(get_xdg_state_dir())


# Global settings instance
settings = Settings()
