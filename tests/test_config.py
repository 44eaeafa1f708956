"""
Tests for configuration and logging setup.
"""

import json
import logging
from pathlib import Path

import pytest

from spacesync.config import Settings, get_xdg_data_dir, get_xdg_state_dir
from spacesync.logging_config import setup_logging


@pytest.fixture
def restore_root_logger():
    """Put the root logger back the way pytest left it."""
    root = logging.getLogger()
    handlers = list(root.handlers)
    level = root.level
    yield root
    for handler in root.handlers:
        handler.close()
    root.handlers[:] = handlers
    root.setLevel(level)


class TestSettings:
    """Tests for Settings configuration."""

    def test_defaults(self):
        """Test default settings."""
        settings = Settings()

        assert settings.key_prefix == "space_"
        assert settings.storage_quota_bytes == 5 * 1024 * 1024
        assert settings.api_max_retries == 3
        assert settings.debounce_seconds == 0.5
        assert settings.log_level == "INFO"

    def test_settings_from_env_vars(self, monkeypatch):
        """Test that settings can be overridden by environment variables."""
        monkeypatch.setenv("API_BASE_URL", "https://space.example.com")
        monkeypatch.setenv("DEBOUNCE_SECONDS", "0.25")
        monkeypatch.setenv("sync_use_polling", "true")

        settings = Settings()

        assert settings.api_base_url == "https://space.example.com"
        assert settings.debounce_seconds == 0.25
        assert settings.sync_use_polling is True

    def test_explicit_directories(self, tmp_path: Path):
        """Test that configured directories win over the defaults."""
        settings = Settings(store_dir=str(tmp_path / "kv"), log_dir=str(tmp_path / "logs"))

        assert settings.store_directory == tmp_path / "kv"
        assert settings.log_directory == tmp_path / "logs"

    def test_xdg_directories(self, monkeypatch, tmp_path: Path):
        """Test XDG base directory handling."""
        monkeypatch.setenv("XDG_DATA_HOME", str(tmp_path / "data"))
        monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))

        assert get_xdg_data_dir() == str(tmp_path / "data" / "spacesync")
        assert get_xdg_state_dir() == str(tmp_path / "state" / "spacesync" / "logs")
        assert Settings().store_directory == tmp_path / "data" / "spacesync" / "store"

    def test_home_fallback(self, monkeypatch, tmp_path: Path):
        """Test the fallback when XDG variables are unset."""
        monkeypatch.delenv("XDG_DATA_HOME", raising=False)
        monkeypatch.setenv("HOME", str(tmp_path))

        assert get_xdg_data_dir() == str(tmp_path / ".local" / "share" / "spacesync")


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_json_file_logging(self, tmp_path: Path, restore_root_logger):
        """Test that records reach the rotating log file as JSON."""
        config = Settings(
            log_dir=str(tmp_path),
            log_format="json",
            log_console_enabled=False,
            log_file_enabled=True,
        )

        setup_logging(context="watch", config=config)
        logging.getLogger("spacesync.test").info("hello")
        for handler in restore_root_logger.handlers:
            handler.flush()

        lines = (tmp_path / "watch.log").read_text().splitlines()
        record = json.loads(lines[-1])
        assert record["message"] == "hello"
        assert record["context"] == "watch"
        assert record["level"] == "INFO"

    def test_console_handlers_split_by_level(self, restore_root_logger):
        """Test stdout and stderr handler levels."""
        config = Settings(log_level="DEBUG", log_file_enabled=False)

        setup_logging(config=config)

        levels = sorted(h.level for h in restore_root_logger.handlers)
        assert levels == [logging.DEBUG, logging.WARNING]
        assert logging.getLogger("httpx").level == logging.WARNING
