"""
Logging setup for SpaceSync.

Console output is split by severity (INFO/DEBUG to stdout, WARNING and above
to stderr). File output is optional and rotates by size.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone
from typing import Any, Optional

from spacesync.config import Settings, settings as default_settings

STANDARD_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """Render log records as one JSON object per line."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(
                record.created, tz=timezone.utc
            ).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "function": record.funcName,
            "line": record.lineno,
            "message": record.getMessage(),
        }
        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        return json.dumps(log_data, ensure_ascii=False)


class _MaxLevelFilter(logging.Filter):
    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno <= self.max_level


class _ContextFilter(logging.Filter):
    def __init__(self, context: str):
        super().__init__()
        self.context = context

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = self.context
        return True


def _make_formatter(config: Settings) -> logging.Formatter:
    if config.log_format == "json":
        return JSONFormatter()
    return logging.Formatter(STANDARD_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(context: str = "cli", config: Optional[Settings] = None) -> None:
    """
    Configure root logging for a SpaceSync entry point.

    Args:
        context: Name of the entry point ("cli", "watch", ...). Used as the
            log file name and attached to every record.
        config: Settings to read logging options from (defaults to global settings)

    Raises:
        PermissionError: If the log directory cannot be created
    """
    config = config or default_settings
    log_level = getattr(logging, config.log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    formatter = _make_formatter(config)
    context_filter = _ContextFilter(context)

    if config.log_console_enabled:
        if config.log_to_stdout:
            stdout_handler = logging.StreamHandler(sys.stdout)
            stdout_handler.setLevel(log_level)
            stdout_handler.addFilter(_MaxLevelFilter(logging.INFO))
            stdout_handler.addFilter(context_filter)
            stdout_handler.setFormatter(formatter)
            root_logger.addHandler(stdout_handler)

        if config.log_to_stderr:
            stderr_handler = logging.StreamHandler(sys.stderr)
            stderr_handler.setLevel(max(log_level, logging.WARNING))
            stderr_handler.addFilter(context_filter)
            stderr_handler.setFormatter(formatter)
            root_logger.addHandler(stderr_handler)

    if config.log_file_enabled:
        log_dir = config.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            filename=log_dir / f"{context}.log",
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setLevel(log_level)
        file_handler.addFilter(context_filter)
        file_handler.setFormatter(formatter)
        root_logger.addHandler(file_handler)

    # Reduce third-party noise
    logging.getLogger("httpx").setLevel(logging.WARNING)
    logging.getLogger("httpcore").setLevel(logging.WARNING)
    logging.getLogger("watchdog").setLevel(logging.WARNING)

    root_logger.debug(
        f"Logging initialized: context={context}, level={config.log_level.upper()}, "
        f"file={config.log_file_enabled}"
    )
