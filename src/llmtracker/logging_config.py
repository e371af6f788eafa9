"""
Logging configuration for LLM Tracker.

Sets up rotating file logs under the XDG state directory plus optional
console handlers. Each process context (server, host, cli) writes to its own
log file.
"""

import json
import logging
import logging.handlers
import sys
from datetime import datetime, timezone

from llmtracker.config import Settings, settings

STANDARD_FORMAT = "[%(asctime)s] [%(levelname)s] [%(name)s] %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

# Contexts whose stdout carries protocol frames and must never receive logs
STDOUT_RESERVED_CONTEXTS = {"host"}


class JsonFormatter(logging.Formatter):
    """Formats log records as single-line JSON objects."""

    def format(self, record: logging.LogRecord) -> str:
        entry = {
            "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
        }
        if record.exc_info:
            entry["exception"] = self.formatException(record.exc_info)
        return json.dumps(entry)


class _MaxLevelFilter(logging.Filter):
    """Passes records strictly below a level (keeps warnings off stdout)."""

    def __init__(self, max_level: int):
        super().__init__()
        self.max_level = max_level

    def filter(self, record: logging.LogRecord) -> bool:
        return record.levelno < self.max_level


def _build_formatter(config: Settings) -> logging.Formatter:
    if config.log_format == "json":
        return JsonFormatter()
    return logging.Formatter(fmt=STANDARD_FORMAT, datefmt=DATE_FORMAT)


def setup_logging(context: str = "app", config: Settings | None = None) -> None:
    """
    Configure root logging for a process context.

    Args:
        context: Name of the process context, used for the log file name
            (e.g. "server" -> server.log)
        config: Settings to use (defaults to the global settings)

    Raises:
        PermissionError: If the log directory cannot be created
    """
    config = config or settings
    level = getattr(logging, config.log_level.upper(), logging.INFO)
    formatter = _build_formatter(config)

    root = logging.getLogger()
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    if config.log_file_enabled:
        log_dir = config.log_directory
        log_dir.mkdir(parents=True, exist_ok=True)

        file_handler = logging.handlers.RotatingFileHandler(
            log_dir / f"{context}.log",
            maxBytes=config.log_max_bytes,
            backupCount=config.log_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)

    if config.log_console_enabled:
        if config.log_to_stdout and context not in STDOUT_RESERVED_CONTEXTS:
            stdout_handler = logging.StreamHandler(sys.stdout)
            stdout_handler.setLevel(level)
            stdout_handler.addFilter(_MaxLevelFilter(logging.WARNING))
            stdout_handler.setFormatter(formatter)
            root.addHandler(stdout_handler)

        if config.log_to_stderr:
            stderr_handler = logging.StreamHandler(sys.stderr)
            stderr_handler.setLevel(logging.WARNING)
            stderr_handler.setFormatter(formatter)
            root.addHandler(stderr_handler)

    # SQL echo goes through the engine logger; keep it quiet unless asked
    if not config.database_echo:
        logging.getLogger("sqlalchemy.engine").setLevel(logging.WARNING)
