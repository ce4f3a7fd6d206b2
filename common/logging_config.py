#!/usr/bin/env python3
"""
Logging configuration for the leveraged-token RSI bot.

Provides console and rotating file logs, optional JSON-formatted file logs,
sensitive data filtering, and the bounded JSON event log that the status
server exposes at ``/logs``.

Features:
- Human-readable colorized console output
- Automatic log rotation by size (prevents disk space issues)
- Sensitive data filtering (API keys, secrets, Telegram bot tokens)
- Bounded JSON event log (last N records, file-locked)

Usage:
    from common.logging_config import setup_logging

    setup_logging("INFO", log_dir=Path("logs"), event_log_file=Path("logs/events.json"))
    logger = logging.getLogger(__name__)

    logger.info("Alert sent", extra={"symbol": "BTC3L/USDT", "rsi": 74.2})
"""

import json
import logging
import logging.handlers
import re
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from file_lock import append_json_log


# Attributes every LogRecord carries; anything else came from ``extra``
_RESERVED_ATTRS = frozenset([
    'name', 'msg', 'args', 'created', 'filename', 'funcName',
    'levelname', 'levelno', 'lineno', 'module', 'msecs',
    'pathname', 'process', 'processName', 'relativeCreated',
    'thread', 'threadName', 'exc_info', 'exc_text', 'stack_info',
    'getMessage', 'message', 'taskName', 'asctime',
])


def record_extras(record: logging.LogRecord) -> Dict[str, Any]:
    """Return the custom fields attached to a record through ``extra``."""
    return {k: v for k, v in record.__dict__.items() if k not in _RESERVED_ATTRS}


class SensitiveDataFilter(logging.Filter):
    """
    Filter that redacts sensitive information from log messages.

    Patterns filtered:
    - API keys and secrets (KUCOIN_API_KEY, etc.)
    - Tokens (TELEGRAM_BOT_TOKEN, etc.)
    - Telegram bot tokens embedded in API URLs
    - Authorization headers
    """

    SENSITIVE_PATTERNS = [
        (r'(api[_-]?key["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)', r'\1***REDACTED***'),
        (r'(api[_-]?secret["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)', r'\1***REDACTED***'),
        (r'(token["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)', r'\1***REDACTED***'),
        (r'(password["\']?\s*[:=]\s*["\']?)([^"\'}\s]+)', r'\1***REDACTED***'),
        (r'(Authorization:\s*Bearer\s+)(\S+)', r'\1***REDACTED***'),
        (r'(api\.telegram\.org/bot)([^/\s]+)', r'\1***REDACTED***'),
    ]

    def filter(self, record: logging.LogRecord) -> bool:
        """Redact sensitive data from the rendered log message."""
        message = record.getMessage()
        redacted = message
        for pattern, replacement in self.SENSITIVE_PATTERNS:
            redacted = re.sub(pattern, replacement, redacted, flags=re.IGNORECASE)
        if redacted != message:
            record.msg = redacted
            record.args = None
        return True


class StructuredFormatter(logging.Formatter):
    """
    JSON formatter for structured logging.

    Outputs logs as single-line JSON objects. Standard fields are timestamp,
    level, logger, message, module, function and line; fields passed via
    ``extra`` are added as-is.
    """

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        log_data.update(record_extras(record))

        return json.dumps(log_data, default=str)


class StandardFormatter(logging.Formatter):
    """
    Human-readable formatter for console output.

    Provides colorized, readable logs including the symbol context when a
    record carries one.
    """

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
        'RESET': '\033[0m'       # Reset
    }

    def __init__(self, detailed: bool = False) -> None:
        super().__init__()
        self.detailed = detailed

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors and context."""
        color = self.COLORS.get(record.levelname, self.COLORS['RESET'])
        reset = self.COLORS['RESET']

        context = f" [symbol={record.symbol}]" if hasattr(record, 'symbol') else ""
        location = f" [{record.funcName}:{record.lineno}]" if self.detailed else ""

        # Format: timestamp | LEVEL | logger | message [context]
        timestamp = self.formatTime(record, datefmt='%Y-%m-%d %H:%M:%S')
        formatted = (
            f"{timestamp} | "
            f"{color}{record.levelname:8s}{reset} | "
            f"{record.name:20s}{location} | "
            f"{record.getMessage()}"
            f"{context}"
        )

        if record.exc_info:
            formatted += "\n" + self.formatException(record.exc_info)

        return formatted


class JsonEventLogHandler(logging.Handler):
    """
    Append log records to a bounded JSON array file.

    Each entry holds the timestamp, the level (type), the message and any
    ``extra`` fields. Only the last ``max_entries`` entries are kept. The
    file is diagnostic only and is served by the status endpoint.
    """

    def __init__(self, file_path: Path, max_entries: int = 100, level: int = logging.INFO) -> None:
        super().__init__(level)
        self.file_path = Path(file_path)
        self.max_entries = max_entries

    def emit(self, record: logging.LogRecord) -> None:
        try:
            entry: Dict[str, Any] = {
                "timestamp": datetime.fromtimestamp(record.created, timezone.utc).isoformat(),
                "type": record.levelname,
                "logger": record.name,
                "message": record.getMessage(),
            }
            entry.update(record_extras(record))
            append_json_log(self.file_path, entry, self.max_entries)
        except Exception:
            self.handleError(record)


def setup_logging(
    log_level: str = "INFO",
    log_dir: Optional[Path] = None,
    log_name: str = "leverage_rsi_bot",
    enable_detailed: bool = False,
    json_logs: bool = False,
    console_output: bool = True,
    event_log_file: Optional[Path] = None,
    event_log_max_entries: int = 100,
    max_bytes: int = 10 * 1024 * 1024,  # 10 MB
    backup_count: int = 5,
) -> logging.Logger:
    """
    Configure the root logger for the bot process.

    Args:
        log_level (str): Minimum console level. One of DEBUG, INFO, WARNING,
                         ERROR, CRITICAL. Defaults to "INFO".
        log_dir (Optional[Path]): Directory for log files. Defaults to ./logs.
        log_name (str): Base name of the log files.
        enable_detailed (bool): Include function and line in console output.
        json_logs (bool): Use JSON lines for the main log file.
        console_output (bool): Log to the console. Defaults to True.
        event_log_file (Optional[Path]): Bounded JSON event log. None disables it.
        event_log_max_entries (int): Entries kept in the event log.
        max_bytes (int): Maximum log file size before rotation.
        backup_count (int): Number of rotated log files to keep.

    Returns:
        logging.Logger: The bot's named logger

    Notes:
        - Log files are rotated when they reach max_bytes
        - Sensitive data (API keys, tokens) is redacted on every handler
        - Calling again replaces previously installed handlers
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for handler in list(root_logger.handlers):
        root_logger.removeHandler(handler)
        handler.close()

    redactor = SensitiveDataFilter()

    log_dir = Path(log_dir) if log_dir is not None else Path("logs")
    log_dir.mkdir(parents=True, exist_ok=True, mode=0o700)

    # File handler with rotation, captures everything
    file_handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{log_name}.log",
        maxBytes=max_bytes,
        backupCount=backup_count,
        encoding='utf-8'
    )
    file_handler.setLevel(logging.DEBUG)
    if json_logs:
        file_handler.setFormatter(StructuredFormatter())
    else:
        file_handler.setFormatter(logging.Formatter(
            '%(asctime)s | %(levelname)-8s | %(name)s | %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
    file_handler.addFilter(redactor)
    root_logger.addHandler(file_handler)

    # Error file handler (separate file for errors)
    error_handler = logging.handlers.RotatingFileHandler(
        log_dir / f"{log_name}_errors.log",
        maxBytes=5 * 1024 * 1024,
        backupCount=3,
        encoding='utf-8'
    )
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(logging.Formatter(
        '%(asctime)s | %(levelname)-8s | [%(name)s:%(funcName)s:%(lineno)d] | %(message)s'
    ))
    error_handler.addFilter(redactor)
    root_logger.addHandler(error_handler)

    if console_output:
        console_handler = logging.StreamHandler()
        console_handler.setLevel(level)
        console_handler.setFormatter(StandardFormatter(detailed=enable_detailed))
        console_handler.addFilter(redactor)
        root_logger.addHandler(console_handler)

    if event_log_file is not None:
        event_handler = JsonEventLogHandler(event_log_file, max_entries=event_log_max_entries)
        event_handler.addFilter(redactor)
        root_logger.addHandler(event_handler)

    # Reduce noise from libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("ccxt").setLevel(logging.WARNING)

    return logging.getLogger(log_name)
