"""
Logging Configuration Module for Futures Trading Bot.

This module provides logging configuration including:
- Structured logging with JSON format
- Colored console output
- Optional rotating log file
- Context-aware logging (symbol, decision id) that follows asyncio tasks
"""

import contextvars
import json
import logging
import logging.handlers
import sys
import traceback
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from pathlib import Path
from typing import Any, Iterator


class LogLevel(str, Enum):
    """Log level enumeration."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"

    def to_logging_level(self) -> int:
        """Convert to logging module level."""
        return getattr(logging, self.value)


class LogFormat(str, Enum):
    """Log format enumeration."""

    SIMPLE = "simple"
    COLORED = "colored"
    JSON = "json"


@dataclass
class LoggingConfig:
    """Configuration for logging system."""

    level: LogLevel = LogLevel.INFO
    format_type: LogFormat = LogFormat.COLORED

    file_enabled: bool = False
    file_path: str = "logs/futures_bot.log"
    file_max_bytes: int = 10 * 1024 * 1024  # 10MB
    file_backup_count: int = 5


class Colors:
    """ANSI color codes."""

    RESET = "\033[0m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    CYAN = "\033[96m"
    BOLD = "\033[1m"

    LEVEL_COLORS = {
        "DEBUG": CYAN,
        "INFO": GREEN,
        "WARNING": YELLOW,
        "ERROR": RED,
        "CRITICAL": f"{BOLD}{RED}",
    }


_log_context: contextvars.ContextVar[dict[str, Any]] = contextvars.ContextVar(
    "log_context", default={}
)

_STANDARD_ATTRS = frozenset([
    "name", "msg", "args", "created", "filename", "funcName",
    "levelname", "levelno", "lineno", "module", "msecs",
    "pathname", "process", "processName", "relativeCreated",
    "stack_info", "exc_info", "exc_text", "thread", "threadName",
    "message", "asctime", "taskName", "context",
])


class ContextFilter(logging.Filter):
    """Attach the current logging context to every record."""

    def filter(self, record: logging.LogRecord) -> bool:
        record.context = dict(_log_context.get())
        return True


class ColoredFormatter(logging.Formatter):
    """Formatter that adds colors to console output."""

    def __init__(
        self,
        fmt: str | None = None,
        datefmt: str | None = None,
        colorized: bool = True,
    ) -> None:
        """Initialize colored formatter."""
        super().__init__(fmt, datefmt)
        self.colorized = colorized

    def format(self, record: logging.LogRecord) -> str:
        """Format log record with colors."""
        original_levelname = record.levelname

        if self.colorized:
            color = Colors.LEVEL_COLORS.get(record.levelname, "")
            record.levelname = f"{color}{record.levelname}{Colors.RESET}"

        result = super().format(record)
        record.levelname = original_levelname

        context = getattr(record, "context", None)
        if context:
            context_str = " ".join(f"{k}={v}" for k, v in context.items())
            result = f"{result} | {context_str}"

        return result


class JSONFormatter(logging.Formatter):
    """Formatter that outputs JSON-formatted log records."""

    def format(self, record: logging.LogRecord) -> str:
        """Format log record as JSON."""
        log_data: dict[str, Any] = {
            "timestamp": datetime.fromtimestamp(record.created, tz=timezone.utc).isoformat(),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "function": record.funcName,
            "line": record.lineno,
        }

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
                "traceback": traceback.format_exception(*record.exc_info),
            }

        context = getattr(record, "context", None)
        if context:
            log_data["context"] = context

        extra = {}
        for key, value in record.__dict__.items():
            if key in _STANDARD_ATTRS:
                continue
            try:
                json.dumps(value)
                extra[key] = value
            except (TypeError, ValueError):
                extra[key] = str(value)
        if extra:
            log_data["extra"] = extra

        return json.dumps(log_data, default=str)


def _build_formatter(format_type: LogFormat) -> logging.Formatter:
    if format_type == LogFormat.JSON:
        return JSONFormatter()
    if format_type == LogFormat.COLORED:
        return ColoredFormatter(
            "%(asctime)s | %(levelname)-8s | %(name)s | %(message)s",
            "%H:%M:%S",
            colorized=sys.stdout.isatty(),
        )
    return logging.Formatter("%(levelname)s: %(name)s: %(message)s")


def configure_logging(config: LoggingConfig | None = None) -> logging.Logger:
    """
    Configure the root logger.

    Existing root handlers are replaced, so calling this twice is safe.

    Args:
        config: Logging configuration

    Returns:
        The configured root logger
    """
    config = config or LoggingConfig()

    root_logger = logging.getLogger()
    root_logger.setLevel(config.level.to_logging_level())
    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    context_filter = ContextFilter()

    console = logging.StreamHandler(sys.stdout)
    console.setFormatter(_build_formatter(config.format_type))
    console.addFilter(context_filter)
    root_logger.addHandler(console)

    if config.file_enabled:
        Path(config.file_path).parent.mkdir(parents=True, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            config.file_path,
            maxBytes=config.file_max_bytes,
            backupCount=config.file_backup_count,
            encoding="utf-8",
        )
        file_handler.setFormatter(JSONFormatter())
        file_handler.addFilter(context_filter)
        root_logger.addHandler(file_handler)

    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.WARNING)

    logging.getLogger(__name__).info(
        f"Logging configured (level={config.level.value}, format={config.format_type.value})"
    )
    return root_logger


def set_context(**kwargs: Any) -> None:
    """
    Set context variables for the current task.

    Args:
        **kwargs: Context key-value pairs
    """
    context = dict(_log_context.get())
    context.update(kwargs)
    _log_context.set(context)


def clear_context(key: str | None = None) -> None:
    """
    Clear context variable(s).

    Args:
        key: Optional specific key to clear
    """
    if key is None:
        _log_context.set({})
        return
    context = dict(_log_context.get())
    context.pop(key, None)
    _log_context.set(context)


def get_context() -> dict[str, Any]:
    """Return a copy of the current logging context."""
    return dict(_log_context.get())


@contextmanager
def log_context(**kwargs: Any) -> Iterator[None]:
    """Temporarily extend the logging context inside a ``with`` block."""
    token = _log_context.set({**_log_context.get(), **kwargs})
    try:
        yield
    finally:
        _log_context.reset(token)
