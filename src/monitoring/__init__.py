"""
Monitoring Package for Futures Trading Bot.

This package provides:
- Structured logging configuration
- Open position monitoring with stop loss and take profit closes
"""

from .logging_config import (
    LogLevel,
    LogFormat,
    LoggingConfig,
    ContextFilter,
    ColoredFormatter,
    JSONFormatter,
    configure_logging,
    set_context,
    clear_context,
    get_context,
    log_context,
)
from .trade_monitor import (
    TradeMonitor,
    TradeMonitorConfig,
    MonitorStats,
    close_trigger,
)


__all__ = [
    "LogLevel",
    "LogFormat",
    "LoggingConfig",
    "ContextFilter",
    "ColoredFormatter",
    "JSONFormatter",
    "configure_logging",
    "set_context",
    "clear_context",
    "get_context",
    "log_context",
    "TradeMonitor",
    "TradeMonitorConfig",
    "MonitorStats",
    "close_trigger",
]
