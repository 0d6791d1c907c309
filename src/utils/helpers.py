"""
Helper Functions Module for Futures Trading Bot.

This module provides general utility functions used throughout the trading bot.
"""

import json
import uuid
from pathlib import Path
from typing import Any, Union
import logging


logger = logging.getLogger(__name__)

QUOTE_ASSETS = ("USDT", "BUSD", "USDC", "USD")


# =============================================================================
# IDENTIFIERS
# =============================================================================

def generate_uuid() -> str:
    """
    Generate a UUID4 string.

    Returns:
        UUID string
    """
    return str(uuid.uuid4())


# =============================================================================
# NUMERIC UTILITIES
# =============================================================================

def round_quantity(quantity: float, decimals: int = 3) -> float:
    """
    Round a quantity to specified decimal places.

    Args:
        quantity: Quantity to round
        decimals: Number of decimal places

    Returns:
        Rounded quantity
    """
    return round(quantity, decimals)


def safe_divide(numerator: float, denominator: float, default: float = 0.0) -> float:
    """Divide, returning ``default`` when the denominator is zero."""
    if denominator == 0:
        return default
    return numerator / denominator


# =============================================================================
# SYMBOL UTILITIES
# =============================================================================

def base_asset(symbol: str) -> str:
    """
    Strip the quote asset from a futures symbol.

    Args:
        symbol: Symbol such as ``BTCUSDT``

    Returns:
        Base asset such as ``BTC``
    """
    symbol = symbol.upper()
    for quote in QUOTE_ASSETS:
        if symbol.endswith(quote) and len(symbol) > len(quote):
            return symbol[: -len(quote)]
    return symbol


# =============================================================================
# FILE / JSON UTILITIES
# =============================================================================

def ensure_directory(path: Union[str, Path]) -> Path:
    """
    Ensure a directory exists, creating it if necessary.

    Args:
        path: Directory path

    Returns:
        Path object
    """
    path = Path(path)
    path.mkdir(parents=True, exist_ok=True)
    return path


def safe_json_loads(text: str, default: Any = None) -> Any:
    """
    Safely parse a JSON string.

    Args:
        text: JSON string
        default: Default value on error

    Returns:
        Parsed value or default
    """
    if text is None:
        return default
    try:
        return json.loads(text)
    except (TypeError, ValueError):
        return default


def safe_json_dumps(data: Any, default: str = "{}") -> str:
    """
    Safely serialize to JSON string.

    Args:
        data: Data to serialize
        default: Default value on error

    Returns:
        JSON string or default
    """
    try:
        return json.dumps(data, default=str)
    except (TypeError, ValueError):
        return default
