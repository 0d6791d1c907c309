"""
Custom Exceptions Module for Futures Trading Bot.

This module defines the exceptions raised at collaborator boundaries
(exchange, storage, AI oracle, configuration). The execution pipeline and
position monitor translate them into explicit Result values.
"""

from typing import Any, Dict, Optional
from enum import IntEnum
import logging


logger = logging.getLogger(__name__)


class ErrorCode(IntEnum):
    """Error code enumeration for all exceptions."""

    # General errors (1xxx)
    UNKNOWN = 1000
    CONFIGURATION = 1001

    # Trading errors (3xxx)
    ORDER_SUBMISSION = 3001

    # Exchange errors (4xxx)
    EXCHANGE_CONNECTION = 4000
    EXCHANGE_TIMEOUT = 4004

    # AI errors (5xxx)
    AI_REQUEST = 5000
    AI_RESPONSE = 5001

    # Database errors (6xxx)
    DB_QUERY = 6001
    DB_INTEGRITY = 6003
    DB_STATE_TRANSITION = 6005

    # Strategy errors (8xxx)
    STRATEGY_EXECUTION = 8001
    STRATEGY_NOT_FOUND = 8003


class TradingBotException(Exception):
    """
    Base exception class for all trading bot exceptions.

    All custom exceptions should inherit from this class.
    """

    error_code: ErrorCode = ErrorCode.UNKNOWN
    default_message: str = "An unknown error occurred"

    def __init__(
        self,
        message: Optional[str] = None,
        error_code: Optional[ErrorCode] = None,
        details: Optional[Dict[str, Any]] = None,
        cause: Optional[Exception] = None
    ) -> None:
        """
        Initialize the exception.

        Args:
            message: Error message
            error_code: Error code
            details: Additional error details
            cause: Original exception that caused this one
        """
        self.message = message or self.default_message
        self.error_code = error_code or self.__class__.error_code
        self.details = details or {}
        self.cause = cause

        full_message = f"[{self.error_code.name}:{self.error_code.value}] {self.message}"
        if self.details:
            full_message += f" | Details: {self.details}"

        super().__init__(full_message)

        logger.debug(
            f"Exception raised: {self.__class__.__name__}",
            extra={
                "error_code": self.error_code.value,
                "details": self.details,
            }
        )

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary.

        Returns:
            Dictionary representation of the exception
        """
        return {
            "error_type": self.__class__.__name__,
            "error_code": self.error_code.value,
            "error_name": self.error_code.name,
            "message": self.message,
            "details": self.details,
            "cause": str(self.cause) if self.cause else None,
        }


# =============================================================================
# CONFIGURATION EXCEPTIONS
# =============================================================================

class ConfigurationError(TradingBotException):
    """Raised when there's a configuration error."""
    error_code = ErrorCode.CONFIGURATION
    default_message = "Configuration error"


# =============================================================================
# EXCHANGE / TRADING EXCEPTIONS
# =============================================================================

class ExchangeError(TradingBotException):
    """Base class for exchange collaborator failures."""
    error_code = ErrorCode.EXCHANGE_CONNECTION
    default_message = "Exchange error"


class ExchangeTimeoutError(ExchangeError):
    """Raised when an exchange call exceeds its timeout."""
    error_code = ErrorCode.EXCHANGE_TIMEOUT
    default_message = "Exchange request timed out"


class OrderError(ExchangeError):
    """Raised when an order is rejected or cannot be submitted."""
    error_code = ErrorCode.ORDER_SUBMISSION
    default_message = "Order error"


# =============================================================================
# AI EXCEPTIONS
# =============================================================================

class AIError(TradingBotException):
    """Base class for AI oracle errors."""
    error_code = ErrorCode.AI_REQUEST
    default_message = "AI service error"


class AIResponseError(AIError):
    """Raised when the AI response cannot be parsed."""
    error_code = ErrorCode.AI_RESPONSE
    default_message = "Invalid AI response"


# =============================================================================
# DATABASE EXCEPTIONS
# =============================================================================

class DatabaseError(TradingBotException):
    """Base class for database errors."""
    error_code = ErrorCode.DB_QUERY
    default_message = "Database error"


class DatabaseIntegrityError(DatabaseError):
    """Raised when a uniqueness or integrity constraint is violated."""
    error_code = ErrorCode.DB_INTEGRITY
    default_message = "Database integrity violation"


class InvalidStateTransitionError(DatabaseError):
    """Raised when a trade status change is not allowed."""
    error_code = ErrorCode.DB_STATE_TRANSITION
    default_message = "Invalid trade status transition"


# =============================================================================
# STRATEGY EXCEPTIONS
# =============================================================================

class StrategyError(TradingBotException):
    """Raised when strategy evaluation fails unexpectedly."""
    error_code = ErrorCode.STRATEGY_EXECUTION
    default_message = "Strategy error"


class StrategyNotFoundError(StrategyError):
    """Raised when a strategy name is not registered."""
    error_code = ErrorCode.STRATEGY_NOT_FOUND
    default_message = "Strategy not found"
