"""
Main Settings Module for Futures Trading Bot.

This module provides centralized configuration management for the trading bot,
including environment variables, risk limits, exchange, AI oracle, cache,
database and execution retry settings.
"""

from pathlib import Path
from typing import Annotated, Any, Dict, List, Tuple, Union
from enum import Enum
from functools import lru_cache

from pydantic import BaseModel, Field, field_validator, SecretStr
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class LogLevel(str, Enum):
    """Logging level enumeration."""
    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Console log format enumeration."""
    SIMPLE = "simple"
    COLORED = "colored"
    JSON = "json"


class RiskSettings(BaseModel):
    """Risk management configuration settings (percent values are 0-100)."""

    max_positions: int = Field(default=5, ge=1, le=100, description="Maximum concurrent positions")
    risk_per_trade_pct: float = Field(default=2.0, gt=0.0, le=100.0, description="Balance risked per trade %")
    daily_loss_limit_pct: float = Field(default=5.0, gt=0.0, le=100.0, description="Daily realized loss limit %")
    max_portfolio_risk_pct: float = Field(default=10.0, gt=0.0, le=100.0, description="Aggregate open risk %")
    max_single_pair_exposure_pct: float = Field(default=30.0, gt=0.0, le=1000.0, description="Single pair exposure %")
    max_correlated_exposure_pct: float = Field(default=50.0, gt=0.0, le=1000.0, description="Correlated exposure %")
    max_drawdown_pct: float = Field(default=20.0, gt=0.0, le=100.0, description="Drawdown ceiling %")
    min_confidence: float = Field(default=70.0, ge=0.0, le=100.0, description="Minimum decision confidence")
    min_risk_reward_ratio: float = Field(default=1.5, ge=0.0, description="Minimum reward/risk ratio")
    correlation_threshold: float = Field(default=0.7, ge=0.0, le=1.0, description="Correlated pair threshold")
    initial_balance: float = Field(default=10000.0, gt=0.0, description="Balance used as drawdown baseline")


class ExchangeSettings(BaseModel):
    """Futures exchange configuration settings."""

    api_key: SecretStr = Field(default=SecretStr(""), description="Exchange API key")
    api_secret: SecretStr = Field(default=SecretStr(""), description="Exchange API secret")
    testnet: bool = Field(default=True, description="Use exchange testnet")
    request_timeout: float = Field(default=10.0, ge=0.5, le=120.0, description="Exchange call timeout seconds")
    ohlcv_limit: int = Field(default=100, ge=10, le=1500, description="Bars fetched per timeframe")
    quantity_precision: Dict[str, int] = Field(
        default_factory=lambda: {
            "BTCUSDT": 3,
            "ETHUSDT": 3,
            "BNBUSDT": 2,
            "SOLUSDT": 1,
            "XRPUSDT": 1,
            "ADAUSDT": 0,
            "DOGEUSDT": 0,
        },
        description="Per-symbol quantity decimals"
    )
    default_quantity_precision: int = Field(default=3, ge=0, le=8, description="Fallback quantity decimals")

    @property
    def is_configured(self) -> bool:
        """Check if exchange credentials are configured."""
        return bool(self.api_key.get_secret_value() and self.api_secret.get_secret_value())

    def precision_for(self, symbol: str) -> int:
        """Quantity decimals for a symbol."""
        return self.quantity_precision.get(symbol.upper(), self.default_quantity_precision)


class AISettings(BaseModel):
    """AI oracle (OpenRouter-compatible chat completions) settings."""

    enabled: bool = Field(default=True, description="Ask the AI oracle for decisions")
    api_key: SecretStr = Field(default=SecretStr(""), description="OpenRouter API key")
    base_url: str = Field(default="https://openrouter.ai/api/v1", description="API base URL")
    model: str = Field(default="anthropic/claude-3.5-sonnet", description="Model identifier")
    temperature: float = Field(default=0.7, ge=0.0, le=2.0, description="Sampling temperature")
    max_tokens: int = Field(default=1000, ge=1, le=32000, description="Max tokens per request")
    timeout: float = Field(default=60.0, ge=1.0, le=300.0, description="API timeout seconds")

    @property
    def is_configured(self) -> bool:
        """Check if the AI API key is configured."""
        return bool(self.api_key.get_secret_value())


class CacheSettings(BaseModel):
    """Market data cache settings."""

    market_data_ttl: int = Field(default=180, ge=1, le=3600, description="OHLCV cache TTL seconds")
    max_entries: int = Field(default=1000, ge=10, description="Maximum cached entries")


class DatabaseSettings(BaseModel):
    """Database configuration settings."""

    sqlite_path: Path = Field(default=Path("data/futures_bot.db"), description="SQLite file path")
    wal_mode: bool = Field(default=True, description="Enable SQLite WAL journal")


class ExecutionSettings(BaseModel):
    """Trade execution retry settings."""

    max_attempts: int = Field(default=3, ge=1, le=10, description="Execution attempts per decision")
    retry_delays: Tuple[float, ...] = Field(default=(30.0, 60.0, 120.0), description="Backoff delays seconds")
    execute_trades: bool = Field(default=True, description="Execute approved decisions")
    place_protective_orders: bool = Field(
        default=False, description="Mirror stop loss and take profit as exchange orders after a fill"
    )


class Settings(BaseSettings):
    """
    Main application settings.

    This class aggregates all configuration settings for the trading bot
    and provides a centralized way to access configuration values.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        env_prefix="FUTURES_BOT_",
        env_nested_delimiter="__",
        case_sensitive=False,
        extra="ignore"
    )

    app_name: str = Field(default="Futures Trading Bot", description="Application name")
    version: str = Field(default="1.0.0", description="Application version")
    bot_enabled: bool = Field(default=False, description="Master trading switch")
    log_level: LogLevel = Field(default=LogLevel.INFO, description="Logging level")
    log_format: LogFormat = Field(default=LogFormat.COLORED, description="Console log format")
    log_file: str = Field(default="", description="Optional rotating JSON log file")

    symbols: Annotated[List[str], NoDecode] = Field(default_factory=lambda: ["BTCUSDT", "ETHUSDT"], description="Traded symbols")
    timeframes: Annotated[List[str], NoDecode] = Field(
        default_factory=lambda: ["5m", "15m", "30m", "1h"],
        description="Timeframes analysed per cycle"
    )
    default_leverage: int = Field(default=1, ge=1, le=10, description="Leverage when a decision has none")
    analysis_interval: int = Field(default=300, ge=10, description="Seconds between analysis cycles")
    monitor_interval: int = Field(default=30, ge=1, description="Seconds between position polls")

    risk: RiskSettings = Field(default_factory=RiskSettings, description="Risk settings")
    exchange: ExchangeSettings = Field(default_factory=ExchangeSettings, description="Exchange settings")
    ai: AISettings = Field(default_factory=AISettings, description="AI oracle settings")
    cache: CacheSettings = Field(default_factory=CacheSettings, description="Cache settings")
    database: DatabaseSettings = Field(default_factory=DatabaseSettings, description="Database settings")
    execution: ExecutionSettings = Field(default_factory=ExecutionSettings, description="Execution settings")

    @field_validator('symbols', 'timeframes', mode='before')
    @classmethod
    def parse_list(cls, v: Union[str, List[str]]) -> List[str]:
        """Parse comma separated values from the environment."""
        if isinstance(v, str):
            return [s.strip() for s in v.split(',') if s.strip()]
        return list(v)

    @field_validator('symbols', mode='after')
    @classmethod
    def upper_symbols(cls, v: List[str]) -> List[str]:
        """Symbols are matched case-insensitively."""
        return [s.upper() for s in v]

    def to_dict(self, exclude_secrets: bool = True) -> Dict[str, Any]:
        """
        Convert settings to dictionary.

        Args:
            exclude_secrets: Whether to mask secret values

        Returns:
            Dictionary representation of settings
        """
        data = self.model_dump(mode="json")
        if exclude_secrets:
            sensitive_keys = ['secret', 'api_key', 'password', 'token']

            def mask_secrets(obj: Any) -> Any:
                if isinstance(obj, dict):
                    return {
                        k: '***MASKED***' if any(sk in k.lower() for sk in sensitive_keys) else mask_secrets(v)
                        for k, v in obj.items()
                    }
                if isinstance(obj, list):
                    return [mask_secrets(item) for item in obj]
                return obj
            data = mask_secrets(data)
        return data


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Returns:
        Singleton Settings instance
    """
    return Settings()


def reload_settings() -> Settings:
    """
    Reload settings, clearing the cache.

    Returns:
        New Settings instance
    """
    get_settings.cache_clear()
    return get_settings()
