"""
Correlation Module for Futures Trading Bot.

This module provides pluggable pair-correlation providers used by the
correlated-exposure check: a base-currency heuristic table and a
returns-based Pearson estimate.
"""

import logging
from typing import Iterable, Optional, Protocol, Sequence, runtime_checkable

import numpy as np

from src.utils.helpers import base_asset


logger = logging.getLogger(__name__)


# Known base-currency pairs, keyed order-independently
DEFAULT_BASE_CORRELATIONS: dict[frozenset[str], float] = {
    frozenset({"BTC", "ETH"}): 0.75,
    frozenset({"BTC", "BNB"}): 0.70,
    frozenset({"ETH", "BNB"}): 0.72,
}


@runtime_checkable
class CorrelationProvider(Protocol):
    """Anything that can estimate the correlation of two symbols."""

    def correlation(self, symbol_a: str, symbol_b: str) -> float:
        """Correlation in [-1, 1]."""
        ...


class BaseCurrencyCorrelation:
    """
    Heuristic correlation from a table of base currencies.

    Symbols sharing a base currency are perfectly correlated; unknown
    pairs get ``default``.
    """

    def __init__(
        self,
        table: Optional[dict[frozenset[str], float]] = None,
        default: float = 0.3,
    ) -> None:
        self._table = dict(DEFAULT_BASE_CORRELATIONS if table is None else table)
        self._default = default

    def correlation(self, symbol_a: str, symbol_b: str) -> float:
        base_a = base_asset(symbol_a)
        base_b = base_asset(symbol_b)
        if base_a == base_b:
            return 1.0
        return self._table.get(frozenset({base_a, base_b}), self._default)


class ReturnsCorrelation:
    """
    Pearson correlation of simple returns from recent close series.

    Falls back to another provider when either series is too short.
    """

    def __init__(
        self,
        closes: Optional[dict[str, Sequence[float]]] = None,
        min_samples: int = 20,
        fallback: Optional[CorrelationProvider] = None,
    ) -> None:
        """
        Initialize ReturnsCorrelation.

        Args:
            closes: Initial close series by symbol
            min_samples: Minimum overlapping returns for an estimate
            fallback: Provider used when there is not enough data
        """
        self._closes: dict[str, list[float]] = {}
        self._min_samples = min_samples
        self._fallback = fallback or BaseCurrencyCorrelation()
        for symbol, series in (closes or {}).items():
            self.update(symbol, series)

    def update(self, symbol: str, closes: Sequence[float]) -> None:
        """Replace the close series for a symbol."""
        self._closes[symbol.upper()] = [float(c) for c in closes]

    def correlation(self, symbol_a: str, symbol_b: str) -> float:
        a = symbol_a.upper()
        b = symbol_b.upper()
        if a == b:
            return 1.0

        returns_a = self._returns(self._closes.get(a, []))
        returns_b = self._returns(self._closes.get(b, []))
        n = min(len(returns_a), len(returns_b))
        if n < self._min_samples:
            return self._fallback.correlation(symbol_a, symbol_b)

        r1 = returns_a[-n:]
        r2 = returns_b[-n:]
        std1, std2 = np.std(r1), np.std(r2)
        if std1 == 0 or std2 == 0:
            return 0.0

        covariance = np.mean((r1 - np.mean(r1)) * (r2 - np.mean(r2)))
        correlation = float(covariance / (std1 * std2))
        return max(-1.0, min(1.0, correlation))

    @staticmethod
    def _returns(closes: Sequence[float]) -> np.ndarray:
        if len(closes) < 2:
            return np.array([])
        prices = np.asarray(closes, dtype=float)
        previous = prices[:-1]
        with np.errstate(divide="ignore", invalid="ignore"):
            returns = np.where(previous != 0, np.diff(prices) / previous, 0.0)
        return returns


def correlated_symbols(
    provider: CorrelationProvider,
    symbol: str,
    candidates: Iterable[str],
    threshold: float,
) -> list[str]:
    """
    Other symbols whose correlation with ``symbol`` exceeds ``threshold``.

    Args:
        provider: Correlation provider
        symbol: Reference symbol
        candidates: Symbols to test
        threshold: Strict lower bound

    Returns:
        Correlated symbols, excluding ``symbol`` itself
    """
    correlated = []
    for other in dict.fromkeys(candidates):
        if other == symbol:
            continue
        if provider.correlation(symbol, other) > threshold:
            correlated.append(other)
    return correlated
