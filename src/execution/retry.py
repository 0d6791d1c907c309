"""
Retry Module for Futures Trading Bot.

This module provides the caller-side retry loop for operations that
report failures as ``Result`` values. Only retryable failures are
retried, with a fixed backoff schedule.
"""

import asyncio
import logging
from typing import Awaitable, Callable, Optional, Sequence, TypeVar

from src.core.result import Result


logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_RETRY_DELAYS: tuple[float, ...] = (30.0, 60.0, 120.0)
DEFAULT_MAX_ATTEMPTS = 3


async def run_with_retry(
    operation: Callable[[], Awaitable[Result[T]]],
    delays: Sequence[float] = DEFAULT_RETRY_DELAYS,
    max_attempts: int = DEFAULT_MAX_ATTEMPTS,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    on_exhausted: Optional[Callable[[Result[T]], Awaitable[None]]] = None,
    name: str = "operation",
) -> Result[T]:
    """
    Run ``operation`` until it succeeds, fails permanently or runs out of attempts.

    The wait before attempt ``n + 1`` is ``delays[n - 1]``; the last delay
    repeats if there are more attempts than delays.

    Args:
        operation: Zero-argument coroutine factory returning a Result
        delays: Backoff schedule in seconds
        max_attempts: Total attempts including the first
        sleep: Awaitable sleep, injectable for tests
        on_exhausted: Called with the last failure when retries run out
        name: Label for logs

    Returns:
        The first success, the first non-retryable failure, or the last
        retryable failure
    """
    attempt = 0
    result: Result[T] = await operation()
    attempt += 1

    while not result.ok and result.retryable and attempt < max_attempts:
        delay = delays[min(attempt - 1, len(delays) - 1)] if delays else 0.0
        logger.warning(
            f"{name} failed (attempt {attempt}/{max_attempts}): {result.error}; retrying in {delay}s"
        )
        await sleep(delay)
        result = await operation()
        attempt += 1

    if not result.ok and result.retryable:
        logger.error(f"{name} failed after {attempt} attempts: {result.error}")
        if on_exhausted is not None:
            await on_exhausted(result)
    elif not result.ok:
        logger.info(f"{name} failed permanently: {result.error}")

    return result
