"""
Retry with exponential backoff for persistence calls.

Only PersistenceIOError is retried; anything else is a bug and propagates
immediately.
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from loguru import logger

from .errors import PersistenceIOError

T = TypeVar("T")

Sleeper = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """Backoff configuration for gateway calls."""

    max_retries: int = 3
    base_delay_ms: int = 500
    max_delay_ms: int = 5000
    backoff_multiplier: float = 2.0

    @classmethod
    def from_settings(cls, settings) -> RetryPolicy:
        return cls(
            max_retries=settings.persistence_max_retries,
            base_delay_ms=settings.persistence_base_delay_ms,
            max_delay_ms=settings.persistence_max_delay_ms,
            backoff_multiplier=settings.persistence_backoff_multiplier,
        )

    def delay_ms(self, attempt: int, jitter: float = 1.0) -> float:
        """Capped exponential delay for a 0-indexed attempt, scaled by jitter."""
        delay = self.base_delay_ms * (self.backoff_multiplier**attempt)
        return min(delay, self.max_delay_ms) * jitter


async def with_retry(
    operation: str,
    fn: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    sleep: Sleeper = asyncio.sleep,
) -> T:
    """
    Await fn, retrying on PersistenceIOError.

    Args:
        operation: Name used in log messages
        fn: Zero-argument coroutine factory
        policy: Backoff configuration
        sleep: Awaitable sleep, injectable for tests

    Returns:
        The result of the first successful attempt

    Raises:
        PersistenceIOError: The last error once retries are exhausted
    """
    for attempt in range(policy.max_retries + 1):
        try:
            result = await fn()
            if attempt > 0:
                logger.info(f"{operation} succeeded after {attempt + 1} attempts")
            return result

        except PersistenceIOError as e:
            if attempt >= policy.max_retries:
                logger.error(f"{operation} failed after {attempt + 1} attempts: {e}")
                raise

            # ±25% jitter
            delay_ms = policy.delay_ms(attempt, jitter=random.uniform(0.75, 1.25))
            logger.warning(
                f"{operation} failed on attempt {attempt + 1}/{policy.max_retries + 1}: {e}. "
                f"Retrying in {delay_ms:.0f}ms..."
            )
            await sleep(delay_ms / 1000.0)

    raise AssertionError("unreachable")
