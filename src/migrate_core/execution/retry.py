"""Retry strategies and transient-error classifiers for transaction commits.

A commit that fails with a deadlock or serialization conflict usually
succeeds when simply tried again. The transaction managers describe that
policy with a strategy object and run the commit through ``RetryContext``.

Attempts are counted from 1. ``max_attempts`` is the total number of tries,
so ``ExponentialBackoff(max_attempts=3, base_delay=0.1)`` sleeps 0.1s then
0.2s and gives up after the third failure.

Example:
    >>> from migrate_core.execution.retry import ExponentialBackoff, RetryContext
    >>>
    >>> strategy = ExponentialBackoff(max_attempts=3, base_delay=0.1, retry_if=is_sql_retriable)
    >>> ctx = RetryContext(strategy)
    >>> await ctx.run_async(db.commit)
"""

from __future__ import annotations

import asyncio
import inspect
import random
from abc import ABC, abstractmethod
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any

from migrate_core.core.models import utcnow

ErrorPredicate = Callable[[Exception], bool]
RetryCallback = Callable[[int, Exception, float], Awaitable[None] | None]


# =============================================================================
# CLASSIFIERS
# =============================================================================

SQL_RETRIABLE_PATTERNS = (
    "deadlock",
    "lock timeout",
    "lock wait timeout",
    "serialization",
    "could not serialize",
)

CONNECTION_LOSS_WORDS = ("lost", "closed", "reset")

CALLBACK_RETRIABLE_PATTERNS = (
    "conflict",
    "contention",
    "deadlock",
    "timeout",
    "lock wait",
)


def message_contains(error: Exception, patterns: Iterable[str]) -> bool:
    """Case-insensitive substring match on the error message."""
    message = str(error).lower()
    return any(p in message for p in patterns)


def is_sql_retriable(error: Exception) -> bool:
    """Transient SQL failures: deadlocks, serialization, dropped connections."""
    if message_contains(error, SQL_RETRIABLE_PATTERNS):
        return True
    message = str(error).lower()
    return "connection" in message and any(w in message for w in CONNECTION_LOSS_WORDS)


def is_callback_retriable(error: Exception) -> bool:
    """Transient failures of provider-managed (callback) transactions."""
    return message_contains(error, CALLBACK_RETRIABLE_PATTERNS)


# =============================================================================
# STRATEGIES
# =============================================================================


class RetryStrategy(ABC):
    """Abstract base for retry strategies."""

    @abstractmethod
    def next_delay(self, attempt: int) -> float:
        """Calculate delay after a failed attempt.

        Args:
            attempt: One-based number of the attempt that just failed

        Returns:
            Delay in seconds before the next attempt
        """
        ...

    @abstractmethod
    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        """Determine if another attempt should be made.

        Args:
            attempt: One-based number of the attempt that just failed
            error: The exception that caused the failure

        Returns:
            True if should retry, False otherwise
        """
        ...


@dataclass
class ExponentialBackoff(RetryStrategy):
    """Exponential backoff with optional jitter.

    Delay = min(base_delay * (multiplier ** (attempt - 1)), max_delay) + jitter

    Attributes:
        max_attempts: Total number of attempts (first try included)
        base_delay: Delay after the first failure, in seconds
        max_delay: Maximum delay cap in seconds
        multiplier: Exponential multiplier (default: 2)
        jitter: Add randomness to prevent thundering herd
        jitter_range: Range of jitter as fraction of delay (0.0-1.0)
        retry_if: Predicate deciding whether an error is transient (None = all)
    """

    max_attempts: int = 3
    base_delay: float = 0.1
    max_delay: float = 60.0
    multiplier: float = 2.0
    jitter: bool = False
    jitter_range: float = 0.25
    retry_if: ErrorPredicate | None = None

    def next_delay(self, attempt: int) -> float:
        delay = min(
            self.base_delay * (self.multiplier ** (attempt - 1)),
            self.max_delay,
        )

        if self.jitter:
            jitter_amount = delay * self.jitter_range
            delay += random.uniform(-jitter_amount, jitter_amount)
            delay = max(0, delay)

        return delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_attempts:
            return False

        if error is not None and self.retry_if is not None:
            return self.retry_if(error)

        return True


@dataclass
class ConstantBackoff(RetryStrategy):
    """Constant delay between attempts."""

    max_attempts: int = 3
    delay: float = 0.1
    retry_if: ErrorPredicate | None = None

    def next_delay(self, attempt: int) -> float:
        return self.delay

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        if attempt >= self.max_attempts:
            return False
        if error is not None and self.retry_if is not None:
            return self.retry_if(error)
        return True


@dataclass
class NoRetry(RetryStrategy):
    """No retry - fail immediately."""

    def next_delay(self, attempt: int) -> float:
        return 0.0

    def should_retry(self, attempt: int, error: Exception | None = None) -> bool:
        return False


def build_strategy(
    attempts: int,
    delay: float,
    backoff: bool,
    retry_if: ErrorPredicate | None = None,
) -> RetryStrategy:
    """Strategy for ``TransactionConfig``-style settings."""
    if attempts <= 1:
        return NoRetry()
    if backoff:
        return ExponentialBackoff(max_attempts=attempts, base_delay=delay, retry_if=retry_if)
    return ConstantBackoff(max_attempts=attempts, delay=delay, retry_if=retry_if)


# =============================================================================
# EXECUTION
# =============================================================================


@dataclass
class RetryContext:
    """Context tracking retry state.

    ``on_retry(attempt, error, delay)`` is called before each sleep and may
    be a coroutine function.

    Example:
        >>> ctx = RetryContext(ExponentialBackoff(max_attempts=3))
        >>> await ctx.run_async(conn.commit)
        >>> ctx.attempts
        1
    """

    strategy: RetryStrategy
    on_retry: RetryCallback | None = None
    attempt: int = field(default=0, init=False)
    last_error: Exception | None = field(default=None, init=False)
    errors: list[tuple[int, Exception, datetime]] = field(default_factory=list, init=False)

    @property
    def attempts(self) -> int:
        return self.attempt

    async def run_async(self, func: Callable[..., Awaitable[Any]], *args: Any, **kwargs: Any) -> Any:
        """Execute async function with retry logic.

        Raises:
            The last exception once the strategy declines another attempt
        """
        while True:
            self.attempt += 1
            try:
                return await func(*args, **kwargs)
            except Exception as e:
                self.last_error = e
                self.errors.append((self.attempt, e, utcnow()))

                if not self.strategy.should_retry(self.attempt, e):
                    raise

                delay = self.strategy.next_delay(self.attempt)

                if self.on_retry:
                    outcome = self.on_retry(self.attempt, e, delay)
                    if inspect.isawaitable(outcome):
                        await outcome

                await asyncio.sleep(delay)
