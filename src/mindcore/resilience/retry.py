# src/mindcore/resilience/retry.py
"""
Exponential backoff for memory backend calls.

Every network operation in MindCore runs under :func:`with_retry`. Only
errors flagged as retryable (timeouts, rate limiting, 5xx, unavailable
backend) are retried; validation, not-found and unknown errors surface on
the first attempt.

Usage:
    from mindcore.resilience.retry import RetryOptions, with_retry

    result = await with_retry(lambda: client.get_bank(bank_id), RetryOptions(max_attempts=5))
"""

import asyncio
import functools
import logging
import random
from dataclasses import dataclass, field, replace
from typing import Any, Awaitable, Callable, Optional, TypeVar

from ..exceptions import BackendError, RateLimitedError

logger = logging.getLogger(__name__)

T = TypeVar("T")

ShouldRetry = Callable[[BaseException, int], bool]
OnRetry = Callable[[BaseException, int, int], None]
Sleep = Callable[[float], Awaitable[Any]]


def is_retryable(error: BaseException) -> bool:
    """Default retry predicate: backend errors marked retryable, plus bare timeouts."""
    if isinstance(error, BackendError):
        return error.retryable
    return isinstance(error, (TimeoutError, asyncio.TimeoutError))


def _default_should_retry(error: BaseException, attempt: int) -> bool:
    return is_retryable(error)


@dataclass(frozen=True)
class RetryOptions:
    """
    Backoff policy. Delays are in milliseconds.

    ``sleep`` receives seconds and defaults to :func:`asyncio.sleep`; tests
    inject a recorder instead.
    """

    max_attempts: int = 3
    initial_delay_ms: int = 100
    max_delay_ms: int = 5000
    backoff_multiplier: float = 2.0
    jitter: bool = True
    should_retry: ShouldRetry = _default_should_retry
    on_retry: Optional[OnRetry] = None
    sleep: Sleep = field(default=asyncio.sleep, repr=False)

    @classmethod
    def from_config(cls, config: Any, **kwargs: Any) -> "RetryOptions":
        """Build options from a :class:`~mindcore.config.models.RetryConfig`."""
        return cls(
            max_attempts=config.max_attempts,
            initial_delay_ms=config.initial_delay_ms,
            max_delay_ms=config.max_delay_ms,
            backoff_multiplier=config.backoff_multiplier,
            jitter=config.jitter,
            **kwargs,
        )

    def with_overrides(self, **changes: Any) -> "RetryOptions":
        return replace(self, **changes)


def compute_delay(attempt: int, options: RetryOptions, error: Optional[BaseException] = None) -> int:
    """
    Delay in milliseconds before retrying after failed ``attempt`` (1-based).

    ``min(max_delay, initial * multiplier ** (attempt - 1))``, plus up to 50%
    random jitter when enabled. A rate-limit error carrying a
    ``retry_after_ms`` hint raises the delay to that hint, still capped at
    ``max_delay_ms``.
    """
    base = options.initial_delay_ms * (options.backoff_multiplier ** (attempt - 1))
    delay = int(min(base, options.max_delay_ms))
    if options.jitter and delay > 0:
        delay += int(random.random() * 0.5 * delay)
    if isinstance(error, RateLimitedError) and error.retry_after_ms:
        delay = max(delay, min(error.retry_after_ms, options.max_delay_ms))
    return delay


async def with_retry(operation: Callable[[], Awaitable[T]], options: Optional[RetryOptions] = None) -> T:
    """
    Run ``operation`` until it succeeds or the policy gives up.

    Args:
        operation: Zero-argument callable returning an awaitable.
        options: Backoff policy; defaults to :class:`RetryOptions()`.

    Returns:
        The operation's result.

    Raises:
        The last error, unchanged, when it is not retryable or attempts run out.
    """
    opts = options or RetryOptions()
    attempt = 1
    while True:
        try:
            return await operation()
        except Exception as e:
            if attempt >= opts.max_attempts or not opts.should_retry(e, attempt):
                raise
            delay_ms = compute_delay(attempt, opts, e)
            logger.debug(
                f"Attempt {attempt}/{opts.max_attempts} failed ({type(e).__name__}: {e}); "
                f"retrying in {delay_ms}ms"
            )
            if opts.on_retry is not None:
                opts.on_retry(e, attempt, delay_ms)
            await opts.sleep(delay_ms / 1000.0)
            attempt += 1


def retryable(options: Optional[RetryOptions] = None) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator form of :func:`with_retry`.

    Example:
        @retryable(RetryOptions(max_attempts=5))
        async def fetch(bank_id):
            ...
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            return await with_retry(lambda: func(*args, **kwargs), options)

        return wrapper

    return decorator
