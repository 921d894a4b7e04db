"""Retry utility with exponential backoff and jitter.

RetryPolicy bundles the attempt bound, the backoff schedule, and the
retryable-error predicate so each call site can be parameterized and the
transient vs permanent classification can be tested without a network call.
retry_with_backoff wraps an async function with a policy.
"""

import asyncio
import logging
import random
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from functools import wraps
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _retry_everything(exc: BaseException) -> bool:
    return True


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt bound, backoff schedule, and retryable-error predicate.

    Delay before retry n (0-based) is base_delay * 2^n plus a uniform
    jitter in [-jitter, +jitter], never below zero.

    Attributes:
        max_retries: Additional attempts after the first call.
        base_delay: Base delay in seconds before the first retry.
        jitter: Maximum random offset in seconds applied to each delay.
        is_retryable: Predicate deciding whether an error is transient.
    """

    max_retries: int = 2
    base_delay: float = 2.0
    jitter: float = 1.0
    is_retryable: Callable[[BaseException], bool] = _retry_everything

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def delay_for(self, attempt: int) -> float:
        """Return the sleep before retrying after the given failed attempt."""
        delay = self.base_delay * (2**attempt)
        if self.jitter:
            delay += random.uniform(-self.jitter, self.jitter)
        return max(0.0, delay)

    async def run(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        **kwargs: Any,
    ) -> T:
        """Call func until it succeeds, fails permanently, or retries run out.

        Non-retryable errors are re-raised immediately. After exhausting the
        bound the last error is re-raised. Both carry `_retry_count`.
        """
        name = getattr(func, "__name__", repr(func))
        last_error: Exception | None = None
        for attempt in range(self.max_retries + 1):
            try:
                return await func(*args, **kwargs)
            except Exception as exc:
                last_error = exc
                if not self.is_retryable(exc):
                    exc._retry_count = attempt  # type: ignore[attr-defined]
                    raise
                if attempt < self.max_retries:
                    delay = self.delay_for(attempt)
                    logger.warning(
                        "Retry %d/%d for %s after %.1fs: %s",
                        attempt + 1,
                        self.max_retries,
                        name,
                        delay,
                        exc,
                    )
                    await asyncio.sleep(delay)
        last_error._retry_count = self.max_retries  # type: ignore[union-attr]
        raise last_error  # type: ignore[misc]


def retry_with_backoff(
    max_retries: int = 3,
    base_delay: float = 1.0,
    retryable_exceptions: tuple[type[Exception], ...] | None = None,
    jitter: float = 0.0,
) -> Callable:
    """Decorator for retrying async functions with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts (default 3).
        base_delay: Base delay in seconds before first retry (default 1.0).
        retryable_exceptions: Tuple of exception types eligible for retry.
            If None, all exceptions are retried.
        jitter: Maximum random offset in seconds added to each delay.

    Returns:
        Decorator that wraps an async function with retry logic.
    """
    if retryable_exceptions is None:
        predicate = _retry_everything
    else:

        def predicate(exc: BaseException) -> bool:
            return isinstance(exc, retryable_exceptions)

    policy = RetryPolicy(
        max_retries=max_retries,
        base_delay=base_delay,
        jitter=jitter,
        is_retryable=predicate,
    )

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await policy.run(func, *args, **kwargs)

        return wrapper

    return decorator
