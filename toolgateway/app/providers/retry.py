"""Retry mechanism with exponential backoff for upstream calls.

This module provides a configurable retry policy, a ``retry_call`` helper
for wrapping a single operation, and a decorator form of the same loop.
"""

import asyncio
import functools
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar

from toolgateway.app.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")
F = TypeVar("F", bound=Callable[..., Any])


@dataclass
class RetryPolicy:
    """Configuration for retry behavior with exponential backoff.

    Attributes:
        max_attempts: Total number of attempts, including the first (default: 3)
        initial_delay: Delay before the second attempt in seconds (default: 1.0)
        max_delay: Maximum delay between attempts in seconds (default: 10.0)
        backoff_factor: Multiplier applied to the delay after each attempt (default: 2.0)
        retry_if: Optional predicate deciding whether an exception is worth
            another attempt. None retries every exception.

    Example:
        >>> policy = RetryPolicy(max_attempts=5, initial_delay=1.0)
        >>> delay = policy.calculate_delay(attempt=2)  # Returns 4.0
    """

    max_attempts: int = 3
    initial_delay: float = 1.0
    max_delay: float = 10.0
    backoff_factor: float = 2.0
    retry_if: Optional[Callable[[BaseException], bool]] = None

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    def calculate_delay(self, attempt: int) -> float:
        """Calculate the delay after a failed attempt.

        Uses exponential backoff: delay = min(initial_delay * (backoff_factor ^ attempt), max_delay)

        Args:
            attempt: The failed attempt number (0-indexed)

        Returns:
            Delay in seconds
        """
        delay = self.initial_delay * (self.backoff_factor ** attempt)
        return min(delay, self.max_delay)

    def is_retryable(self, exception: BaseException) -> bool:
        """Check if an exception should trigger another attempt."""
        if self.retry_if is None:
            return True
        return self.retry_if(exception)


async def retry_call(
    operation: Callable[[], Awaitable[T]],
    policy: Optional[RetryPolicy] = None,
    name: Optional[str] = None,
) -> T:
    """Run ``operation`` until it succeeds or the attempt budget is spent.

    Args:
        operation: Zero-argument coroutine function to attempt
        policy: RetryPolicy configuration. Uses defaults if not provided.
        name: Label used in log messages (defaults to the function name)

    Returns:
        The operation's result

    Raises:
        The last exception observed once attempts are exhausted, or the
        first exception the policy classifies as non-retryable.
    """
    retry_policy = policy or RetryPolicy()
    label = name or getattr(operation, "__name__", "operation")

    for attempt in range(retry_policy.max_attempts):
        try:
            return await operation()
        except Exception as e:
            logger.warning(
                f"Attempt {attempt + 1}/{retry_policy.max_attempts} for {label} failed: "
                f"{type(e).__name__}: {e}",
                extra={"attempt": attempt + 1},
            )

            if not retry_policy.is_retryable(e):
                logger.debug(f"Non-retryable exception in {label}: {type(e).__name__}")
                raise

            if attempt + 1 >= retry_policy.max_attempts:
                raise

            delay = retry_policy.calculate_delay(attempt)
            if delay > 0:
                await asyncio.sleep(delay)

    # max_attempts >= 1 guarantees the loop either returns or raises
    raise RuntimeError("retry loop exited without a result")


def with_retry(policy: Optional[RetryPolicy] = None) -> Callable[[F], F]:
    """Decorator that adds retry logic with exponential backoff.

    Example:
        >>> @with_retry(policy=RetryPolicy(max_attempts=3))
        ... async def list_models(self):
        ...     return await self._client.models.list()
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            return await retry_call(
                lambda: func(*args, **kwargs), policy, name=func.__name__
            )

        return wrapper  # type: ignore

    return decorator
