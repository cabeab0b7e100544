"""Per-resource rate limiting on two dimensions.

Each configured resource key gets two independent fixed-window counters:
one for requests (capacity = requests per minute) and one for tokens
(capacity = tokens per minute). An admission consumes one request point and
``token_cost`` token points.

Admission is check-then-commit under a single lock: both windows are
verified before either is charged, so a rejected call never consumes
points from the other dimension.

A token cost larger than the whole token window is rejected as invalid
rather than rate limited, since no window reset would admit it.
"""

import asyncio
import math
import time
from dataclasses import dataclass
from typing import Callable, Dict, Mapping, Optional

from toolgateway.app.core.logging import get_logger
from toolgateway.app.core.rate_limits import RateLimit
from toolgateway.app.exceptions import RateLimitExceeded, ValidationError

logger = get_logger(__name__)


@dataclass
class FixedWindow:
    """Consumption state for one dimension of one resource key."""

    capacity: int
    window_seconds: float
    consumed: int = 0
    window_end: Optional[float] = None

    def refresh(self, now: float) -> None:
        """Reset to full capacity if the current window has ended."""
        if self.window_end is None or now >= self.window_end:
            self.consumed = 0
            self.window_end = now + self.window_seconds

    @property
    def remaining(self) -> int:
        return max(0, self.capacity - self.consumed)

    def can_consume(self, points: int) -> bool:
        return self.consumed + points <= self.capacity

    def seconds_until_reset(self, now: float) -> int:
        """Seconds until the window resets, rounded up, minimum 1."""
        if self.window_end is None:
            return 1
        return max(1, math.ceil(self.window_end - now))


@dataclass
class _ResourceWindows:
    requests: FixedWindow
    tokens: FixedWindow
    enforce_tokens: bool


class RateLimiter:
    """Dual-dimension limiter keyed by resource.

    Args:
        limits: Mapping of resource key to RateLimit (usually from
            ``load_rate_limits()``).
        window_seconds: Length of each fixed window.
        enforce_zero_token_capacity: When False, a resource configured with
            0 tokens per minute has no token limit. When True, any non-zero
            token cost against such a resource is rejected.
        clock: Monotonic time source in seconds (injectable for tests).

    Example:
        >>> limiter = RateLimiter(load_rate_limits())
        >>> await limiter.check_limit("llama-3.1-8b-instant", token_cost=250)
    """

    def __init__(
        self,
        limits: Mapping[str, RateLimit],
        window_seconds: float = 60,
        enforce_zero_token_capacity: bool = False,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.window_seconds = window_seconds
        self.enforce_zero_token_capacity = enforce_zero_token_capacity
        self._limits = dict(limits)
        self._clock = clock
        self._windows: Dict[str, _ResourceWindows] = {}
        self._lock = asyncio.Lock()

        for key, limit in self._limits.items():
            self._windows[key] = self._build_windows(limit)

        logger.info(f"Initialized rate limiters for {len(self._windows)} resources")

    def _build_windows(self, limit: RateLimit) -> _ResourceWindows:
        enforce_tokens = limit.tokens_per_minute > 0 or self.enforce_zero_token_capacity
        return _ResourceWindows(
            requests=FixedWindow(limit.requests_per_minute, self.window_seconds),
            tokens=FixedWindow(limit.tokens_per_minute, self.window_seconds),
            enforce_tokens=enforce_tokens,
        )

    def has_limit(self, resource_key: str) -> bool:
        """Whether a limiter is configured for the resource key."""
        return resource_key in self._windows

    def get_limit(self, resource_key: str) -> Optional[RateLimit]:
        return self._limits.get(resource_key)

    async def check_limit(self, resource_key: str, token_cost: int = 1) -> None:
        """Admit one request costing ``token_cost`` tokens, or reject it.

        Unknown resource keys are treated as unlimited.

        Args:
            resource_key: Resource to charge (model id or aggregate key)
            token_cost: Token points to consume from the token window

        Raises:
            RateLimitExceeded: If either window cannot absorb the cost. The
                error carries the seconds until that window resets.
            ValidationError: If the token cost is larger than a whole token
                window, so waiting for a reset would never admit it.
        """
        if token_cost < 0:
            raise ValueError("token_cost must not be negative")

        windows = self._windows.get(resource_key)
        if windows is None:
            logger.warning(f"No rate limiter found for key: {resource_key}")
            return

        charge_tokens = windows.enforce_tokens and token_cost > 0
        capacity = windows.tokens.capacity
        if charge_tokens and 0 < capacity < token_cost:
            logger.warning(
                f"Token cost {token_cost} exceeds the limit for {resource_key} ({capacity}/min)",
                extra={"resource_key": resource_key},
            )
            raise ValidationError(
                f"Request needs {token_cost} tokens, limit for {resource_key} is {capacity}/min"
            )

        async with self._lock:
            now = self._clock()
            windows.requests.refresh(now)
            windows.tokens.refresh(now)

            if not windows.requests.can_consume(1):
                self._reject(resource_key, "requests", windows.requests, now)

            if charge_tokens and not windows.tokens.can_consume(token_cost):
                self._reject(resource_key, "tokens", windows.tokens, now)

            windows.requests.consumed += 1
            if charge_tokens:
                windows.tokens.consumed += token_cost

    def _reject(self, resource_key: str, dimension: str, window: FixedWindow, now: float) -> None:
        secs = window.seconds_until_reset(now)
        logger.warning(
            f"Rate limit exceeded for {resource_key} ({dimension}), retry in {secs}s",
            extra={"resource_key": resource_key},
        )
        raise RateLimitExceeded(retry_after=secs, resource_key=resource_key, dimension=dimension)

    async def get_remaining(self, resource_key: str) -> Dict[str, Optional[int]]:
        """Remaining points in the current windows of a resource.

        Returns:
            ``{"requests": int, "tokens": int | None}``; tokens is None when
            the token dimension is not enforced. Unknown keys report zeros.
        """
        windows = self._windows.get(resource_key)
        if windows is None:
            return {"requests": 0, "tokens": 0}

        async with self._lock:
            now = self._clock()
            windows.requests.refresh(now)
            windows.tokens.refresh(now)
            return {
                "requests": windows.requests.remaining,
                "tokens": windows.tokens.remaining if windows.enforce_tokens else None,
            }

    async def reset(self) -> None:
        """Drop all consumption state (limits are kept)."""
        async with self._lock:
            for key, limit in self._limits.items():
                self._windows[key] = self._build_windows(limit)
