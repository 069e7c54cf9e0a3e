"""Shared rate limiting and retry helpers for external calls."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_RETRIES = 3
DEFAULT_RETRY_BASE_DELAY = 1.0


class RateLimiter:
    """Minimum-interval rate limiter shared by concurrent callers.

    Every caller serializes on the same lock, so the aggregate request rate
    stays capped no matter how many workers are issuing requests.
    """

    def __init__(self, min_interval_seconds: float) -> None:
        """Initialize the rate limiter.

        Args:
            min_interval_seconds: Minimum gap between consecutive acquisitions.
        """
        self._min_interval = max(0.0, min_interval_seconds)
        self._last_request_time: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self._min_interval

    async def acquire(self) -> None:
        """Wait until a request slot is available."""
        async with self._lock:
            now = time.monotonic()
            if self._last_request_time is not None:
                elapsed = now - self._last_request_time
                if elapsed < self._min_interval:
                    await asyncio.sleep(self._min_interval - elapsed)
            self._last_request_time = time.monotonic()


class RetryError(Exception):
    """Raised when all retry attempts are exhausted."""

    def __init__(self, message: str, last_exception: Exception | None = None) -> None:
        super().__init__(message)
        self.last_exception = last_exception


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    max_retries: int = DEFAULT_MAX_RETRIES,
    base_delay: float = DEFAULT_RETRY_BASE_DELAY,
    retry_on: tuple[type[BaseException], ...] = (Exception,),
    timeout: float | None = None,
    description: str = "call",
) -> T:
    """Run an async call with exponential backoff.

    A call that exceeds ``timeout`` is treated exactly like a failed call.

    Args:
        func: Zero-argument coroutine factory, invoked once per attempt.
        max_retries: Retries after the first attempt.
        base_delay: Base delay in seconds (doubles with each retry).
        retry_on: Exception types that trigger a retry.
        timeout: Optional per-attempt timeout in seconds.
        description: Label used in log messages.

    Raises:
        RetryError: If every attempt failed with a retryable error.
    """
    retryable = (*retry_on, asyncio.TimeoutError)
    last_exception: Exception | None = None

    for attempt in range(max_retries + 1):
        try:
            if timeout is not None:
                return await asyncio.wait_for(func(), timeout=timeout)
            return await func()
        except retryable as e:
            last_exception = e if isinstance(e, Exception) else None
            if attempt == max_retries:
                break

            delay = base_delay * (2**attempt)
            logger.warning(
                "%s attempt %d/%d failed: %s. Retrying in %.1f seconds...",
                description,
                attempt + 1,
                max_retries + 1,
                str(e) or type(e).__name__,
                delay,
            )
            if delay > 0:
                await asyncio.sleep(delay)

    raise RetryError(
        f"All {max_retries + 1} attempts failed for {description}",
        last_exception=last_exception,
    )
