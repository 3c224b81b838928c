"""Stage-level retry on provider rate limits.

One RetryPolicy is shared by every stage. Only exceptions listed in
``retryable`` are retried; the wait is the provider's ``retry_after`` when it
sent one, otherwise ``default_wait_seconds``.

Example:
    >>> policy = RetryPolicy(max_retries=3, default_wait_seconds=20.0)
    >>> outcome = await policy.execute(stage.execute, ctx)
    >>> outcome.value, outcome.retries
"""

import asyncio
import logging
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Generic, Optional, TypeVar

from factoring_review.pipeline.core.config import (
    RATE_LIMIT_DEFAULT_WAIT_SECONDS,
    RATE_LIMIT_MAX_RETRIES,
)
from factoring_review.pipeline.core.exceptions import RateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class RetryOutcome(Generic[T]):
    value: T
    retries: int


class RetryExhaustedError(Exception):
    """Raised when a retryable error persists after all retries.

    Attributes:
        last_error: Exception raised by the final attempt
        retries: Number of retries performed
    """

    def __init__(self, last_error: Exception, retries: int):
        super().__init__(f"Retries exhausted after {retries} retries: {last_error}")
        self.last_error = last_error
        self.retries = retries


@dataclass
class RetryPolicy:
    """Configuration for retry logic.

    Attributes:
        max_retries: Retries after the initial attempt
        default_wait_seconds: Wait when the error carries no retry_after
        max_wait_seconds: Upper bound on any single wait
        retryable: Exception types that trigger a retry
        sleep: Awaitable sleep, replaceable in tests
    """

    max_retries: int = RATE_LIMIT_MAX_RETRIES
    default_wait_seconds: float = RATE_LIMIT_DEFAULT_WAIT_SECONDS
    max_wait_seconds: float = 120.0
    retryable: tuple[type[Exception], ...] = (RateLimitError,)
    sleep: Callable[[float], Awaitable[Any]] = field(default=asyncio.sleep, repr=False)

    def wait_for(self, error: Exception) -> float:
        retry_after = getattr(error, "retry_after", None)
        delay = self.default_wait_seconds if retry_after is None else float(retry_after)
        return max(0.0, min(delay, self.max_wait_seconds))

    async def execute(
        self,
        func: Callable[..., Awaitable[T]],
        *args: Any,
        on_retry: Optional[Callable[[int, Exception], None]] = None,
        **kwargs: Any,
    ) -> RetryOutcome[T]:
        """Await ``func`` and retry it on retryable errors.

        Returns:
            RetryOutcome with the result and the number of retries used

        Raises:
            RetryExhaustedError: If the last allowed attempt still fails with
                a retryable error
            Exception: Any non-retryable error, unchanged
        """
        attempt = 0
        while True:
            try:
                value = await func(*args, **kwargs)
                return RetryOutcome(value=value, retries=attempt)
            except self.retryable as e:
                if attempt >= self.max_retries:
                    logger.error(
                        f"All {self.max_retries + 1} attempts failed",
                        extra={
                            "retry_attempt": attempt,
                            "exception_type": type(e).__name__,
                        },
                    )
                    raise RetryExhaustedError(e, attempt) from e

                delay = self.wait_for(e)
                attempt += 1
                logger.warning(
                    f"Attempt {attempt}/{self.max_retries + 1} failed: {type(e).__name__}. "
                    f"Retrying in {delay:.2f}s...",
                    extra={
                        "retry_attempt": attempt,
                        "max_attempts": self.max_retries + 1,
                        "delay_seconds": delay,
                        "exception_type": type(e).__name__,
                    },
                )
                if on_retry is not None:
                    on_retry(attempt, e)
                await self.sleep(delay)
