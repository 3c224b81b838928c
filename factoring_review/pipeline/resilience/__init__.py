"""Resilience utilities for external service calls.

Stages are retried as a whole when a provider signals a rate limit.
"""

from factoring_review.pipeline.resilience.fan_out import gather_or_cancel
from factoring_review.pipeline.resilience.retry import (
    RetryExhaustedError,
    RetryOutcome,
    RetryPolicy,
)

__all__ = [
    "gather_or_cancel",
    "RetryExhaustedError",
    "RetryOutcome",
    "RetryPolicy",
]
