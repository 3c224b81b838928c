"""Unit tests for stage-level rate-limit retry."""

import asyncio
from unittest.mock import Mock

import pytest

from factoring_review.pipeline.core.exceptions import ExternalServiceError, RateLimitError
from factoring_review.pipeline.resilience.fan_out import gather_or_cancel
from factoring_review.pipeline.resilience.retry import RetryExhaustedError, RetryPolicy
from tests.fakes import RecordingSleep


class Flaky:
    """Raises the given errors in order, then returns ``value``."""

    def __init__(self, errors, value="ok"):
        self.errors = list(errors)
        self.value = value
        self.calls = 0

    async def __call__(self, *args, **kwargs):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.value


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_immediate_success_no_retry(self):
        sleep = RecordingSleep()
        outcome = await RetryPolicy(sleep=sleep).execute(Flaky([]))

        assert outcome.value == "ok"
        assert outcome.retries == 0
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_waits_retry_after(self):
        sleep = RecordingSleep()
        func = Flaky([RateLimitError("SEARCH", retry_after=20), RateLimitError("SEARCH", retry_after=20)])

        outcome = await RetryPolicy(sleep=sleep).execute(func)

        assert outcome.retries == 2
        assert func.calls == 3
        assert sleep.delays == [20.0, 20.0]

    @pytest.mark.asyncio
    async def test_default_wait_without_retry_after(self):
        sleep = RecordingSleep()
        await RetryPolicy(default_wait_seconds=7.5, sleep=sleep).execute(
            Flaky([RateLimitError("OCR")])
        )
        assert sleep.delays == [7.5]

    @pytest.mark.asyncio
    async def test_wait_is_capped(self):
        sleep = RecordingSleep()
        await RetryPolicy(max_wait_seconds=60, sleep=sleep).execute(
            Flaky([RateLimitError("OCR", retry_after=3600)])
        )
        assert sleep.delays == [60.0]

    @pytest.mark.asyncio
    async def test_exhausted_after_max_retries(self):
        sleep = RecordingSleep()
        func = Flaky([RateLimitError("LLM", retry_after=1) for _ in range(10)])

        with pytest.raises(RetryExhaustedError) as exc_info:
            await RetryPolicy(max_retries=3, sleep=sleep).execute(func)

        assert exc_info.value.retries == 3
        assert isinstance(exc_info.value.last_error, RateLimitError)
        assert func.calls == 4
        assert len(sleep.delays) == 3

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        sleep = RecordingSleep()
        func = Flaky([ExternalServiceError("SEARCH", "unavailable")])

        with pytest.raises(ExternalServiceError):
            await RetryPolicy(sleep=sleep).execute(func)

        assert func.calls == 1
        assert sleep.delays == []

    @pytest.mark.asyncio
    async def test_on_retry_callback_and_arguments(self):
        on_retry = Mock()
        func = Flaky([RateLimitError("OCR", retry_after=0)])

        outcome = await RetryPolicy(sleep=RecordingSleep()).execute(
            func, "ctx", on_retry=on_retry, flag=True
        )

        assert outcome.value == "ok"
        on_retry.assert_called_once()
        assert on_retry.call_args[0][0] == 1

    def test_wait_for_never_negative(self):
        assert RetryPolicy().wait_for(RateLimitError("OCR", retry_after=-5)) == 0.0


class TestGatherOrCancel:
    @pytest.mark.asyncio
    async def test_results_in_order(self):
        async def value(v, delay):
            await asyncio.sleep(delay)
            return v

        assert await gather_or_cancel(value("a", 0.02), value("b", 0)) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failure_cancels_pending_siblings(self):
        finished = []

        async def limited():
            raise RateLimitError("SEARCH", retry_after=20)

        async def slow():
            await asyncio.sleep(0.05)
            finished.append("slow")

        with pytest.raises(RateLimitError):
            await gather_or_cancel(limited(), slow())
        await asyncio.sleep(0.1)

        assert finished == []
