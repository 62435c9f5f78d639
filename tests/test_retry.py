"""
Tests for the exponential backoff policy.
"""

from unittest.mock import AsyncMock

import pytest

from sitespeak_suggest.config import RetryConfig
from sitespeak_suggest.exceptions import (
    CircuitOpenError,
    OperationTimeoutError,
    PermissionDeniedError,
    RateLimitError,
    SuggestionError,
    SuggestionErrorCode,
)
from sitespeak_suggest.resilience import RetryPolicy


class TestSchedule:

    def test_delays_double_then_cap(self):
        policy = RetryPolicy(RetryConfig(max_retries=5))

        assert [policy.delay(n) for n in range(5)] == [1.0, 2.0, 4.0, 8.0, 10.0]

    def test_schedule_matches_max_retries(self):
        policy = RetryPolicy()

        assert policy.attempts == 4
        assert policy.schedule() == [1.0, 2.0, 4.0]

    def test_zero_retries(self):
        policy = RetryPolicy(RetryConfig(max_retries=0))
        assert policy.schedule() == []
        assert policy.attempts == 1


class TestRetryability:

    def test_transient_codes_are_retryable(self):
        policy = RetryPolicy()
        assert policy.is_retryable(OperationTimeoutError("slow"))
        assert policy.is_retryable(RateLimitError("throttled"))
        assert policy.is_retryable(SuggestionError("mystery"))

    def test_permission_errors_are_not(self):
        assert not RetryPolicy().is_retryable(PermissionDeniedError("nope"))

    def test_open_circuit_is_not(self):
        assert not RetryPolicy().is_retryable(CircuitOpenError("open"))

    def test_code_must_be_configured(self):
        policy = RetryPolicy(RetryConfig(retryable_errors=[SuggestionErrorCode.TIMEOUT]))
        assert policy.is_retryable(OperationTimeoutError("slow"))
        assert not policy.is_retryable(RateLimitError("throttled"))


class TestBackoff:

    @pytest.mark.asyncio
    async def test_backoff_sleeps_for_attempt_delay(self):
        sleep = AsyncMock()
        policy = RetryPolicy(sleep=sleep)

        await policy.backoff(1, "suggestion_engine", OperationTimeoutError("slow"))

        sleep.assert_awaited_once_with(2.0)
