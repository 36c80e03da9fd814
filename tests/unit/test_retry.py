"""Tests for the shared retry policy."""

from __future__ import annotations

import pytest

from contractforge.core.retry import RetryPolicy, is_retryable_error


class ThrottlingException(Exception):
    pass


class FakeClientError(Exception):
    def __init__(self, code: str) -> None:
        super().__init__(code)
        self.response = {"Error": {"Code": code}}


class TestRetryable:
    def test_by_class_name(self):
        assert is_retryable_error(ThrottlingException())

    def test_by_service_code(self):
        assert is_retryable_error(FakeClientError("ServiceUnavailable"))
        assert not is_retryable_error(FakeClientError("AccessDenied"))

    def test_network_errors(self):
        assert is_retryable_error(ConnectionResetError())
        assert not is_retryable_error(ValueError("bad input"))


class TestRetryPolicy:
    @pytest.mark.asyncio
    async def test_retries_transient_errors_until_success(self, fast_retry: RetryPolicy):
        calls = []

        async def flaky():
            calls.append(1)
            if len(calls) < 3:
                raise ThrottlingException("slow down")
            return "ok"

        assert await fast_retry.run(flaky) == "ok"
        assert len(calls) == 3

    @pytest.mark.asyncio
    async def test_non_retryable_raises_immediately(self, fast_retry: RetryPolicy):
        calls = []

        async def broken():
            calls.append(1)
            raise ValueError("bad input")

        with pytest.raises(ValueError):
            await fast_retry.run(broken)
        assert len(calls) == 1

    @pytest.mark.asyncio
    async def test_gives_up_after_max_attempts(self, fast_retry: RetryPolicy):
        calls = []

        async def always_throttled():
            calls.append(1)
            raise ThrottlingException("slow down")

        with pytest.raises(ThrottlingException):
            await fast_retry.run(always_throttled)
        assert len(calls) == fast_retry.max_attempts

    def test_exponential_delays(self):
        policy = RetryPolicy(max_attempts=4, base_delay=1.0, backoff_factor=2.0)
        assert [policy.delay_for(n) for n in (1, 2, 3)] == [1.0, 2.0, 4.0]

    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)
