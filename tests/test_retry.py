"""Tests for the bounded exponential backoff helper."""

import asyncio

import pytest

from telehealth.core.errors import GatewayError, StoreUnavailable
from telehealth.core.retry import RetryExhausted, RetryPolicy, is_retryable, retry_async

FAST = RetryPolicy(attempts=3, base_delay=0, max_delay=0)


class TestRetryPolicy:
    """Tests for delay computation."""

    def test_delay_doubles_and_caps(self):
        policy = RetryPolicy(attempts=6, base_delay=0.5, max_delay=3.0)

        assert [policy.delay_for(i) for i in range(5)] == [0.5, 1.0, 2.0, 3.0, 3.0]

    def test_from_settings_uses_configured_defaults(self):
        policy = RetryPolicy.from_settings(timeout=2.0)

        assert policy.attempts == 3
        assert policy.timeout == 2.0

    @pytest.mark.parametrize("attempts", [0, -1])
    def test_requires_at_least_one_attempt(self, attempts):
        """A policy that would never call the operation is rejected."""
        with pytest.raises(ValueError):
            RetryPolicy(attempts=attempts)

    def test_negative_delay_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(base_delay=-1)


class TestIsRetryable:
    """Tests for transient error classification."""

    def test_timeouts_are_retryable(self):
        assert is_retryable(asyncio.TimeoutError())

    def test_flagged_errors(self):
        assert is_retryable(GatewayError("503", status_code=503, is_retryable=True))
        assert not is_retryable(GatewayError("400", status_code=400))
        assert is_retryable(StoreUnavailable("down"))

    def test_plain_errors_are_not_retryable(self):
        assert not is_retryable(ValueError("bad"))


class TestRetryAsync:
    """Tests for retry_async."""

    async def test_success_on_first_attempt(self):
        async def op():
            return "ok"

        assert await retry_async(op, FAST) == ("ok", 1)

    async def test_transient_errors_are_retried(self):
        """A transient failure followed by success reports attempts used."""
        calls = []

        async def op():
            calls.append(1)
            if len(calls) < 3:
                raise GatewayError("busy", status_code=429, is_retryable=True)
            return "ok"

        assert await retry_async(op, FAST) == ("ok", 3)

    async def test_exhaustion_raises(self):
        async def op():
            raise GatewayError("busy", status_code=503, is_retryable=True)

        with pytest.raises(RetryExhausted) as exc_info:
            await retry_async(op, FAST)

        assert exc_info.value.attempts == 3
        assert isinstance(exc_info.value.last_error, GatewayError)

    async def test_single_attempt_policy_exhausts_without_retry(self):
        """One attempt means one call, then RetryExhausted."""
        calls = []

        async def op():
            calls.append(1)
            raise StoreUnavailable("down")

        with pytest.raises(RetryExhausted) as exc_info:
            await retry_async(op, RetryPolicy(attempts=1, base_delay=0, max_delay=0))

        assert len(calls) == 1
        assert exc_info.value.attempts == 1

    async def test_permanent_error_propagates_immediately(self):
        calls = []

        async def op():
            calls.append(1)
            raise GatewayError("bad request", status_code=400)

        with pytest.raises(GatewayError):
            await retry_async(op, FAST)

        assert len(calls) == 1

    async def test_timeout_counts_as_transient(self):
        """Slow calls are cut off and retried."""
        policy = RetryPolicy(attempts=2, base_delay=0, max_delay=0, timeout=0.01)

        async def op():
            await asyncio.sleep(1)

        with pytest.raises(RetryExhausted) as exc_info:
            await retry_async(op, policy)

        assert isinstance(exc_info.value.last_error, asyncio.TimeoutError)
