"""Tests for unit conversion and retry helpers."""

import pytest

from defi_agent.utils.retry import RetryableError, RetryConfig, retry_async
from defi_agent.utils.units import format_units, parse_units


class TestUnits:
    def test_parse_units(self):
        assert parse_units("1.5", 6) == 1_500_000
        assert parse_units("100", 18) == 100 * 10**18
        assert parse_units("0.000001", 6) == 1

    @pytest.mark.parametrize("amount", ["abc", "-1", "1.0000001", "NaN"])
    def test_parse_units_rejects(self, amount):
        with pytest.raises(ValueError):
            parse_units(amount, 6)

    def test_format_units(self):
        assert format_units(1_500_000, 6) == "1.5"
        assert format_units(50_000_000, 6) == "50"
        assert format_units(1, 18) == "0.000000000000000001"
        assert format_units(0, 6) == "0"


class TestRetryAsync:
    @pytest.mark.asyncio
    async def test_retries_until_success(self):
        attempts = []
        delays = []

        async def operation():
            attempts.append(1)
            if len(attempts) < 3:
                raise RetryableError("busy")
            return "ok"

        async def sleep(delay):
            delays.append(delay)

        config = RetryConfig(max_retries=3, initial_delay_seconds=1, jitter_factor=0)
        assert await retry_async(operation, config, sleep=sleep) == "ok"
        assert delays == [1, 2]

    @pytest.mark.asyncio
    async def test_retry_after_overrides_backoff(self):
        delays = []

        async def operation():
            if not delays:
                raise RetryableError("rate limited", retry_after=7)
            return "ok"

        async def sleep(delay):
            delays.append(delay)

        await retry_async(operation, RetryConfig(jitter_factor=0), sleep=sleep)
        assert delays == [7]

    @pytest.mark.asyncio
    async def test_gives_up_after_max_retries(self):
        attempts = []

        async def operation():
            attempts.append(1)
            raise RetryableError("busy")

        async def sleep(delay):
            return None

        with pytest.raises(RetryableError):
            await retry_async(operation, RetryConfig(max_retries=2), sleep=sleep)
        assert len(attempts) == 3

    @pytest.mark.asyncio
    async def test_other_errors_are_not_retried(self):
        attempts = []

        async def operation():
            attempts.append(1)
            raise KeyError("bad")

        with pytest.raises(KeyError):
            await retry_async(operation, RetryConfig())
        assert len(attempts) == 1
