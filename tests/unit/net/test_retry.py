"""Tests for exponential backoff."""

import asyncio

import pytest

from dexbundler.errors import UpstreamRejected, UpstreamUnavailable
from dexbundler.net.retry import retry_with_backoff


class FlakyOperation:
    """Fails a number of times with UpstreamUnavailable, then succeeds."""

    def __init__(self, failures: int, status: int | None = None) -> None:
        self.failures = failures
        self.status = status
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.calls <= self.failures:
            raise UpstreamUnavailable("rpc", "down", status=self.status)
        return "ok"


def run_retry(operation, **kwargs) -> tuple[object, list[float]]:
    delays: list[float] = []

    async def fake_sleep(seconds: float) -> None:
        delays.append(seconds)

    async def main() -> object:
        return await retry_with_backoff(operation, sleep=fake_sleep, **kwargs)

    return asyncio.run(main()), delays


class TestRetryWithBackoff:
    def test_success_first_try(self) -> None:
        operation = FlakyOperation(0)
        result, delays = run_retry(operation)
        assert result == "ok"
        assert operation.calls == 1
        assert delays == []

    def test_delay_doubles(self) -> None:
        operation = FlakyOperation(2)
        result, delays = run_retry(operation, attempts=3, base_delay=1.0)
        assert result == "ok"
        assert delays == [1.0, 2.0]

    def test_delay_capped(self) -> None:
        operation = FlakyOperation(4)
        _, delays = run_retry(operation, attempts=5, base_delay=1.0, max_delay=3.0)
        assert delays == [1.0, 2.0, 3.0, 3.0]

    def test_rate_limit_waits_longer(self) -> None:
        operation = FlakyOperation(1, status=429)
        _, delays = run_retry(operation, attempts=2, base_delay=1.0)
        assert delays == [2.0]

    def test_exhausted_reraises(self) -> None:
        operation = FlakyOperation(5)
        with pytest.raises(UpstreamUnavailable):
            run_retry(operation, attempts=3)
        assert operation.calls == 3

    def test_other_errors_not_retried(self) -> None:
        calls = []

        async def rejected() -> None:
            calls.append(1)
            raise UpstreamRejected("api", 400, "bad request")

        with pytest.raises(UpstreamRejected):
            run_retry(rejected)
        assert len(calls) == 1

    def test_attempts_must_be_positive(self) -> None:
        with pytest.raises(ValueError):
            run_retry(FlakyOperation(0), attempts=0)
