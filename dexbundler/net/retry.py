"""Exponential backoff for transient upstream failures."""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from typing import TypeVar

import structlog

from dexbundler.errors import UpstreamUnavailable

logger = structlog.get_logger()

T = TypeVar("T")


async def retry_with_backoff(
    operation: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 10.0,
    name: str = "upstream_call",
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T:
    """Run an operation, retrying on UpstreamUnavailable.

    Delay doubles after every failed attempt (capped at max_delay). Rate-limit
    responses wait at least twice the base delay. The last failure is
    re-raised once attempts are exhausted.
    """
    if attempts < 1:
        raise ValueError(f"attempts must be >= 1, got {attempts}")

    for attempt in range(attempts):
        try:
            return await operation()
        except UpstreamUnavailable as e:
            if attempt == attempts - 1:
                logger.warning("retries_exhausted", operation=name, attempts=attempts, error=str(e))
                raise
            delay = min(base_delay * 2**attempt, max_delay)
            if e.rate_limited:
                delay = min(max(delay, base_delay * 2), max_delay)
            logger.info(
                "retrying_after_failure",
                operation=name,
                attempt=attempt + 1,
                delay=delay,
                rate_limited=e.rate_limited,
                error=str(e),
            )
            await sleep(delay)

    raise AssertionError("unreachable")


__all__ = ["retry_with_backoff"]
