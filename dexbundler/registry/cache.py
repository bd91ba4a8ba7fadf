"""TTL cache with single-writer-per-key population."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Hashable
from dataclasses import dataclass
from typing import Generic, TypeVar

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


@dataclass
class _Entry(Generic[V]):
    value: V
    stored_at: float


class TtlCache(Generic[K, V]):
    """Async cache where the first caller that misses populates the key.

    Concurrent callers for the same key await the in-flight load instead of
    issuing their own. A failed load is not cached; every waiter sees the
    exception and the next caller retries. If the populating caller is
    cancelled, the first waiter still running takes over the load.

    Entries older than ``ttl`` are evicted when read and swept from the
    whole cache at most once per ``ttl``; ``max_age`` can only tighten the
    TTL for a single read.
    """

    def __init__(self, ttl: float, clock: Callable[[], float] = time.monotonic) -> None:
        self.ttl = ttl
        self._clock = clock
        self._entries: dict[K, _Entry[V]] = {}
        self._inflight: dict[K, asyncio.Future[V]] = {}
        self._swept_at = clock()

    def peek(self, key: K, max_age: float | None = None) -> V | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        age = self._clock() - entry.stored_at
        if age > self.ttl:
            del self._entries[key]
            return None
        if max_age is not None and age > max_age:
            return None
        return entry.value

    def put(self, key: K, value: V) -> None:
        now = self._clock()
        if now - self._swept_at > self.ttl:
            self.sweep()
        self._entries[key] = _Entry(value, now)

    def sweep(self) -> int:
        """Drop every expired entry; returns how many were dropped."""
        now = self._clock()
        expired = [k for k, entry in self._entries.items() if now - entry.stored_at > self.ttl]
        for key in expired:
            del self._entries[key]
        self._swept_at = now
        return len(expired)

    def invalidate(self, key: K | None = None) -> None:
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def keys(self) -> list[K]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    async def get_or_load(
        self,
        key: K,
        loader: Callable[[], Awaitable[V]],
        max_age: float | None = None,
    ) -> V:
        cached = self.peek(key, max_age)
        if cached is not None:
            return cached

        pending = self._inflight.get(key)
        if pending is not None:
            try:
                return await asyncio.shield(pending)
            except asyncio.CancelledError:
                task = asyncio.current_task()
                if not pending.cancelled() or (task is not None and task.cancelling()):
                    raise
            # The populating caller was cancelled, not this one
            return await self.get_or_load(key, loader, max_age)

        future: asyncio.Future[V] = asyncio.get_running_loop().create_future()
        self._inflight[key] = future
        try:
            value = await loader()
        except asyncio.CancelledError:
            future.cancel()
            raise
        except Exception as e:
            future.set_exception(e)
            # Retrieve so an unobserved failure does not warn at GC time
            future.exception()
            raise
        else:
            self.put(key, value)
            future.set_result(value)
            return value
        finally:
            if self._inflight.get(key) is future:
                del self._inflight[key]


__all__ = ["TtlCache"]
