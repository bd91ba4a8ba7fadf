"""Recently seen pools per dex and token pair."""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Sequence

from dexbundler.models.pools import DexKind, PoolRef, V4PoolState
from dexbundler.models.types import normalize_address
from dexbundler.registry.cache import TtlCache

PairKey = tuple[DexKind, str, str]


def pair_key(dex: DexKind, token_a: str, token_b: str) -> PairKey:
    """Order-independent cache key for a pair on one dex."""
    a, b = sorted((normalize_address(token_a), normalize_address(token_b)))
    return (dex, a, b)


class PoolCache:
    """TTL caches of pool references per pair and the latest indexer state per pool."""

    def __init__(self, ttl: float = 60.0, clock: Callable[[], float] = time.monotonic) -> None:
        self._pairs: TtlCache[PairKey, tuple[PoolRef, ...]] = TtlCache(ttl, clock)
        self._states: TtlCache[str, V4PoolState] = TtlCache(ttl, clock)

    async def pools_for_pair(
        self,
        dex: DexKind,
        token_a: str,
        token_b: str,
        loader: Callable[[], Awaitable[Sequence[PoolRef]]],
        max_age: float | None = None,
    ) -> list[PoolRef]:
        """Pools for a pair, loaded through ``loader`` when missing or stale."""

        async def load() -> tuple[PoolRef, ...]:
            return tuple(await loader())

        pools = await self._pairs.get_or_load(pair_key(dex, token_a, token_b), load, max_age)
        return list(pools)

    def cached(self, dex: DexKind, token_a: str, token_b: str) -> list[PoolRef] | None:
        pools = self._pairs.peek(pair_key(dex, token_a, token_b))
        return list(pools) if pools is not None else None

    def record_state(self, state: V4PoolState) -> None:
        self._states.put(state.pool_id, state)

    def state(self, pool_id: str) -> V4PoolState | None:
        return self._states.peek(pool_id)

    def invalidate(self, dex: DexKind | None = None) -> None:
        if dex is None:
            self._pairs.invalidate()
            return
        for key in [k for k in self._pairs.keys() if k[0] is dex]:
            self._pairs.invalidate(key)


__all__ = ["PoolCache", "pair_key"]
