"""Uniswap v4 route discovery from an indexer plus the position manager."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

import structlog
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector

from dexbundler.constants import DEFAULT_TICK_SPACING, NATIVE_ADDRESS, V4_TICK_SPACINGS
from dexbundler.errors import CallReverted
from dexbundler.models.pools import DexKind, V4PoolKey, V4PoolState
from dexbundler.models.route import Leg, Path, PathError
from dexbundler.models.tokens import ZERO_ADDRESS, Token
from dexbundler.models.types import hex_bytes, normalize_address
from dexbundler.net.http import JsonApiClient
from dexbundler.net.rpc import ChainReader
from dexbundler.registry.pools import PoolCache
from dexbundler.registry.tokens import TokenRegistry

if TYPE_CHECKING:
    from dexbundler.context import RoutingContext

logger = structlog.get_logger()

# poolKeys(bytes25) -> (address currency0, address currency1, uint24 fee, int24 tickSpacing, address hooks)
POOL_KEYS_SELECTOR = function_signature_to_4byte_selector("poolKeys(bytes25)")

POOLS_CONTAINING_QUERY = """
query PoolsContaining($token: String!, $first: Int!) {
  pools(
    first: $first
    orderBy: totalValueLockedUSD
    orderDirection: desc
    where: { or: [{ token0: $token }, { token1: $token }] }
  ) {
    id
    feeTier
    tickSpacing
    hooks
    liquidity
    sqrtPrice
    totalValueLockedUSD
    token0 { id }
    token1 { id }
  }
}
"""

# Upper bound on paths one adapter returns per query
MAX_PATHS = 24


@dataclass(frozen=True)
class IndexedPool:
    """A pool row as returned by the indexer."""

    pool_id: str
    token0: str
    token1: str
    fee: int
    tick_spacing: int
    hooks: str
    liquidity: int
    sqrt_price_x96: int
    tvl_usd: float

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> IndexedPool:
        fee = int(row["feeTier"])
        spacing = row.get("tickSpacing")
        return cls(
            pool_id=str(row["id"]).lower(),
            token0=normalize_address(row["token0"]["id"]),
            token1=normalize_address(row["token1"]["id"]),
            fee=fee,
            tick_spacing=int(spacing) if spacing is not None else tick_spacing_for_fee(fee),
            hooks=normalize_address(row.get("hooks") or ZERO_ADDRESS),
            liquidity=int(row.get("liquidity") or 0),
            sqrt_price_x96=int(row.get("sqrtPrice") or 0),
            tvl_usd=float(row.get("totalValueLockedUSD") or 0.0),
        )

    @property
    def state(self) -> V4PoolState:
        return V4PoolState(self.pool_id, self.liquidity, self.sqrt_price_x96, self.tvl_usd)


def tick_spacing_for_fee(fee: int) -> int:
    return V4_TICK_SPACINGS.get(fee, DEFAULT_TICK_SPACING)


class V4Indexer:
    """GraphQL indexer of Uniswap v4 pools."""

    def __init__(self, api: JsonApiClient, page_size: int = 50) -> None:
        self.api = api
        self.page_size = page_size

    async def pools_containing(self, token: str) -> list[IndexedPool]:
        data = await self.api.graphql(
            POOLS_CONTAINING_QUERY,
            {"token": normalize_address(token), "first": self.page_size},
        )
        return [IndexedPool.from_row(row) for row in data.get("pools", [])]


class PositionManagerReader:
    """Reads pool keys from the v4 position manager.

    The manager indexes keys by ``bytes25(poolId)``: the leading 25 bytes of
    the 32-byte pool id. The trailing 7 bytes are dropped.
    """

    def __init__(self, rpc: ChainReader, position_manager: str) -> None:
        self.rpc = rpc
        self.position_manager = normalize_address(position_manager)
        self._keys: dict[str, V4PoolKey | None] = {}

    async def pool_key(self, pool_id: str) -> V4PoolKey | None:
        pool_id = pool_id.lower()
        if pool_id in self._keys:
            return self._keys[pool_id]

        truncated = hex_bytes(pool_id)[:25]
        calldata = POOL_KEYS_SELECTOR + encode(["bytes25"], [truncated])
        try:
            raw = await self.rpc.call(self.position_manager, calldata)
        except CallReverted:
            raw = b""

        key: V4PoolKey | None = None
        if len(raw) >= 160:
            currency0, currency1, fee, tick_spacing, hooks = decode(
                ["address", "address", "uint24", "int24", "address"], raw
            )
            # Unregistered ids come back as an all-zero key
            if normalize_address(currency1) != ZERO_ADDRESS:
                key = V4PoolKey(currency0, currency1, int(fee), int(tick_spacing), hooks)
        self._keys[pool_id] = key
        return key


class UniswapV4Adapter:
    """Finds 1- and 2-hop v4 paths by joining indexer results on intermediates."""

    kind = DexKind.UNISWAP_V4

    def __init__(
        self,
        indexer: V4Indexer,
        position_manager: PositionManagerReader,
        registry: TokenRegistry,
        pool_cache: PoolCache,
        *,
        min_tvl_usd: float = 10_000.0,
    ) -> None:
        self.indexer = indexer
        self.position_manager = position_manager
        self.registry = registry
        self.pool_cache = pool_cache
        self.min_tvl_usd = min_tvl_usd

    def _variants(self, token: Token) -> list[str]:
        """Currencies a v4 pool may list for this token."""
        if token.is_native or self.registry.is_wrapped_native(token.address):
            return [NATIVE_ADDRESS, self.registry.wrapped_native]
        return [token.address]

    async def _resolve_key(self, pool: IndexedPool) -> V4PoolKey | None:
        key = await self.position_manager.pool_key(pool.pool_id)
        if key is None:
            # No position minted through the manager yet; trust the indexer row
            try:
                key = V4PoolKey.for_pair(pool.token0, pool.token1, pool.fee, pool.tick_spacing, pool.hooks)
            except ValueError:
                return None
        return key

    async def _load_pools_touching(self, currency: str) -> list[V4PoolKey]:
        rows = await self.indexer.pools_containing(currency)
        usable = [
            row
            for row in rows
            if row.liquidity > 0
            and row.tvl_usd >= self.min_tvl_usd
            and not self.registry.same_asset(row.token0, row.token1)
        ]
        keys = await asyncio.gather(*(self._resolve_key(row) for row in usable))
        result: list[V4PoolKey] = []
        for row, key in zip(usable, keys, strict=True):
            if key is None or not key.contains(currency):
                continue
            self.pool_cache.record_state(
                V4PoolState(key.pool_id, row.liquidity, row.sqrt_price_x96, row.tvl_usd)
            )
            result.append(key)
        return result

    async def pools_touching(self, token: Token) -> list[tuple[str, V4PoolKey]]:
        """(currency as listed in the pool, key) for every pool holding the token."""
        found: list[tuple[str, V4PoolKey]] = []
        for currency in self._variants(token):
            pools = await self.pool_cache.pools_for_pair(
                DexKind.UNISWAP_V4,
                currency,
                currency,
                lambda currency=currency: self._load_pools_touching(currency),
            )
            found.extend((currency, pool) for pool in pools if isinstance(pool, V4PoolKey))
        return found

    async def direct_pools(self, from_token: Token, to_token: Token) -> list[V4PoolKey]:
        """Pools trading the pair directly (native and wrapped interchangeable)."""
        targets = set(self._variants(to_token))

        async def load() -> list[V4PoolKey]:
            touching = await self.pools_touching(from_token)
            return [key for currency, key in touching if key.other(currency) in targets]

        pools = await self.pool_cache.pools_for_pair(
            DexKind.UNISWAP_V4, from_token.address, to_token.address, load
        )
        return [pool for pool in pools if isinstance(pool, V4PoolKey)]

    def _leg(self, key: V4PoolKey, token_in: str) -> Leg:
        return Leg(DexKind.UNISWAP_V4, key, token_in, key.other(token_in))

    def _build(self, from_token: Token, to_token: Token, legs: list[Leg]) -> Path | None:
        try:
            return Path.build(from_token.address, to_token.address, legs, self.registry.wrapped_native)
        except PathError as e:
            logger.debug("v4_path_rejected", reason=str(e))
            return None

    async def find_paths(
        self,
        ctx: RoutingContext,
        from_token: Token,
        to_token: Token,
        max_hops: int,
    ) -> list[Path]:
        from_side, to_side = await asyncio.gather(
            self.pools_touching(from_token), self.pools_touching(to_token)
        )
        to_variants = set(self._variants(to_token))
        paths: dict[str, Path] = {}

        for currency, key in from_side:
            if key.other(currency) in to_variants:
                path = self._build(from_token, to_token, [self._leg(key, currency)])
                if path is not None:
                    paths.setdefault(path.key, path)

        if max_hops >= 2:
            # Second-hop pools keyed by the intermediate currency they list
            by_intermediate: dict[str, list[tuple[str, V4PoolKey]]] = {}
            for currency, key in to_side:
                mid = key.other(currency)
                by_intermediate.setdefault(mid, []).append((mid, key))

            for currency, first in from_side:
                mid = first.other(currency)
                if self.registry.same_asset(mid, from_token.address):
                    continue
                if self.registry.same_asset(mid, to_token.address):
                    continue
                seconds = list(by_intermediate.get(mid, []))
                if self.registry.is_native(mid):
                    seconds += by_intermediate.get(self.registry.wrapped_native, [])
                elif self.registry.is_wrapped_native(mid):
                    seconds += by_intermediate.get(NATIVE_ADDRESS, [])
                for second_in, second in seconds:
                    if second.pool_id == first.pool_id:
                        continue
                    path = self._build(
                        from_token,
                        to_token,
                        [self._leg(first, currency), self._leg(second, second_in)],
                    )
                    if path is not None:
                        paths.setdefault(path.key, path)

        ranked = sorted(paths.values(), key=lambda p: (p.hop_count, -self._tvl(p)))
        ctx.log.debug("v4_paths_found", count=len(ranked))
        return ranked[:MAX_PATHS]

    def _tvl(self, path: Path) -> float:
        states = [self.pool_cache.state(pool_id) for pool_id in path.pool_ids]
        return min((s.tvl_usd if s else 0.0) for s in states)


__all__ = [
    "IndexedPool",
    "V4Indexer",
    "PositionManagerReader",
    "UniswapV4Adapter",
    "POOL_KEYS_SELECTOR",
    "tick_spacing_for_fee",
]
