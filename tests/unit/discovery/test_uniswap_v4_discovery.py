"""Tests for Uniswap v4 discovery: indexer, position manager and path joins."""

import asyncio

import httpx
from eth_abi import encode

from dexbundler.discovery.direct_v4 import DirectV4Adapter
from dexbundler.discovery.uniswap_v4 import (
    POOL_KEYS_SELECTOR,
    IndexedPool,
    PositionManagerReader,
    UniswapV4Adapter,
    V4Indexer,
    tick_spacing_for_fee,
)
from dexbundler.models.pools import Q96, DexKind, V4PoolKey
from dexbundler.models.route import WrapOp
from dexbundler.models.tokens import ZERO_ADDRESS
from dexbundler.net.http import JsonApiClient
from dexbundler.registry.pools import PoolCache
from tests.helpers import DAI, NATIVE, USDC, WETH, FakeChain, make_context, make_registry, make_v4_key, token

POSITION_MANAGER = "0xbd216513d74c8cf14cf4747e6aaa6420ff64ee9e"


def indexed(key: V4PoolKey, liquidity: int = 10**18, tvl: float = 1e6) -> IndexedPool:
    return IndexedPool(
        pool_id=key.pool_id,
        token0=key.currency0,
        token1=key.currency1,
        fee=key.fee,
        tick_spacing=key.tick_spacing,
        hooks=key.hooks,
        liquidity=liquidity,
        sqrt_price_x96=Q96,
        tvl_usd=tvl,
    )


class FakeIndexer:
    def __init__(self, rows: list[IndexedPool]) -> None:
        self.rows = rows
        self.queries: list[str] = []

    async def pools_containing(self, token: str) -> list[IndexedPool]:
        self.queries.append(token)
        return [row for row in self.rows if token in (row.token0, row.token1)]


class FakePositionManager:
    """Knows no keys, so the adapter trusts the indexer rows."""

    async def pool_key(self, pool_id: str) -> V4PoolKey | None:
        return None


USDC_WETH = make_v4_key(USDC, WETH, 3000)
WETH_DAI = make_v4_key(WETH, DAI, 500, 10)
USDC_DAI = make_v4_key(USDC, DAI, 100, 1)
USDC_DAI_THIN = make_v4_key(USDC, DAI, 3000)
NATIVE_USDC = make_v4_key(NATIVE, USDC, 500, 10)


def make_adapter(rows: list[IndexedPool]) -> tuple[UniswapV4Adapter, FakeIndexer, PoolCache]:
    indexer = FakeIndexer(rows)
    cache = PoolCache()
    adapter = UniswapV4Adapter(
        indexer,  # type: ignore[arg-type]
        FakePositionManager(),  # type: ignore[arg-type]
        make_registry(),
        cache,
        min_tvl_usd=10_000.0,
    )
    return adapter, indexer, cache


def find(adapter, from_token: str, to_token: str, max_hops: int = 2):
    ctx = make_context(from_token, to_token, 10**6)
    return asyncio.run(adapter.find_paths(ctx, token(from_token), token(to_token), max_hops))


class TestUniswapV4Adapter:
    def test_direct_and_two_hop_paths(self) -> None:
        adapter, _, _ = make_adapter(
            [indexed(USDC_WETH), indexed(WETH_DAI), indexed(USDC_DAI), indexed(USDC_DAI_THIN, tvl=10.0)]
        )
        paths = find(adapter, USDC, DAI)

        assert [p.pool_ids for p in paths] == [
            (USDC_DAI.pool_id,),
            (USDC_WETH.pool_id, WETH_DAI.pool_id),
        ]
        assert all(leg.dex is DexKind.UNISWAP_V4 for p in paths for leg in p.legs)
        assert paths[1].legs[1].input_token == WETH

    def test_max_hops_one(self) -> None:
        adapter, _, _ = make_adapter([indexed(USDC_WETH), indexed(WETH_DAI), indexed(USDC_DAI)])
        paths = find(adapter, USDC, DAI, max_hops=1)
        assert [p.hop_count for p in paths] == [1]

    def test_low_tvl_and_empty_pools_skipped(self) -> None:
        adapter, _, _ = make_adapter(
            [indexed(USDC_DAI_THIN, tvl=10.0), indexed(USDC_DAI, liquidity=0)]
        )
        assert find(adapter, USDC, DAI) == []

    def test_native_input_uses_native_and_wrapped_pools(self) -> None:
        adapter, _, _ = make_adapter([indexed(NATIVE_USDC), indexed(USDC_WETH)])
        paths = find(adapter, NATIVE, USDC, max_hops=1)

        by_pool = {p.pool_ids[0]: p for p in paths}
        assert set(by_pool) == {NATIVE_USDC.pool_id, USDC_WETH.pool_id}
        assert by_pool[NATIVE_USDC.pool_id].legs[0].wrap_op is WrapOp.NONE
        assert by_pool[USDC_WETH.pool_id].legs[0].wrap_op is WrapOp.WRAP_NATIVE

    def test_records_pool_state(self) -> None:
        adapter, _, cache = make_adapter([indexed(USDC_DAI)])
        find(adapter, USDC, DAI)
        state = cache.state(USDC_DAI.pool_id)
        assert state is not None
        assert state.liquidity == 10**18

    def test_indexer_results_cached(self) -> None:
        adapter, indexer, _ = make_adapter([indexed(USDC_DAI)])
        find(adapter, USDC, DAI)
        queries = len(indexer.queries)
        find(adapter, USDC, DAI)
        assert len(indexer.queries) == queries


class TestDirectV4Adapter:
    def test_single_leg_direct_paths(self) -> None:
        v4, _, _ = make_adapter([indexed(USDC_WETH), indexed(WETH_DAI), indexed(USDC_DAI)])
        adapter = DirectV4Adapter(v4)
        paths = find(adapter, USDC, DAI)

        assert len(paths) == 1
        assert paths[0].legs[0].dex is DexKind.DIRECT_V4
        assert paths[0].pool_ids == (USDC_DAI.pool_id,)

    def test_wrapped_pool_for_native_output(self) -> None:
        v4, _, _ = make_adapter([indexed(USDC_WETH)])
        paths = find(DirectV4Adapter(v4), USDC, NATIVE)
        assert len(paths) == 1
        assert paths[0].legs[0].wrap_op is WrapOp.UNWRAP_WRAPPED


class TestPositionManagerReader:
    def test_reads_key_by_truncated_id(self) -> None:
        chain = FakeChain()
        key = make_v4_key(USDC, WETH, 3000)
        chain.respond(
            POSITION_MANAGER,
            POOL_KEYS_SELECTOR,
            encode(
                ["address", "address", "uint24", "int24", "address"],
                [key.currency0, key.currency1, 3000, 60, ZERO_ADDRESS],
            ),
        )
        reader = PositionManagerReader(chain, POSITION_MANAGER)

        async def read_twice():
            return await reader.pool_key(key.pool_id), await reader.pool_key(key.pool_id)

        first, second = asyncio.run(read_twice())
        assert first == key
        assert second == key
        assert len(chain.calls) == 1
        assert chain.calls[0]["data"][4:29] == bytes.fromhex(key.pool_id[2:])[:25]

    def test_unregistered_id_returns_none(self) -> None:
        chain = FakeChain()
        chain.respond(
            POSITION_MANAGER,
            POOL_KEYS_SELECTOR,
            encode(
                ["address", "address", "uint24", "int24", "address"],
                [ZERO_ADDRESS, ZERO_ADDRESS, 0, 0, ZERO_ADDRESS],
            ),
        )
        reader = PositionManagerReader(chain, POSITION_MANAGER)
        assert asyncio.run(reader.pool_key("0x" + "12" * 32)) is None


class TestV4Indexer:
    def test_parses_rows(self) -> None:
        def handler(request: httpx.Request) -> httpx.Response:
            return httpx.Response(
                200,
                json={
                    "data": {
                        "pools": [
                            {
                                "id": "0xABC",
                                "feeTier": "3000",
                                "tickSpacing": None,
                                "hooks": None,
                                "liquidity": "123",
                                "sqrtPrice": str(Q96),
                                "totalValueLockedUSD": "5000000.5",
                                "token0": {"id": USDC},
                                "token1": {"id": WETH},
                            }
                        ]
                    }
                },
            )

        api = JsonApiClient("indexer", "https://indexer.example", transport=httpx.MockTransport(handler))
        rows = asyncio.run(V4Indexer(api).pools_containing(USDC))

        assert len(rows) == 1
        row = rows[0]
        assert row.pool_id == "0xabc"
        assert row.fee == 3000
        assert row.tick_spacing == tick_spacing_for_fee(3000) == 60
        assert row.hooks == ZERO_ADDRESS
        assert row.liquidity == 123
        assert row.tvl_usd == 5000000.5
