"""Tests for the engine pipeline over fake adapters and quote sources."""

import asyncio
from dataclasses import dataclass, field, replace

from eth_abi import encode

from dexbundler.constants import V4_QUOTER
from dexbundler.context import RoutingContext
from dexbundler.discovery.discoverer import RouteDiscoverer
from dexbundler.engine import Engine
from dexbundler.errors import CallReverted, ErrorCode
from dexbundler.execution.bundler import (
    ALLOWANCE_SELECTOR,
    EXECUTE_BUNDLE_SELECTOR,
    READ_ADDRESS_SELECTOR,
)
from dexbundler.execution.executor import BundleExecutor
from dexbundler.execution.local import ConstantProductPool
from dexbundler.models.pools import DexKind
from dexbundler.models.route import QuoteSource
from dexbundler.models.tokens import Token
from dexbundler.quoting.quoter import Quoter
from dexbundler.quoting.v4 import QUOTE_EXACT_INPUT_SELECTOR, V4QuoteSource
from dexbundler.registry.pools import PoolCache
from tests.helpers import (
    BUNDLER,
    DAI,
    ENCODER_ONEINCH,
    NATIVE,
    ONE_DAI,
    ONEINCH_ROUTER,
    OWNER,
    REGISTRY,
    USDC,
    USDT,
    WETH,
    FakeChain,
    FakeSigner,
    PoolQuoteSource,
    StaticAdapter,
    make_config,
    make_oneinch_path,
    make_oneinch_route,
    make_registry,
    make_v4_key,
    make_v4_path,
    pool_state,
)
from tests.helpers import make_engine as make_local_engine

DAI_USDC = make_v4_key(DAI, USDC)
DAI_USDT = make_v4_key(DAI, USDT)
USDT_USDC = make_v4_key(USDT, USDC)

DIRECT = make_v4_path(DAI, USDC, DAI_USDC)
TWO_HOP = make_v4_path(DAI, USDC, DAI_USDT, USDT_USDC)

DAI_USDC_LOW_FEE = make_v4_key(DAI, USDC, 500, 10)
WETH_USDC = make_v4_key(WETH, USDC)
DIRECT_LOW_FEE = make_v4_path(DAI, USDC, DAI_USDC_LOW_FEE)
WETH_DIRECT = make_v4_path(WETH, USDC, WETH_USDC)


def local_pools() -> dict[str, ConstantProductPool]:
    return {
        DAI_USDC.pool_id: ConstantProductPool(DAI, USDC, 10**24, 10**12),
        DAI_USDT.pool_id: ConstantProductPool(DAI, USDT, 10**24, 10**12),
        USDT_USDC.pool_id: ConstantProductPool(USDT, USDC, 10**12, 10**12),
        ONEINCH_ROUTER: ConstantProductPool(DAI, USDC, 10**24, 10**12),
    }


def make_engine(adapters: list[StaticAdapter], source=None, **kwargs) -> Engine:
    return make_local_engine(adapters, source, pools=local_pools(), **kwargs)


def v4_adapter(*paths) -> StaticAdapter:
    return StaticAdapter(DexKind.UNISWAP_V4, list(paths))


@dataclass
class ConfirmingSource:
    """First quote per path is unconfirmed; later quotes of ``broken`` paths revert."""

    inner: PoolQuoteSource
    broken: set[str] = field(default_factory=set)
    seen: set[str] = field(default_factory=set)

    async def quote(self, path, amount_in, block):
        quote = await self.inner.quote(path, amount_in, block)
        if path.key not in self.seen:
            self.seen.add(path.key)
            return replace(quote, source=QuoteSource.CONSTANT_PRODUCT)
        if path.key in self.broken:
            raise CallReverted("execution reverted")
        return quote


@dataclass
class FakeOneInch:
    """Rebuilds 1inch calldata for the allocated amount."""

    calls: list[tuple[int, str, str | None]] = field(default_factory=list)

    async def materialize(self, path, amount_in, bundler, owner):
        self.calls.append((amount_in, bundler, owner))
        old = path.legs[0].pool
        return make_oneinch_path(path.from_token, path.to_token, make_oneinch_route(amount_in, old.expected_out))


class TestQuote:
    def test_best_single_route(self) -> None:
        engine = make_engine([v4_adapter(TWO_HOP, DIRECT)])
        route = asyncio.run(engine.quote(DAI, USDC, ONE_DAI)).unwrap()

        expected = local_pools()[DAI_USDC.pool_id].quote(DAI, ONE_DAI)
        assert [entry.path.key for entry in route.allocation.entries] == [DIRECT.key]
        assert route.expected_out == expected
        assert route.block_number == 100
        assert route.used_dexes == (DexKind.UNISWAP_V4,)
        assert route.responded == (DexKind.UNISWAP_V4,)
        assert route.min_final_output == expected * (10_000 - make_config().slippage_bips) // 10_000

    def test_bundle_matches_route(self) -> None:
        engine = make_engine([v4_adapter(DIRECT)])
        route = asyncio.run(engine.quote(DAI, USDC, ONE_DAI)).unwrap()
        descriptor = route.bundle.descriptor

        assert descriptor.from_token == DAI
        assert descriptor.to_token == USDC
        assert descriptor.from_amount == ONE_DAI
        assert descriptor.leg_count == 1

    def test_compose_can_be_skipped(self) -> None:
        engine = make_engine([v4_adapter(DIRECT)])
        route = asyncio.run(engine.quote(DAI, USDC, ONE_DAI, compose=False)).unwrap()
        assert route.bundle is None
        assert route.min_final_output == 0

    def test_failed_quotes_are_reported(self) -> None:
        source = PoolQuoteSource(local_pools(), reverting={DAI_USDC.pool_id})
        engine = make_engine([v4_adapter(DIRECT, TWO_HOP)], source)
        route = asyncio.run(engine.quote(DAI, USDC, ONE_DAI)).unwrap()

        assert [entry.path.key for entry in route.allocation.entries] == [TWO_HOP.key]
        assert route.quote_failures == {DIRECT.key: "Quote simulation reverted"}

    def test_slow_adapter_does_not_block(self) -> None:
        slow = StaticAdapter(DexKind.BALANCER_V3, [DIRECT], delay=1.0)
        engine = make_engine([slow, v4_adapter(TWO_HOP)], adapter_timeout=0.05)
        route = asyncio.run(engine.quote(DAI, USDC, ONE_DAI)).unwrap()

        assert route.responded == (DexKind.UNISWAP_V4,)
        assert [entry.path.key for entry in route.allocation.entries] == [TWO_HOP.key]


class TestConfirmation:
    def test_unconfirmed_quotes_are_requoted(self) -> None:
        inner = PoolQuoteSource(local_pools())
        engine = make_engine([v4_adapter(DIRECT)], ConfirmingSource(inner))
        route = asyncio.run(engine.quote(DAI, USDC, ONE_DAI)).unwrap()

        (entry,) = route.allocation.entries
        assert entry.candidate.quote.source is QuoteSource.SIMULATION
        assert len(inner.calls) == 2

    def test_failed_confirmation_reruns_allocation(self) -> None:
        source = ConfirmingSource(PoolQuoteSource(local_pools()), broken={DIRECT.key})
        engine = make_engine([v4_adapter(DIRECT, TWO_HOP)], source)
        route = asyncio.run(engine.quote(DAI, USDC, ONE_DAI)).unwrap()

        assert [entry.path.key for entry in route.allocation.entries] == [TWO_HOP.key]
        assert route.bundle is not None

    def test_nothing_survives_confirmation(self) -> None:
        source = ConfirmingSource(PoolQuoteSource(local_pools()), broken={DIRECT.key})
        engine = make_engine([v4_adapter(DIRECT)], source)
        result = asyncio.run(engine.quote(DAI, USDC, ONE_DAI))
        assert result.code is ErrorCode.NO_ROUTE


class TestOneInchCalldata:
    path = make_oneinch_path(DAI, USDC, make_oneinch_route(0, 997_000, calldata="0x"))

    def adapter(self) -> StaticAdapter:
        return StaticAdapter(DexKind.ONEINCH, [self.path])

    def test_deferred_without_bundler(self) -> None:
        engine = make_engine([self.adapter()], oneinch=FakeOneInch())
        route = asyncio.run(engine.quote(DAI, USDC, ONE_DAI)).unwrap()
        assert route.bundle is None
        assert route.used_dexes == (DexKind.ONEINCH,)

    def test_materialized_for_bundler(self) -> None:
        oneinch = FakeOneInch()
        engine = make_engine([self.adapter()], oneinch=oneinch)
        route = asyncio.run(engine.quote(DAI, USDC, ONE_DAI, owner=OWNER, bundler=BUNDLER)).unwrap()

        assert oneinch.calls == [(ONE_DAI, BUNDLER, OWNER)]
        assert route.bundle.descriptor.encoder_targets == (ENCODER_ONEINCH,)


class TestQueryFailures:
    def quote(self, engine: Engine, from_token: str = DAI, to_token: str = USDC, amount: int = ONE_DAI):
        return asyncio.run(engine.quote(from_token, to_token, amount))

    def test_unknown_token(self) -> None:
        result = self.quote(make_engine([v4_adapter(DIRECT)]), from_token="0x" + "99" * 20)
        assert result.code is ErrorCode.UNKNOWN_TOKEN

    def test_same_asset(self) -> None:
        result = self.quote(make_engine([v4_adapter(DIRECT)]), NATIVE, WETH)
        assert result.code is ErrorCode.NO_ROUTE

    def test_non_positive_amount(self) -> None:
        assert self.quote(make_engine([v4_adapter(DIRECT)]), amount=0).code is ErrorCode.NO_ROUTE

    def test_no_paths(self) -> None:
        assert self.quote(make_engine([v4_adapter()])).code is ErrorCode.NO_ROUTE

    def test_every_adapter_timed_out(self) -> None:
        slow = StaticAdapter(DexKind.UNISWAP_V4, [DIRECT], delay=1.0)
        result = self.quote(make_engine([slow], adapter_timeout=0.05))
        assert result.code is ErrorCode.TIMEOUT

    def test_every_quote_failed(self) -> None:
        source = PoolQuoteSource(local_pools(), reverting={DAI_USDC.pool_id, DAI_USDT.pool_id})
        result = self.quote(make_engine([v4_adapter(DIRECT, TWO_HOP)], source))
        assert result.code is ErrorCode.QUOTE_FAILED
        assert set(result.failure.details["failures"]) == {DIRECT.key, TWO_HOP.key}

    def test_chain_unavailable(self) -> None:
        chain = FakeChain()
        chain.unavailable = True
        result = self.quote(make_engine([v4_adapter(DIRECT)], chain=chain))
        assert result.code is ErrorCode.UNAVAILABLE

    def test_undecodable_quote_reply(self) -> None:
        chain = FakeChain()
        chain.respond(V4_QUOTER, QUOTE_EXACT_INPUT_SELECTOR, b"")
        engine = make_engine([v4_adapter(DIRECT)], V4QuoteSource(chain, V4_QUOTER), chain=chain)

        result = self.quote(engine)

        assert result.code is ErrorCode.QUOTE_FAILED
        assert result.failure.details["failures"] == {DIRECT.key: "Quote rejected"}


class TestGasInOutputUnits:
    """DAI -> USDC over two equal pools; gas is priced through a WETH/USDC pool."""

    AMOUNT = 100 * ONE_DAI

    def engine(self, *paths, chain: FakeChain | None = None) -> tuple[Engine, StaticAdapter]:
        pools = {
            DAI_USDC.pool_id: ConstantProductPool(DAI, USDC, 10**24, 10**12),
            DAI_USDC_LOW_FEE.pool_id: ConstantProductPool(DAI, USDC, 10**24, 10**12),
            # ~3000 USDC per ether
            WETH_USDC.pool_id: ConstantProductPool(WETH, USDC, 10**21, 3 * 10**12),
        }
        cache = PoolCache()
        cache.record_state(pool_state(DAI_USDC, 10**24, 10**12))
        cache.record_state(pool_state(DAI_USDC_LOW_FEE, 10**24, 10**12))
        chain = chain or FakeChain(gas_price=10**9)
        adapter = StaticAdapter(DexKind.UNISWAP_V4, list(paths), by_pair=True)
        config = make_config()
        engine = Engine(
            make_registry(),
            RouteDiscoverer([adapter], adapter_timeout=1.0, deadline=config.discovery_deadline),
            Quoter({DexKind.UNISWAP_V4: PoolQuoteSource(pools)}, chain, cache),
            config=config,
            chain=chain,
        )
        return engine, adapter

    def quote(self, engine: Engine):
        return asyncio.run(engine.quote(DAI, USDC, self.AMOUNT)).unwrap()

    def test_splits_when_gas_cannot_be_priced(self) -> None:
        engine, _ = self.engine(DIRECT, DIRECT_LOW_FEE)
        route = self.quote(engine)
        assert route.mode == "split"
        assert len(route.allocation.entries) == 2

    def test_gas_priced_in_output_outweighs_split(self) -> None:
        engine, _ = self.engine(DIRECT, DIRECT_LOW_FEE, WETH_DIRECT)
        route = self.quote(engine)
        assert route.mode == "single_better"
        assert route.allocation.is_single_route

    def test_gas_rate_is_reused(self) -> None:
        engine, adapter = self.engine(DIRECT, DIRECT_LOW_FEE, WETH_DIRECT)

        async def two_queries() -> None:
            await engine.quote(DAI, USDC, self.AMOUNT)
            await engine.quote(DAI, USDC, self.AMOUNT)

        asyncio.run(two_queries())
        # Two routing discoveries and one WETH/USDC rate discovery
        assert adapter.calls == 3

    def test_ether_output_uses_gas_price_directly(self) -> None:
        chain = FakeChain(gas_price=10**9)
        engine, adapter = self.engine(chain=chain)
        ctx = RoutingContext(
            from_token=Token(DAI, 18, "DAI"),
            to_token=Token(WETH, 18, "WETH"),
            amount_in=self.AMOUNT,
        )
        assert asyncio.run(engine._gas_price_in_output(ctx)) == 10**9
        assert adapter.calls == 0


def execution_chain() -> FakeChain:
    chain = FakeChain()
    chain.respond(REGISTRY, READ_ADDRESS_SELECTOR, encode(["address"], [BUNDLER]))
    chain.respond(DAI, ALLOWANCE_SELECTOR, encode(["uint256"], [10**30]))
    chain.respond(BUNDLER, EXECUTE_BUNDLE_SELECTOR, b"")
    chain.receipt = {"status": 1, "gasUsed": 150_000, "blockNumber": 101, "logs": []}
    return chain


class TestExecute:
    def test_routes_and_submits(self) -> None:
        chain = execution_chain()
        config = make_config(bundler_registry=REGISTRY)
        engine = make_engine(
            [v4_adapter(DIRECT)], chain=chain, config=config, executor=BundleExecutor(chain, config)
        )
        signer = FakeSigner(OWNER)
        outcome = asyncio.run(engine.execute(DAI, USDC, ONE_DAI, signer)).unwrap()

        assert outcome.result.success
        assert outcome.route.bundle is not None
        assert len(signer.signed) == 1
        assert chain.sent == [b"\x02signed"]

    def test_without_executor(self) -> None:
        engine = make_engine([v4_adapter(DIRECT)])
        result = asyncio.run(engine.execute(DAI, USDC, ONE_DAI, FakeSigner(OWNER)))
        assert result.code is ErrorCode.EXECUTION

    def test_routing_failure_is_returned(self) -> None:
        chain = execution_chain()
        config = make_config(bundler_registry=REGISTRY)
        engine = make_engine([v4_adapter()], chain=chain, config=config, executor=BundleExecutor(chain, config))
        result = asyncio.run(engine.execute(DAI, USDC, ONE_DAI, FakeSigner(OWNER)))
        assert result.code is ErrorCode.NO_ROUTE
        assert chain.sent == []

    def test_uncomposable_route(self) -> None:
        chain = execution_chain()
        config = make_config(bundler_registry=REGISTRY)
        path = make_oneinch_path(DAI, USDC, make_oneinch_route(0, 997_000, calldata="0x"))
        engine = make_engine(
            [StaticAdapter(DexKind.ONEINCH, [path])],
            chain=chain,
            config=config,
            executor=BundleExecutor(chain, config),
        )
        result = asyncio.run(engine.execute(DAI, USDC, ONE_DAI, FakeSigner(OWNER)))
        assert result.code is ErrorCode.COMPOSE_ERROR

    def test_receipt_failure_keeps_tx_hash(self) -> None:
        chain = execution_chain()
        chain.receipt = ConnectionError("provider dropped")
        config = make_config(bundler_registry=REGISTRY)
        engine = make_engine(
            [v4_adapter(DIRECT)], chain=chain, config=config, executor=BundleExecutor(chain, config)
        )
        result = asyncio.run(engine.execute(DAI, USDC, ONE_DAI, FakeSigner(OWNER)))

        assert result.code is ErrorCode.UNAVAILABLE
        assert result.failure.details["tx_hash"] == "0x" + "ab" * 32
        assert chain.sent == [b"\x02signed"]
