"""Tests for V4Quoter calldata and the v4 and aggregator quote sources."""

import asyncio

import pytest
from eth_abi import decode, encode

from dexbundler.constants import BALANCER_STEP_GAS, V4_DIRECT_SWAP_GAS, V4_SWAP_GAS, WRAP_GAS
from dexbundler.models.pools import BalancerRoute
from dexbundler.models.route import QuoteSource
from dexbundler.quoting.aggregators import BalancerQuoteSource, OneInchQuoteSource
from dexbundler.quoting.v4 import (
    QUOTE_EXACT_INPUT_SELECTOR,
    QUOTE_EXACT_INPUT_SINGLE_SELECTOR,
    DirectV4QuoteSource,
    V4QuoteSource,
    decode_quote,
    encode_quote_exact_input_single,
)
from tests.helpers import (
    DAI,
    NATIVE,
    ONE_ETH,
    USDC,
    USDT,
    WETH,
    FakeChain,
    make_balancer_path,
    make_balancer_route,
    make_oneinch_path,
    make_oneinch_route,
    make_registry,
    make_v4_key,
    make_v4_path,
)

QUOTER = "0x52f0e24d1c21c8a0cb1e5a5dd6198556bd9e1203"


def quote_reply(amount_out: int, gas: int) -> bytes:
    return encode(["uint256", "uint256"], [amount_out, gas])


class TestQuoteCalldata:
    def test_single_encodes_direction(self) -> None:
        key = make_v4_key(USDC, WETH)
        data = encode_quote_exact_input_single(key, WETH, 10**18)
        assert data[:4] == QUOTE_EXACT_INPUT_SINGLE_SELECTOR
        ((pool_key, zero_for_one, amount, hook_data),) = decode(
            ["((address,address,uint24,int24,address),bool,uint128,bytes)"], data[4:]
        )
        assert pool_key[2:4] == (3000, 60)
        assert zero_for_one is (key.currency0 == WETH)
        assert amount == 10**18
        assert hook_data == b""

    def test_decode_quote(self) -> None:
        assert decode_quote(quote_reply(5, 6)) == (5, 6)


class TestV4QuoteSource:
    def test_chained_path_uses_exact_input(self) -> None:
        chain = FakeChain()
        chain.respond(QUOTER, QUOTE_EXACT_INPUT_SELECTOR, quote_reply(990, 150_000))
        path = make_v4_path(DAI, USDC, make_v4_key(DAI, USDT), make_v4_key(USDT, USDC))

        quote = asyncio.run(V4QuoteSource(chain, QUOTER).quote(path, 1000, 100))

        assert quote.expected_out == 990
        assert quote.estimated_gas == V4_SWAP_GAS * 2
        assert quote.source is QuoteSource.SIMULATION
        assert quote.stale_at_block == 100
        ((currency, path_keys, amount),) = decode(
            ["(address,(address,uint24,int24,address,bytes)[],uint128)"], chain.calls[0]["data"][4:]
        )
        assert currency.lower() == DAI
        assert [k[0].lower() for k in path_keys] == [USDT, USDC]
        assert amount == 1000

    def test_single_leg_uses_exact_input(self) -> None:
        chain = FakeChain()
        chain.respond(QUOTER, QUOTE_EXACT_INPUT_SELECTOR, quote_reply(42, 400_000))
        path = make_v4_path(DAI, USDC, make_v4_key(DAI, USDC))
        quote = asyncio.run(V4QuoteSource(chain, QUOTER).quote(path, 1000, 7))
        assert quote.expected_out == 42
        assert quote.estimated_gas == 400_000

    def test_wrap_boundary_chains_single_quotes(self) -> None:
        chain = FakeChain()
        chain.respond(
            QUOTER,
            QUOTE_EXACT_INPUT_SINGLE_SELECTOR,
            lambda data, block: quote_reply(
                decode(["((address,address,uint24,int24,address),bool,uint128,bytes)"], data[4:])[0][2] * 2,
                100_000,
            ),
        )
        path = make_v4_path(USDC, DAI, make_v4_key(USDC, WETH), make_v4_key(NATIVE, DAI))

        quote = asyncio.run(V4QuoteSource(chain, QUOTER).quote(path, 1000, 100))

        assert quote.expected_out == 4000
        assert len(chain.calls) == 2
        assert quote.estimated_gas == V4_SWAP_GAS * 2 + WRAP_GAS

    def test_rejects_amount_over_uint128(self) -> None:
        path = make_v4_path(DAI, USDC, make_v4_key(DAI, USDC))
        with pytest.raises(ValueError):
            asyncio.run(V4QuoteSource(FakeChain(), QUOTER).quote(path, 2**128, 100))

    def test_direct_source_quotes_single_pool(self) -> None:
        chain = FakeChain()
        chain.respond(QUOTER, QUOTE_EXACT_INPUT_SINGLE_SELECTOR, quote_reply(77, 50_000))
        path = make_v4_path(NATIVE, USDC, make_v4_key(WETH, USDC))

        quote = asyncio.run(DirectV4QuoteSource(chain, QUOTER).quote(path, ONE_ETH, 100))

        assert quote.expected_out == 77
        assert quote.estimated_gas == V4_DIRECT_SWAP_GAS + WRAP_GAS


class FakeBalancerAdapter:
    def __init__(self, expected_out: int) -> None:
        self.expected_out = expected_out
        self.requests: list[int] = []

    async def route(self, from_token, to_token, amount_in) -> BalancerRoute | None:
        self.requests.append(amount_in)
        return make_balancer_route(from_token.address, to_token.address, amount_in, self.expected_out)


class FakeOneInchAdapter:
    def __init__(self) -> None:
        self.requests: list[int] = []

    async def quote_route(self, from_token, to_token, amount_in):
        self.requests.append(amount_in)
        return make_oneinch_route(amount_in, amount_in * 2)


class TestAggregatorSources:
    def test_balancer_reuses_discovery_amount(self) -> None:
        adapter = FakeBalancerAdapter(0)
        route = make_balancer_route(DAI, USDC, amount_in=1000, expected_out=995)
        source = BalancerQuoteSource(adapter, make_registry())  # type: ignore[arg-type]

        quote = asyncio.run(source.quote(make_balancer_path(DAI, USDC, route), 1000, 100))

        assert quote.expected_out == 995
        assert quote.source is QuoteSource.SOR
        assert quote.estimated_gas == BALANCER_STEP_GAS
        assert adapter.requests == []

    def test_balancer_requotes_other_amount(self) -> None:
        adapter = FakeBalancerAdapter(480)
        route = make_balancer_route(DAI, USDC, amount_in=1000, expected_out=995)
        source = BalancerQuoteSource(adapter, make_registry())  # type: ignore[arg-type]

        quote = asyncio.run(source.quote(make_balancer_path(DAI, USDC, route), 500, 100))

        assert quote.expected_out == 480
        assert adapter.requests == [500]

    def test_oneinch_requotes_other_amount(self) -> None:
        adapter = FakeOneInchAdapter()
        path = make_oneinch_path(DAI, USDC, make_oneinch_route(1000, 1990))
        source = OneInchQuoteSource(adapter)  # type: ignore[arg-type]

        same = asyncio.run(source.quote(path, 1000, 100))
        other = asyncio.run(source.quote(path, 300, 100))

        assert same.expected_out == 1990
        assert same.source is QuoteSource.API
        assert other.expected_out == 600
        assert adapter.requests == [300]
