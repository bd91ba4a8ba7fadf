"""Integration tests against a live Ethereum mainnet node.

These tests require an RPC connection and are skipped by default.
Run with: RPC_URL=https://eth.llamarpc.com pytest -m requires_rpc
"""

import asyncio
import os

import pytest

from dexbundler.constants import USDC, V4_QUOTER
from dexbundler.models.pools import DexKind
from dexbundler.net.rpc import RpcClient
from dexbundler.quoting.v4 import DirectV4QuoteSource, V4QuoteSource
from dexbundler.registry.tokens import OnChainTokenSource
from tests.helpers import NATIVE, ONE_ETH, make_v4_key, make_v4_path

# Skip all tests in this module if RPC_URL is not set
pytestmark = [
    pytest.mark.requires_rpc,
    pytest.mark.skipif(
        not os.environ.get("RPC_URL"),
        reason="RPC_URL environment variable not set",
    ),
]

# Native ETH/USDC pool, 0.05% fee tier
ETH_USDC = make_v4_key(NATIVE, USDC, fee=500, tick_spacing=10)


@pytest.fixture
def rpc_url() -> str:
    """Get RPC URL from environment."""
    url = os.environ.get("RPC_URL")
    if not url:
        pytest.skip("RPC_URL not set")
    return url


def client(url: str) -> RpcClient:
    return RpcClient([url], chain_id=1)


class TestChainAccess:
    def test_mainnet(self, rpc_url: str) -> None:
        async def run() -> int:
            rpc = client(rpc_url)
            await rpc.verify_chain()
            return await rpc.block_number()

        assert asyncio.run(run()) > 20_000_000

    def test_token_metadata(self, rpc_url: str) -> None:
        token = asyncio.run(OnChainTokenSource(client(rpc_url)).fetch_token(USDC))
        assert token is not None
        assert token.decimals == 6
        assert token.symbol == "USDC"


class TestV4Quotes:
    def test_eth_to_usdc(self, rpc_url: str) -> None:
        """1 ETH should be worth between $100 and $100,000."""

        async def run():
            rpc = client(rpc_url)
            block = await rpc.block_number()
            quote = await V4QuoteSource(rpc, V4_QUOTER).quote(
                make_v4_path(NATIVE, USDC, ETH_USDC), ONE_ETH, block
            )
            return block, quote

        block, quote = asyncio.run(run())
        assert 100 * 10**6 < quote.expected_out < 100_000 * 10**6
        assert quote.stale_at_block == block
        assert quote.estimated_gas > 0

    def test_direct_quote_agrees_with_router(self, rpc_url: str) -> None:
        async def run():
            rpc = client(rpc_url)
            block = await rpc.block_number()
            router = await V4QuoteSource(rpc, V4_QUOTER).quote(
                make_v4_path(NATIVE, USDC, ETH_USDC), ONE_ETH, block
            )
            direct = await DirectV4QuoteSource(rpc, V4_QUOTER).quote(
                make_v4_path(NATIVE, USDC, ETH_USDC, dex=DexKind.DIRECT_V4), ONE_ETH, block
            )
            return router, direct

        router, direct = asyncio.run(run())
        assert direct.expected_out == router.expected_out
