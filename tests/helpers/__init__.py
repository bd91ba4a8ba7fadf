"""Test helpers module for shared test utilities.

This module consolidates common test utilities to reduce duplication:
- constants: Token, account and contract addresses
- fakes: In-memory chain, token source, adapters and quote sources
- factories: Keys, paths, candidates, registries and contexts
"""

from tests.helpers.constants import (
    AAVE,
    BALANCER_POOL,
    BALANCER_POOL_2,
    BUNDLER,
    DAI,
    ENCODER_BALANCER,
    ENCODER_DIRECT_V4,
    ENCODER_ONEINCH,
    ENCODER_V4,
    ENCODERS,
    GNO,
    NATIVE,
    ONE_DAI,
    ONE_ETH,
    ONE_USDC,
    ONEINCH_ROUTER,
    OWNER,
    REGISTRY,
    USDC,
    USDT,
    WETH,
)
from tests.helpers.factories import (
    cp_candidate,
    make_balancer_path,
    make_balancer_route,
    make_candidate,
    make_config,
    make_context,
    make_engine,
    make_oneinch_path,
    make_oneinch_route,
    make_quote,
    make_registry,
    make_v4_key,
    make_v4_path,
    pool_state,
    token,
)
from tests.helpers.fakes import FakeChain, FakeSigner, FakeTokenSource, PoolQuoteSource, StaticAdapter

__all__ = [
    # Constants
    "NATIVE",
    "WETH",
    "USDC",
    "DAI",
    "USDT",
    "AAVE",
    "GNO",
    "OWNER",
    "BUNDLER",
    "REGISTRY",
    "ONEINCH_ROUTER",
    "ENCODER_V4",
    "ENCODER_DIRECT_V4",
    "ENCODER_BALANCER",
    "ENCODER_ONEINCH",
    "ENCODERS",
    "BALANCER_POOL",
    "BALANCER_POOL_2",
    "ONE_ETH",
    "ONE_DAI",
    "ONE_USDC",
    # Fakes
    "FakeChain",
    "FakeSigner",
    "FakeTokenSource",
    "PoolQuoteSource",
    "StaticAdapter",
    # Factories
    "token",
    "make_config",
    "make_registry",
    "make_context",
    "make_v4_key",
    "make_v4_path",
    "pool_state",
    "make_balancer_route",
    "make_balancer_path",
    "make_oneinch_route",
    "make_oneinch_path",
    "make_quote",
    "make_candidate",
    "make_engine",
    "cp_candidate",
]
