"""Wires the engine's components from an EngineConfig."""

from __future__ import annotations

from functools import lru_cache

import structlog

from dexbundler.config import EngineConfig
from dexbundler.discovery.balancer_v3 import BalancerSorClient, BalancerV3Adapter
from dexbundler.discovery.base import RouteAdapter
from dexbundler.discovery.direct_v4 import DirectV4Adapter
from dexbundler.discovery.discoverer import RouteDiscoverer
from dexbundler.discovery.oneinch import OneInchAdapter, OneInchClient
from dexbundler.discovery.uniswap_v4 import PositionManagerReader, UniswapV4Adapter, V4Indexer
from dexbundler.engine import Engine
from dexbundler.execution.executor import BundleExecutor
from dexbundler.models.pools import DexKind
from dexbundler.net.http import JsonApiClient
from dexbundler.net.rpc import RpcClient
from dexbundler.quoting.aggregators import BalancerQuoteSource, OneInchQuoteSource
from dexbundler.quoting.quoter import PathQuoteSource, Quoter
from dexbundler.quoting.v4 import DirectV4QuoteSource, V4QuoteSource
from dexbundler.registry.pools import PoolCache
from dexbundler.registry.tokens import OnChainTokenSource, TokenRegistry

logger = structlog.get_logger()


def build_engine(config: EngineConfig) -> Engine:
    """Build an engine talking to the configured RPC providers and APIs.

    Adapters whose upstream is not configured are left out.
    """
    rpc = RpcClient(config.rpc_urls, chain_id=config.chain_id, request_timeout=config.rpc_timeout)
    registry = TokenRegistry(
        OnChainTokenSource(rpc),
        wrapped_native=config.wrapped_native,
        ttl=config.token_ttl,
        attempts=config.retry_attempts,
        base_delay=config.retry_base_delay,
        max_delay=config.retry_max_delay,
    )
    pool_cache = PoolCache(config.pool_ttl)

    adapters: list[RouteAdapter] = []
    sources: dict[DexKind, PathQuoteSource] = {}
    if config.uniswap_indexer_url:
        indexer = V4Indexer(
            JsonApiClient("uniswap_indexer", config.uniswap_indexer_url, timeout=config.http_timeout)
        )
        v4 = UniswapV4Adapter(
            indexer,
            PositionManagerReader(rpc, config.position_manager),
            registry,
            pool_cache,
            min_tvl_usd=config.min_pool_tvl_usd,
        )
        adapters += [v4, DirectV4Adapter(v4)]
        sources[DexKind.UNISWAP_V4] = V4QuoteSource(rpc, config.v4_quoter)
        sources[DexKind.DIRECT_V4] = DirectV4QuoteSource(rpc, config.v4_quoter)

    if config.balancer_api_url:
        sor = BalancerSorClient(
            JsonApiClient("balancer_api", config.balancer_api_url, timeout=config.http_timeout),
            config.balancer_chain,
        )
        balancer = BalancerV3Adapter(sor, registry, config.balancer_router)
        adapters.append(balancer)
        sources[DexKind.BALANCER_V3] = BalancerQuoteSource(balancer, registry)

    oneinch: OneInchAdapter | None = None
    if config.oneinch_api_key:
        api = JsonApiClient(
            "oneinch",
            f"{config.oneinch_api_url.rstrip('/')}/{config.chain_id}",
            headers={"Authorization": f"Bearer {config.oneinch_api_key}"},
            timeout=config.http_timeout,
        )
        oneinch = OneInchAdapter(OneInchClient(api), registry, config.slippage_bips)
        adapters.append(oneinch)
        sources[DexKind.ONEINCH] = OneInchQuoteSource(oneinch)

    relay = (
        JsonApiClient("relay", config.relay_url, timeout=config.http_timeout)
        if config.relay_url
        else None
    )
    logger.info(
        "engine_built",
        chain_id=config.chain_id,
        adapters=[adapter.kind.value for adapter in adapters],
        relay=relay is not None,
    )
    return Engine(
        registry,
        RouteDiscoverer(
            adapters,
            adapter_timeout=config.adapter_timeout,
            deadline=config.discovery_deadline,
        ),
        Quoter(
            sources,
            rpc,
            pool_cache,
            max_quote_age_blocks=config.max_quote_age_blocks,
        ),
        config=config,
        executor=BundleExecutor(rpc, config, relay),
        oneinch=oneinch,
        chain=rpc,
    )


@lru_cache(maxsize=1)
def get_default_engine() -> Engine:
    """Process-wide engine configured from ``DEXBUNDLER_*`` variables."""
    return build_engine(EngineConfig.from_env())


__all__ = ["build_engine", "get_default_engine"]
