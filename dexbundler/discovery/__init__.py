"""Route discovery: one adapter per dex family, fanned out concurrently."""

from dexbundler.discovery.balancer_v3 import BalancerSorClient, BalancerV3Adapter
from dexbundler.discovery.base import RouteAdapter
from dexbundler.discovery.direct_v4 import DirectV4Adapter
from dexbundler.discovery.discoverer import DiscoveryResult, RouteDiscoverer
from dexbundler.discovery.oneinch import OneInchAdapter, OneInchClient
from dexbundler.discovery.uniswap_v4 import PositionManagerReader, UniswapV4Adapter, V4Indexer

__all__ = [
    "RouteAdapter",
    "RouteDiscoverer",
    "DiscoveryResult",
    "UniswapV4Adapter",
    "V4Indexer",
    "PositionManagerReader",
    "BalancerV3Adapter",
    "BalancerSorClient",
    "OneInchAdapter",
    "OneInchClient",
    "DirectV4Adapter",
]
