"""Token & pool registry: the only mutable state shared across queries."""

from dexbundler.registry.cache import TtlCache
from dexbundler.registry.pools import PoolCache, pair_key
from dexbundler.registry.tokens import KNOWN_TOKENS, OnChainTokenSource, TokenRegistry, TokenSource

__all__ = [
    "TtlCache",
    "PoolCache",
    "pair_key",
    "KNOWN_TOKENS",
    "OnChainTokenSource",
    "TokenRegistry",
    "TokenSource",
]
