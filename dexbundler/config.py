"""Engine configuration.

All settings live in one frozen dataclass so that tests can build variants
with ``dataclasses.replace`` and production reads them from the environment.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field

from dexbundler.constants import (
    BALANCER_V3_ROUTER,
    DEFAULT_SLIPPAGE_BIPS,
    MAX_CONCURRENT_PATHS,
    MAX_HOPS,
    MAX_QUOTE_AGE_BLOCKS,
    MIN_FRACTION_BIPS,
    SINGLE_ROUTE_MARGIN_BIPS,
    SPLIT_SAMPLES,
    V4_POOL_MANAGER,
    V4_POSITION_MANAGER,
    V4_QUOTER,
    WETH,
)
from dexbundler.models.types import normalize_address

ENV_PREFIX = "DEXBUNDLER_"


@dataclass(frozen=True)
class EngineConfig:
    """Centralized configuration for routing and execution.

    Attributes:
        chain_id: Chain the engine is bound to (checked against RPC at startup)
        rpc_urls: JSON-RPC providers in failover order
        wrapped_native: Wrapped native token of the chain
        encoders: Encoder contract address per dex kind value
        bundler_registry: Registry contract mapping owner -> bundler
        relay_url: Optional private relay for transaction submission
        slippage_bips: Slippage applied to confirmed quotes for min outputs
        adapter_timeout: Per-adapter discovery timeout (seconds)
        discovery_deadline: Deadline for the whole discovery fan-out (seconds)
        query_deadline: Wall-clock deadline for one routing query (seconds)
        confirmation_timeout: Receipt wait after submission (seconds)
        gas_rate_ttl: How long a WETH to output-token gas rate is reused (seconds)
    """

    chain_id: int = 1
    rpc_urls: tuple[str, ...] = ()
    rpc_timeout: float = 10.0
    wrapped_native: str = WETH

    # Upstream APIs
    uniswap_indexer_url: str = ""
    balancer_api_url: str = "https://api-v3.balancer.fi/"
    balancer_chain: str = "MAINNET"
    oneinch_api_url: str = "https://api.1inch.dev/swap/v6.0"
    oneinch_api_key: str | None = None
    http_timeout: float = 10.0

    # On-chain collaborators
    pool_manager: str = V4_POOL_MANAGER
    position_manager: str = V4_POSITION_MANAGER
    v4_quoter: str = V4_QUOTER
    balancer_router: str = BALANCER_V3_ROUTER
    encoders: dict[str, str] = field(default_factory=dict)
    bundler_registry: str | None = None
    relay_url: str | None = None

    # Routing limits
    max_hops: int = MAX_HOPS
    min_fraction_bips: int = MIN_FRACTION_BIPS
    max_concurrent_paths: int = MAX_CONCURRENT_PATHS
    single_route_margin_bips: int = SINGLE_ROUTE_MARGIN_BIPS
    split_samples: int = SPLIT_SAMPLES
    slippage_bips: int = DEFAULT_SLIPPAGE_BIPS
    max_quote_age_blocks: int = MAX_QUOTE_AGE_BLOCKS
    min_pool_tvl_usd: float = 10_000.0
    # WETH amount (wei) quoted into non-ether outputs to price gas
    gas_rate_reference: int = 10**18
    gas_rate_ttl: float = 60.0

    # Timeouts (seconds)
    adapter_timeout: float = 3.0
    discovery_deadline: float = 6.0
    query_deadline: float = 8.0
    confirmation_timeout: float = 120.0

    # Registry cache and retry
    token_ttl: float = 3600.0
    pool_ttl: float = 60.0
    retry_attempts: int = 3
    retry_base_delay: float = 1.0
    retry_max_delay: float = 10.0

    def encoder_for(self, dex: str) -> str | None:
        """Encoder contract configured for a dex kind value, if any."""
        address = self.encoders.get(dex)
        return normalize_address(address) if address else None

    @classmethod
    def from_env(cls, environ: dict[str, str] | None = None) -> EngineConfig:
        """Build a config from ``DEXBUNDLER_*`` environment variables.

        Unset variables keep their defaults. Encoder addresses are read from
        ``DEXBUNDLER_ENCODER_<KIND>`` (e.g. ``DEXBUNDLER_ENCODER_UNISWAP_V4``).
        """
        env = os.environ if environ is None else environ
        defaults = cls()

        def get(name: str) -> str | None:
            value = env.get(ENV_PREFIX + name)
            return value if value else None

        def get_int(name: str, default: int) -> int:
            value = get(name)
            return int(value) if value is not None else default

        def get_float(name: str, default: float) -> float:
            value = get(name)
            return float(value) if value is not None else default

        encoders = {
            key[len(ENV_PREFIX + "ENCODER_") :].lower(): value
            for key, value in env.items()
            if key.startswith(ENV_PREFIX + "ENCODER_") and value
        }
        rpc_urls = tuple(url.strip() for url in (get("RPC_URLS") or "").split(",") if url.strip())

        return cls(
            chain_id=get_int("CHAIN_ID", defaults.chain_id),
            rpc_urls=rpc_urls,
            rpc_timeout=get_float("RPC_TIMEOUT", defaults.rpc_timeout),
            wrapped_native=normalize_address(get("WRAPPED_NATIVE") or defaults.wrapped_native),
            uniswap_indexer_url=get("UNISWAP_INDEXER_URL") or defaults.uniswap_indexer_url,
            balancer_api_url=get("BALANCER_API_URL") or defaults.balancer_api_url,
            balancer_chain=get("BALANCER_CHAIN") or defaults.balancer_chain,
            oneinch_api_url=get("ONEINCH_API_URL") or defaults.oneinch_api_url,
            oneinch_api_key=get("ONEINCH_API_KEY"),
            encoders=encoders,
            bundler_registry=get("BUNDLER_REGISTRY"),
            relay_url=get("RELAY_URL"),
            max_hops=get_int("MAX_HOPS", defaults.max_hops),
            slippage_bips=get_int("SLIPPAGE_BIPS", defaults.slippage_bips),
            max_concurrent_paths=get_int("MAX_CONCURRENT_PATHS", defaults.max_concurrent_paths),
            adapter_timeout=get_float("ADAPTER_TIMEOUT", defaults.adapter_timeout),
            discovery_deadline=get_float("DISCOVERY_DEADLINE", defaults.discovery_deadline),
            query_deadline=get_float("QUERY_DEADLINE", defaults.query_deadline),
            gas_rate_ttl=get_float("GAS_RATE_TTL", defaults.gas_rate_ttl),
            confirmation_timeout=get_float(
                "CONFIRMATION_TIMEOUT", defaults.confirmation_timeout
            ),
        )


# Default configuration instance
DEFAULT_ENGINE_CONFIG = EngineConfig()

__all__ = ["EngineConfig", "DEFAULT_ENGINE_CONFIG", "ENV_PREFIX"]
