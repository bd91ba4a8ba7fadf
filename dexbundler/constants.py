"""Protocol constants for the routing engine.

Centralizes well-known addresses and protocol parameters.
"""

from dexbundler.models.types import is_valid_address


def _validate_address(name: str, address: str) -> str:
    """Validate and return an address.

    Raises:
        ValueError: If the address is invalid
    """
    if not is_valid_address(address):
        raise ValueError(f"Invalid {name} address: {address} (must be 0x + 40 hex chars)")
    return address


# Native asset in our internal representation
NATIVE_ADDRESS = _validate_address("native", "0x0000000000000000000000000000000000000000")

# Native asset as the 1inch API spells it
ONEINCH_NATIVE_ADDRESS = _validate_address(
    "1inch native", "0xeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeeee"
)

# Well-known token addresses on mainnet (lowercase for consistency)
WETH = _validate_address("WETH", "0xc02aaa39b223fe8d0a0e5c4f27ead9083c756cc2")
USDC = _validate_address("USDC", "0xa0b86991c6218b36c1d19d4a2e9eb0ce3606eb48")
USDT = _validate_address("USDT", "0xdac17f958d2ee523a2206206994597c13d831ec7")
DAI = _validate_address("DAI", "0x6b175474e89094c44da98b954eedeac495271d0f")
WBTC = _validate_address("WBTC", "0x2260fac5e5542a773aa44fbcfedf7c193bc2c599")
AAVE = _validate_address("AAVE", "0x7fc66500c84a76ad7e9c93437bfc5ac33e2ddae9")
UNI = _validate_address("UNI", "0x1f9840a85d5af5bf1d1762f925bdaddc4201f984")
LINK = _validate_address("LINK", "0x514910771af9ca656af840dff83e8264ecf986ca")

# Uniswap v4 deployment (mainnet)
V4_POOL_MANAGER = _validate_address("pool manager", "0x000000000004444c5dc75cb358380d2e3de08a90")
V4_UNIVERSAL_ROUTER = _validate_address(
    "universal router", "0x66a9893cc07d91d95644aedd05d03f95e1dba8af"
)
V4_POSITION_MANAGER = _validate_address(
    "position manager", "0xbd216513d74c8cf14cf4747e6aaa6420ff64ee9e"
)
V4_QUOTER = _validate_address("v4 quoter", "0x52f0e24d1c21c8a0cb1e5a5dd6198556bd9e1203")

# Balancer v3 deployment (mainnet)
BALANCER_V3_ROUTER = _validate_address(
    "balancer router", "0xae563e3f8219521950555f5962419c8919758ea2"
)
BALANCER_V3_VAULT = _validate_address(
    "balancer vault", "0xba1333333333a1ba1108e8412f11850a5c319ba9"
)

# 1 bip = 0.01%
BIPS = 10_000

# Routing limits
MAX_HOPS = 2
MIN_FRACTION_BIPS = 100
MAX_CONCURRENT_PATHS = 3
SINGLE_ROUTE_MARGIN_BIPS = 50
SPLIT_SAMPLES = 100
DEFAULT_SLIPPAGE_BIPS = 50

# Constant-product fallback fee (30 bps), ranking only
FALLBACK_FEE_BIPS = 30

# Quotes older than this many blocks are refreshed before execution
MAX_QUOTE_AGE_BLOCKS = 3

# Uniswap v4 price limits (TickMath bounds, exclusive)
MIN_SQRT_PRICE_LIMIT = 4295128739 + 1
MAX_SQRT_PRICE_LIMIT = 1461446703485210103287273052203988822378723970342 - 1

# Tick spacing used by the standard v4 fee tiers
V4_TICK_SPACINGS = {100: 1, 500: 10, 2500: 50, 3000: 60, 10000: 200}
DEFAULT_TICK_SPACING = 60

# Gas estimates per leg kind (used for ranking before simulation)
V4_SWAP_GAS = 130_000
V4_DIRECT_SWAP_GAS = 110_000
BALANCER_STEP_GAS = 160_000
ONEINCH_DEFAULT_GAS = 250_000
BUNDLE_OVERHEAD_GAS = 90_000
WRAP_GAS = 30_000

UINT256_MAX = 2**256 - 1

__all__ = [
    "NATIVE_ADDRESS",
    "ONEINCH_NATIVE_ADDRESS",
    "WETH",
    "USDC",
    "USDT",
    "DAI",
    "WBTC",
    "AAVE",
    "UNI",
    "LINK",
    "V4_POOL_MANAGER",
    "V4_UNIVERSAL_ROUTER",
    "V4_POSITION_MANAGER",
    "V4_QUOTER",
    "BALANCER_V3_ROUTER",
    "BALANCER_V3_VAULT",
    "BIPS",
    "MAX_HOPS",
    "MIN_FRACTION_BIPS",
    "MAX_CONCURRENT_PATHS",
    "SINGLE_ROUTE_MARGIN_BIPS",
    "SPLIT_SAMPLES",
    "DEFAULT_SLIPPAGE_BIPS",
    "FALLBACK_FEE_BIPS",
    "MAX_QUOTE_AGE_BLOCKS",
    "MIN_SQRT_PRICE_LIMIT",
    "MAX_SQRT_PRICE_LIMIT",
    "V4_TICK_SPACINGS",
    "DEFAULT_TICK_SPACING",
    "V4_SWAP_GAS",
    "V4_DIRECT_SWAP_GAS",
    "BALANCER_STEP_GAS",
    "ONEINCH_DEFAULT_GAS",
    "BUNDLE_OVERHEAD_GAS",
    "WRAP_GAS",
    "UINT256_MAX",
]
