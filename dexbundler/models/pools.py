"""Pool references: a tagged variant over the supported dex kinds.

Each variant carries exactly what is needed to re-quote a leg and to
compose its encoder call.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import TypeAlias

from eth_abi import encode
from eth_utils import keccak

from dexbundler.models.tokens import ZERO_ADDRESS
from dexbundler.models.types import address_bytes, normalize_address

Q96 = 2**96


class DexKind(Enum):
    """Closed set of adapter kinds."""

    UNISWAP_V4 = "uniswap_v4"
    BALANCER_V3 = "balancer_v3"
    ONEINCH = "oneinch"
    DIRECT_V4 = "direct_v4"


@dataclass(frozen=True)
class V4PoolKey:
    """Uniswap v4 pool key with currencies sorted ascending."""

    currency0: str
    currency1: str
    fee: int
    tick_spacing: int
    hooks: str = ZERO_ADDRESS

    def __post_init__(self) -> None:
        c0 = normalize_address(self.currency0, validate=True)
        c1 = normalize_address(self.currency1, validate=True)
        if int(c0, 16) >= int(c1, 16):
            raise ValueError(f"Pool key currencies not sorted: {c0} >= {c1}")
        object.__setattr__(self, "currency0", c0)
        object.__setattr__(self, "currency1", c1)
        object.__setattr__(self, "hooks", normalize_address(self.hooks, validate=True))

    @classmethod
    def for_pair(
        cls, token_a: str, token_b: str, fee: int, tick_spacing: int, hooks: str = ZERO_ADDRESS
    ) -> V4PoolKey:
        """Build a key from two currencies in any order."""
        a = normalize_address(token_a)
        b = normalize_address(token_b)
        c0, c1 = (a, b) if int(a, 16) < int(b, 16) else (b, a)
        return cls(c0, c1, fee, tick_spacing, hooks)

    def abi_tuple(self) -> tuple[bytes, bytes, int, int, bytes]:
        return (
            address_bytes(self.currency0),
            address_bytes(self.currency1),
            self.fee,
            self.tick_spacing,
            address_bytes(self.hooks),
        )

    @property
    def pool_id(self) -> str:
        """keccak256(abi.encode(PoolKey)) as 0x-prefixed hex."""
        encoded = encode(["address", "address", "uint24", "int24", "address"], list(self.abi_tuple()))
        return "0x" + keccak(encoded).hex()

    @property
    def identifier(self) -> str:
        return self.pool_id

    def contains(self, token: str) -> bool:
        return normalize_address(token) in (self.currency0, self.currency1)

    def zero_for_one(self, token_in: str) -> bool:
        """Swap direction for an input currency."""
        token = normalize_address(token_in)
        if token == self.currency0:
            return True
        if token == self.currency1:
            return False
        raise ValueError(f"Token {token} not in pool {self.pool_id}")

    def other(self, token: str) -> str:
        return self.currency1 if self.zero_for_one(token) else self.currency0


@dataclass(frozen=True)
class V4PoolState:
    """Indexer snapshot of a v4 pool, enough for constant-product math."""

    pool_id: str
    liquidity: int
    sqrt_price_x96: int
    tvl_usd: float = 0.0

    def virtual_reserves(self, zero_for_one: bool) -> tuple[int, int]:
        """(reserve_in, reserve_out) implied by liquidity and price."""
        if self.liquidity <= 0 or self.sqrt_price_x96 <= 0:
            return (0, 0)
        reserve0 = self.liquidity * Q96 // self.sqrt_price_x96
        reserve1 = self.liquidity * self.sqrt_price_x96 // Q96
        return (reserve0, reserve1) if zero_for_one else (reserve1, reserve0)


@dataclass(frozen=True)
class BalancerStep:
    """One hop inside a Balancer SOR path."""

    pool: str
    token_out: str
    is_buffer: bool = False

    def abi_tuple(self) -> tuple[bytes, bytes, bool]:
        return (address_bytes(self.pool), address_bytes(self.token_out), self.is_buffer)


@dataclass(frozen=True)
class BalancerSorPath:
    """A SOR path and the share of the leg input it carries."""

    token_in: str
    steps: tuple[BalancerStep, ...]
    share_bips: int


@dataclass(frozen=True)
class BalancerRoute:
    """A prebuilt Balancer v3 route, executed as one opaque leg."""

    token_in: str
    token_out: str
    paths: tuple[BalancerSorPath, ...]
    router: str
    weth_is_eth: bool = False
    amount_in: int = 0
    expected_out: int = 0

    @property
    def pool_ids(self) -> tuple[str, ...]:
        return tuple(step.pool for path in self.paths for step in path.steps)

    @property
    def identifier(self) -> str:
        return "balancer:" + ",".join(self.pool_ids)


@dataclass(frozen=True)
class OneInchRoute:
    """Opaque aggregator route: a router call returned by the 1inch API."""

    router: str
    calldata: str
    value: int
    amount_in: int
    expected_out: int
    gas: int
    protocols: tuple[str, ...] = ()

    @property
    def identifier(self) -> str:
        return "1inch:" + normalize_address(self.router)


PoolRef: TypeAlias = V4PoolKey | BalancerRoute | OneInchRoute


def pool_identifier(pool: PoolRef) -> str:
    """Stable identifier used for shared-segment detection and tie-breaks."""
    return pool.identifier


__all__ = [
    "DexKind",
    "V4PoolKey",
    "V4PoolState",
    "BalancerStep",
    "BalancerSorPath",
    "BalancerRoute",
    "OneInchRoute",
    "PoolRef",
    "pool_identifier",
    "Q96",
]
