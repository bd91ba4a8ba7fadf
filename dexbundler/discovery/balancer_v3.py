"""Balancer v3 discovery through the Balancer SOR API."""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import TYPE_CHECKING, Any

import structlog

from dexbundler.constants import BIPS
from dexbundler.models.pools import BalancerRoute, BalancerSorPath, BalancerStep, DexKind
from dexbundler.models.route import Leg, Path, PathError
from dexbundler.models.tokens import Token
from dexbundler.models.types import normalize_address
from dexbundler.net.http import JsonApiClient
from dexbundler.registry.tokens import TokenRegistry

if TYPE_CHECKING:
    from dexbundler.context import RoutingContext

logger = structlog.get_logger()

SOR_SWAP_PATHS_QUERY = """
query SorSwapPaths($chain: GqlChain!, $tokenIn: String!, $tokenOut: String!, $amount: AmountHumanReadable!) {
  sorGetSwapPaths(
    chain: $chain
    swapAmount: $amount
    swapType: EXACT_IN
    tokenIn: $tokenIn
    tokenOut: $tokenOut
    useProtocolVersion: 3
  ) {
    swapAmountRaw
    returnAmountRaw
    paths {
      tokens { address }
      pools
      isBuffer
      inputAmountRaw
      outputAmountRaw
    }
  }
}
"""


@dataclass(frozen=True)
class SorResult:
    amount_in: int
    expected_out: int
    paths: tuple[BalancerSorPath, ...]


def to_human_amount(amount: int, decimals: int) -> str:
    """Base units to the decimal string the SOR API expects."""
    value = Decimal(amount).scaleb(-decimals)
    return format(value.normalize(), "f")


def split_shares(amounts: list[int]) -> list[int]:
    """Largest-remainder apportionment of amounts into bips summing to 10000."""
    total = sum(amounts)
    if total <= 0:
        raise ValueError("Cannot apportion a zero total")
    raw = [a * BIPS for a in amounts]
    shares = [r // total for r in raw]
    remainders = sorted(range(len(amounts)), key=lambda i: (-(raw[i] % total), i))
    for i in remainders[: BIPS - sum(shares)]:
        shares[i] += 1
    return shares


def parse_sor_paths(payload: dict[str, Any]) -> SorResult:
    """Convert a ``sorGetSwapPaths`` object into typed SOR paths."""
    rows = payload.get("paths") or []
    parsed = []
    inputs = []
    for row in rows:
        tokens = [normalize_address(t["address"]) for t in row["tokens"]]
        pools = [normalize_address(p) for p in row["pools"]]
        buffers = row.get("isBuffer") or [False] * len(pools)
        if len(tokens) != len(pools) + 1:
            raise ValueError(f"SOR path has {len(tokens)} tokens for {len(pools)} pools")
        steps = tuple(
            BalancerStep(pool, tokens[i + 1], bool(buffers[i])) for i, pool in enumerate(pools)
        )
        parsed.append((tokens[0], steps))
        inputs.append(int(row["inputAmountRaw"]))

    if not parsed:
        return SorResult(int(payload.get("swapAmountRaw") or 0), 0, ())

    shares = split_shares(inputs)
    paths = tuple(
        BalancerSorPath(token_in, steps, share)
        for (token_in, steps), share in zip(parsed, shares, strict=True)
        if share > 0
    )
    return SorResult(
        amount_in=int(payload.get("swapAmountRaw") or sum(inputs)),
        expected_out=int(payload.get("returnAmountRaw") or 0),
        paths=paths,
    )


class BalancerSorClient:
    """Balancer API client for smart-order-router paths."""

    def __init__(self, api: JsonApiClient, chain: str = "MAINNET") -> None:
        self.api = api
        self.chain = chain

    async def swap_paths(self, token_in: str, token_out: str, amount_in: int, decimals_in: int) -> SorResult:
        data = await self.api.graphql(
            SOR_SWAP_PATHS_QUERY,
            {
                "chain": self.chain,
                "tokenIn": token_in,
                "tokenOut": token_out,
                "amount": to_human_amount(amount_in, decimals_in),
            },
        )
        return parse_sor_paths(data.get("sorGetSwapPaths") or {})


class BalancerV3Adapter:
    """Wraps the SOR's route as one opaque leg.

    The SOR may return several parallel or multi-hop paths; the router runs
    them internally so the composer sees a single leg.
    """

    kind = DexKind.BALANCER_V3

    def __init__(self, sor: BalancerSorClient, registry: TokenRegistry, router: str) -> None:
        self.sor = sor
        self.registry = registry
        self.router = normalize_address(router)

    async def route(self, from_token: Token, to_token: Token, amount_in: int) -> BalancerRoute | None:
        token_in = self.registry.to_wire_form(from_token, DexKind.BALANCER_V3)
        token_out = self.registry.to_wire_form(to_token, DexKind.BALANCER_V3)
        if token_in == token_out:
            return None
        result = await self.sor.swap_paths(token_in, token_out, amount_in, from_token.decimals)
        if not result.paths or result.expected_out <= 0:
            return None
        return BalancerRoute(
            token_in=token_in,
            token_out=token_out,
            paths=result.paths,
            router=self.router,
            weth_is_eth=from_token.is_native or to_token.is_native,
            amount_in=amount_in,
            expected_out=result.expected_out,
        )

    async def find_paths(
        self,
        ctx: RoutingContext,
        from_token: Token,
        to_token: Token,
        max_hops: int,
    ) -> list[Path]:
        route = await self.route(from_token, to_token, ctx.amount_in)
        if route is None:
            ctx.log.debug("balancer_no_route")
            return []
        leg = Leg(DexKind.BALANCER_V3, route, from_token.address, to_token.address)
        try:
            path = Path.build(from_token.address, to_token.address, [leg], self.registry.wrapped_native)
        except PathError as e:
            logger.debug("balancer_path_rejected", reason=str(e))
            return []
        return [path]


__all__ = [
    "SOR_SWAP_PATHS_QUERY",
    "SorResult",
    "to_human_amount",
    "split_shares",
    "parse_sor_paths",
    "BalancerSorClient",
    "BalancerV3Adapter",
]
