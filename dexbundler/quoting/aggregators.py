"""Quotes for routes whose pricing lives off chain (Balancer SOR, 1inch)."""

from __future__ import annotations

from dataclasses import dataclass, replace

from dexbundler.constants import BALANCER_STEP_GAS
from dexbundler.discovery.balancer_v3 import BalancerV3Adapter
from dexbundler.discovery.oneinch import OneInchAdapter
from dexbundler.models.pools import BalancerRoute, OneInchRoute
from dexbundler.models.route import Path, QuoteResult, QuoteSource
from dexbundler.registry.tokens import TokenRegistry


@dataclass
class BalancerQuoteSource:
    """Reuses the SOR result from discovery; re-asks the SOR for other amounts."""

    adapter: BalancerV3Adapter
    registry: TokenRegistry

    async def _route(self, path: Path, amount_in: int) -> BalancerRoute | None:
        route = path.legs[0].pool
        if not isinstance(route, BalancerRoute):
            raise TypeError("Balancer quote source needs a Balancer route")
        if route.amount_in == amount_in:
            return route
        from_token = await self.registry.resolve_token(path.from_token)
        to_token = await self.registry.resolve_token(path.to_token)
        return await self.adapter.route(from_token, to_token, amount_in)

    async def quote(self, path: Path, amount_in: int, block: int) -> QuoteResult:
        route = await self._route(path, amount_in)
        if route is None:
            return QuoteResult(0, 0, block, QuoteSource.SOR, amount_in)
        gas = BALANCER_STEP_GAS * max(len(route.pool_ids), 1)
        return QuoteResult(route.expected_out, gas, block, QuoteSource.SOR, amount_in)

    async def rebuild(self, path: Path, amount_in: int) -> Path:
        """The same path over the SOR's route for ``amount_in``.

        The SOR splits differently at different amounts, so the route that is
        quoted must also be the one that is encoded.
        """
        route = await self._route(path, amount_in)
        if route is None:
            raise ValueError(f"SOR has no route for {amount_in}")
        leg = path.legs[0]
        if route is leg.pool:
            return path
        return replace(path, legs=(replace(leg, pool=route),))


@dataclass
class OneInchQuoteSource:
    """The aggregator's own estimate."""

    adapter: OneInchAdapter

    async def quote(self, path: Path, amount_in: int, block: int) -> QuoteResult:
        leg = path.legs[0]
        route = leg.pool
        if not isinstance(route, OneInchRoute):
            raise TypeError("1inch quote source needs a 1inch route")
        if route.amount_in != amount_in:
            route = await self.adapter.quote_route(leg.input_token, leg.output_token, amount_in)
        return QuoteResult(route.expected_out, route.gas, block, QuoteSource.API, amount_in)


__all__ = ["BalancerQuoteSource", "OneInchQuoteSource"]
