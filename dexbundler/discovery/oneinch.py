"""1inch aggregator: quotes, swap calldata and approval helpers."""

from __future__ import annotations

from typing import TYPE_CHECKING, Any

import structlog

from dexbundler.constants import BIPS, ONEINCH_DEFAULT_GAS
from dexbundler.models.pools import DexKind, OneInchRoute
from dexbundler.models.route import Leg, Path
from dexbundler.models.tokens import Token
from dexbundler.models.types import normalize_address
from dexbundler.net.http import JsonApiClient
from dexbundler.registry.tokens import TokenRegistry

if TYPE_CHECKING:
    from dexbundler.context import RoutingContext

logger = structlog.get_logger()


def _protocol_names(raw: Any) -> tuple[str, ...]:
    """Flatten the nested ``protocols`` structure into unique names."""
    names: dict[str, None] = {}

    def walk(node: Any) -> None:
        if isinstance(node, list):
            for item in node:
                walk(item)
        elif isinstance(node, dict) and "name" in node:
            names[str(node["name"])] = None

    walk(raw)
    return tuple(names)


class OneInchClient:
    """1inch swap API v6 for one chain.

    ``api`` must be rooted at ``{base}/{chain_id}`` and carry the bearer key.
    """

    def __init__(self, api: JsonApiClient) -> None:
        self.api = api

    async def quote(self, src: str, dst: str, amount: int) -> dict[str, Any]:
        return await self.api.get(
            "/quote",
            params={
                "src": src,
                "dst": dst,
                "amount": str(amount),
                "includeTokensInfo": "false",
                "includeProtocols": "true",
                "includeGas": "true",
            },
        )

    async def swap(
        self,
        src: str,
        dst: str,
        amount: int,
        sender: str,
        slippage_bips: int,
        origin: str | None = None,
    ) -> dict[str, Any]:
        params: dict[str, Any] = {
            "src": src,
            "dst": dst,
            "amount": str(amount),
            "from": sender,
            "slippage": f"{slippage_bips * 100 / BIPS:g}",
            "disableEstimate": "true",
            "includeProtocols": "true",
            "includeGas": "true",
            "allowPartialFill": "false",
        }
        if origin is not None:
            params["origin"] = origin
        return await self.api.get("/swap", params=params)

    async def allowance(self, token: str, wallet: str) -> int:
        """Allowance granted by wallet to the 1inch router."""
        data = await self.api.get(
            "/approve/allowance", params={"tokenAddress": token, "walletAddress": wallet}
        )
        return int(data.get("allowance") or 0)

    async def approve_transaction(self, token: str, amount: int | None = None) -> dict[str, Any]:
        """Unsigned approval transaction (infinite when amount is None)."""
        params: dict[str, Any] = {"tokenAddress": token}
        if amount is not None:
            params["amount"] = str(amount)
        data = await self.api.get("/approve/transaction", params=params)
        return {
            "to": normalize_address(data["to"]),
            "data": data["data"],
            "value": int(data.get("value") or 0),
            "gasPrice": int(data["gasPrice"]) if data.get("gasPrice") else None,
        }


class OneInchAdapter:
    """Single opaque path per query.

    With a known bundler the ``/swap`` endpoint is used so the leg carries
    executable calldata; otherwise ``/quote`` gives a route that must be
    materialized before composing.
    """

    kind = DexKind.ONEINCH

    def __init__(self, client: OneInchClient, registry: TokenRegistry, slippage_bips: int = 50) -> None:
        self.client = client
        self.registry = registry
        self.slippage_bips = slippage_bips

    def _wire(self, token: Token | str) -> str:
        return self.registry.to_wire_form(token, DexKind.ONEINCH)

    async def quote_route(self, from_token: Token | str, to_token: Token | str, amount_in: int) -> OneInchRoute:
        data = await self.client.quote(self._wire(from_token), self._wire(to_token), amount_in)
        return OneInchRoute(
            router="0x" + "00" * 20,
            calldata="0x",
            value=0,
            amount_in=amount_in,
            expected_out=int(data.get("dstAmount") or data.get("toTokenAmount") or 0),
            gas=int(data.get("gas") or ONEINCH_DEFAULT_GAS),
            protocols=_protocol_names(data.get("protocols")),
        )

    async def swap_route(
        self,
        from_token: Token | str,
        to_token: Token | str,
        amount_in: int,
        sender: str,
        origin: str | None = None,
    ) -> OneInchRoute:
        data = await self.client.swap(
            self._wire(from_token),
            self._wire(to_token),
            amount_in,
            sender,
            self.slippage_bips,
            origin,
        )
        tx = data["tx"]
        return OneInchRoute(
            router=normalize_address(tx["to"]),
            calldata=tx["data"],
            value=int(tx.get("value") or 0),
            amount_in=amount_in,
            expected_out=int(data.get("dstAmount") or data.get("toTokenAmount") or 0),
            gas=int(tx.get("gas") or ONEINCH_DEFAULT_GAS),
            protocols=_protocol_names(data.get("protocols")),
        )

    async def materialize(self, path: Path, amount_in: int, sender: str, origin: str | None = None) -> Path:
        """Rebuild a 1inch path with calldata for an exact input amount."""
        leg = path.legs[0]
        route = await self.swap_route(leg.input_token, leg.output_token, amount_in, sender, origin)
        fresh = Leg(DexKind.ONEINCH, route, leg.input_token, leg.output_token)
        return Path.build(path.from_token, path.to_token, [fresh], path.wrapped_native)

    async def find_paths(
        self,
        ctx: RoutingContext,
        from_token: Token,
        to_token: Token,
        max_hops: int,
    ) -> list[Path]:
        if ctx.bundler is not None:
            route = await self.swap_route(from_token, to_token, ctx.amount_in, ctx.bundler, ctx.owner)
        else:
            route = await self.quote_route(from_token, to_token, ctx.amount_in)
        if route.expected_out <= 0:
            return []
        leg = Leg(DexKind.ONEINCH, route, from_token.address, to_token.address)
        return [Path.build(from_token.address, to_token.address, [leg], self.registry.wrapped_native)]


def needs_materialize(route: OneInchRoute, amount_in: int) -> bool:
    return route.calldata in ("", "0x") or route.amount_in != amount_in


__all__ = ["OneInchClient", "OneInchAdapter", "needs_materialize"]
