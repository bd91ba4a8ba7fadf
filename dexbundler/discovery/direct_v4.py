"""Fallback: single-pool v4 swaps sent straight to the pool manager."""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from dexbundler.discovery.uniswap_v4 import UniswapV4Adapter
from dexbundler.models.pools import DexKind
from dexbundler.models.route import Leg, Path, PathError
from dexbundler.models.tokens import Token

if TYPE_CHECKING:
    from dexbundler.context import RoutingContext

logger = structlog.get_logger()


class DirectV4Adapter:
    """One-leg paths over direct v4 pools, bypassing the universal router.

    Candidates from this adapter only stand in for universal-router paths
    whose quote failed on the same pool.
    """

    kind = DexKind.DIRECT_V4

    def __init__(self, v4: UniswapV4Adapter) -> None:
        self.v4 = v4

    async def find_paths(
        self,
        ctx: RoutingContext,
        from_token: Token,
        to_token: Token,
        max_hops: int,
    ) -> list[Path]:
        pools = await self.v4.direct_pools(from_token, to_token)
        wrapped = self.v4.registry.wrapped_native
        paths = []
        for key in pools:
            token_in = next(
                (c for c in (key.currency0, key.currency1) if self.v4.registry.same_asset(c, from_token.address)),
                None,
            )
            if token_in is None:
                continue
            leg = Leg(DexKind.DIRECT_V4, key, token_in, key.other(token_in))
            try:
                paths.append(Path.build(from_token.address, to_token.address, [leg], wrapped))
            except PathError as e:
                logger.debug("direct_v4_path_rejected", pool_id=key.pool_id, reason=str(e))
        return paths


__all__ = ["DirectV4Adapter"]
