"""Route adapter protocol."""

from __future__ import annotations

from typing import TYPE_CHECKING, Protocol

from dexbundler.models.pools import DexKind
from dexbundler.models.route import Path
from dexbundler.models.tokens import Token

if TYPE_CHECKING:
    from dexbundler.context import RoutingContext


class RouteAdapter(Protocol):
    """One adapter per dex family.

    Adapters may raise anything on upstream failure; the discoverer
    contains it so a failing adapter contributes no paths.
    """

    kind: DexKind

    async def find_paths(
        self,
        ctx: RoutingContext,
        from_token: Token,
        to_token: Token,
        max_hops: int,
    ) -> list[Path]:
        """Enumerate candidate paths connecting from_token to to_token."""
        ...


__all__ = ["RouteAdapter"]
