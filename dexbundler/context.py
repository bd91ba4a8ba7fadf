"""Per-query routing context.

Each query owns its discovered paths and quotes; nothing here is shared
between concurrent queries.
"""

from __future__ import annotations

import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field

import structlog

from dexbundler.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from dexbundler.models.pools import DexKind
from dexbundler.models.route import Candidate, Path
from dexbundler.models.tokens import Token


@dataclass
class RoutingContext:
    """State of one routing query.

    Attributes:
        from_token: Resolved input token
        to_token: Resolved output token
        amount_in: Requested input in base units
        owner: Wallet that will sign the bundle (None for quote-only queries)
        bundler: Owner's bundler contract, when known
        block_number: Block the query's quotes are anchored to
    """

    from_token: Token
    to_token: Token
    amount_in: int
    config: EngineConfig = DEFAULT_ENGINE_CONFIG
    owner: str | None = None
    bundler: str | None = None
    block_number: int = 0
    gas_price: int = 0
    query_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])
    clock: Callable[[], float] = time.monotonic
    started_at: float = 0.0
    paths: list[Path] = field(default_factory=list)
    candidates: list[Candidate] = field(default_factory=list)
    responded: list[DexKind] = field(default_factory=list)
    quote_failures: dict[str, str] = field(default_factory=dict)

    def __post_init__(self) -> None:
        if not self.started_at:
            self.started_at = self.clock()
        self.log = structlog.get_logger().bind(
            query_id=self.query_id,
            from_token=self.from_token.address,
            to_token=self.to_token.address,
        )

    @property
    def elapsed(self) -> float:
        return self.clock() - self.started_at

    def remaining(self, deadline: float | None = None) -> float:
        """Seconds left before the query deadline (never negative)."""
        limit = self.config.query_deadline if deadline is None else deadline
        return max(limit - self.elapsed, 0.0)

    @property
    def used_dexes(self) -> list[DexKind]:
        kinds: dict[DexKind, None] = {}
        for candidate in self.candidates:
            for dex in candidate.path.dexes:
                kinds[dex] = None
        return list(kinds)


__all__ = ["RoutingContext"]
