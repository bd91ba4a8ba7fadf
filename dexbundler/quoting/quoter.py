"""Quote dispatch, constant-product fallback and staleness refresh."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
from typing import TYPE_CHECKING, Protocol, runtime_checkable

import structlog
from eth_abi.exceptions import DecodingError

from dexbundler.constants import FALLBACK_FEE_BIPS, MAX_QUOTE_AGE_BLOCKS, V4_SWAP_GAS
from dexbundler.errors import (
    CallReverted,
    EngineError,
    ErrorCode,
    Result,
    UpstreamRejected,
    UpstreamUnavailable,
)
from dexbundler.models.curves import ChainedCurve, ConstantProductCurve, LinearCurve, SwapCurve
from dexbundler.models.pools import DexKind, V4PoolKey
from dexbundler.models.route import Candidate, Path, QuoteResult, QuoteSource
from dexbundler.net.rpc import ChainReader
from dexbundler.registry.pools import PoolCache

if TYPE_CHECKING:
    from dexbundler.context import RoutingContext

logger = structlog.get_logger()


QUOTE_TIMEOUT = "timeout"


class PathQuoteSource(Protocol):
    """Per-dex quote implementation."""

    async def quote(self, path: Path, amount_in: int, block: int) -> QuoteResult:
        """Quote a path.

        Raises:
            CallReverted: The simulation reverted
            UpstreamUnavailable: The simulation or API could not be reached
            UpstreamRejected: The API refused the request
        """
        ...


@runtime_checkable
class PathRebuilder(Protocol):
    """Quote source whose routes depend on the input amount (Balancer SOR)."""

    async def rebuild(self, path: Path, amount_in: int) -> Path: ...


class Quoter:
    """Dispatches quotes by dex kind.

    When a source is unreachable the quoter falls back to constant-product
    math over indexer reserves (30 bps fee). Such quotes rank candidates
    but are unconfirmed, so they never set minimum outputs.
    """

    def __init__(
        self,
        sources: Mapping[DexKind, PathQuoteSource],
        chain: ChainReader | None = None,
        pool_cache: PoolCache | None = None,
        *,
        max_quote_age_blocks: int = MAX_QUOTE_AGE_BLOCKS,
        fallback_fee_bips: int = FALLBACK_FEE_BIPS,
    ) -> None:
        self.sources = dict(sources)
        self.chain = chain
        self.pool_cache = pool_cache
        self.max_quote_age_blocks = max_quote_age_blocks
        self.fallback_fee_bips = fallback_fee_bips

    async def current_block(self) -> int:
        if self.chain is None:
            return 0
        return await self.chain.block_number()

    def leg_curves(self, path: Path) -> tuple[SwapCurve, ...] | None:
        """Constant-product model per leg from cached v4 state, if every leg has one."""
        if self.pool_cache is None:
            return None
        curves: list[SwapCurve] = []
        for leg in path.legs:
            if not isinstance(leg.pool, V4PoolKey):
                return None
            state = self.pool_cache.state(leg.pool.pool_id)
            if state is None:
                return None
            reserve_in, reserve_out = state.virtual_reserves(leg.pool.zero_for_one(leg.input_token))
            if reserve_in <= 0 or reserve_out <= 0:
                return None
            curves.append(ConstantProductCurve(reserve_in, reserve_out, self.fallback_fee_bips))
        return tuple(curves)

    def fallback_quote(self, path: Path, amount_in: int, block: int) -> QuoteResult | None:
        curves = self.leg_curves(path)
        if curves is None:
            return None
        expected = ChainedCurve(curves).amount_out(amount_in)
        if expected <= 0:
            return None
        return QuoteResult(
            expected, V4_SWAP_GAS * path.hop_count, block, QuoteSource.CONSTANT_PRODUCT, amount_in
        )

    async def quote(self, path: Path, amount_in: int, block: int | None = None) -> Result[QuoteResult]:
        """Quote one path; failures come back as QUOTE_FAILED results."""
        at_block = block if block is not None else await self.current_block()
        dex = path.legs[0].dex
        source = self.sources.get(dex)
        if source is None:
            fallback = self.fallback_quote(path, amount_in, at_block)
            if fallback is not None:
                return Result.ok(fallback)
            return Result.fail(ErrorCode.QUOTE_FAILED, f"No quote source for {dex.value}", path=path.key)

        try:
            quote = await source.quote(path, amount_in, at_block)
        except UpstreamUnavailable as e:
            fallback = self.fallback_quote(path, amount_in, at_block)
            if fallback is not None:
                logger.info("quote_fallback_constant_product", path=path.key, error=str(e))
                return Result.ok(fallback)
            return Result.fail(ErrorCode.QUOTE_FAILED, "Quote source unreachable", path=path.key, error=str(e))
        except CallReverted as e:
            return Result.fail(
                ErrorCode.QUOTE_FAILED, "Quote simulation reverted", path=path.key, reason=e.reason
            )
        except (UpstreamRejected, EngineError, DecodingError, KeyError, ValueError, TypeError) as e:
            return Result.fail(ErrorCode.QUOTE_FAILED, "Quote rejected", path=path.key, error=str(e))

        if quote.expected_out <= 0:
            return Result.fail(ErrorCode.QUOTE_FAILED, "Zero output quote", path=path.key)
        return Result.ok(quote)

    def candidate(self, path: Path, quote: QuoteResult) -> Candidate:
        curves = self.leg_curves(path)
        if curves is not None:
            return Candidate(path, quote, ChainedCurve(curves), curves)
        return Candidate(path, quote, LinearCurve(quote.amount_in, quote.expected_out))

    async def quote_candidates(
        self,
        ctx: RoutingContext,
        paths: list[Path],
        amount_in: int,
        timeout: float | None = None,
    ) -> list[Candidate]:
        """Quote all paths concurrently; failed paths become ineligible.

        Quotes still pending after ``timeout`` seconds are cancelled and
        recorded in ``ctx.quote_failures`` as QUOTE_TIMEOUT.
        """
        block = ctx.block_number or await self.current_block()
        tasks = {asyncio.create_task(self.quote(path, amount_in, block)): path for path in paths}
        done: set[asyncio.Task[Result[QuoteResult]]] = set()
        if tasks:
            done, pending = await asyncio.wait(tasks, timeout=timeout)
            for task in pending:
                task.cancel()
                ctx.quote_failures[tasks[task].key] = QUOTE_TIMEOUT
            if pending:
                ctx.log.warning("quotes_timed_out", pending=len(pending), timeout=timeout)
                await asyncio.gather(*pending, return_exceptions=True)

        candidates: list[Candidate] = []
        for task, path in tasks.items():
            if task not in done:
                continue
            result = task.result()
            if result.is_ok:
                candidates.append(self.candidate(path, result.unwrap()))
            else:
                assert result.failure is not None
                ctx.quote_failures[path.key] = result.failure.message
                ctx.log.info("quote_failed", **{**result.failure.details, "path": path.key})

        candidates = apply_direct_fallback(candidates)
        ctx.candidates = candidates
        return candidates

    async def refresh(self, candidate: Candidate, amount_in: int, current_block: int) -> Result[Candidate]:
        """Re-quote when the amount changed, the quote is stale or unconfirmed."""
        quote = candidate.quote
        if (
            quote.amount_in == amount_in
            and quote.confirmed
            and not quote.is_stale(current_block, self.max_quote_age_blocks)
        ):
            return Result.ok(candidate)

        path = candidate.path
        source = self.sources.get(path.legs[0].dex)
        if isinstance(source, PathRebuilder) and quote.amount_in != amount_in:
            try:
                path = await source.rebuild(path, amount_in)
            except UpstreamUnavailable as e:
                return Result.fail(ErrorCode.QUOTE_FAILED, "Quote source unreachable", path=path.key, error=str(e))
            except (UpstreamRejected, EngineError, KeyError, ValueError) as e:
                return Result.fail(ErrorCode.QUOTE_FAILED, "Route rebuild failed", path=path.key, error=str(e))

        result = await self.quote(path, amount_in, current_block)
        if not result.is_ok:
            return Result(failure=result.failure)
        return Result.ok(Candidate(path, result.unwrap(), candidate.curve, candidate.leg_curves))


def apply_direct_fallback(candidates: list[Candidate]) -> list[Candidate]:
    """Keep direct pool-manager candidates only where the router path failed.

    A DIRECT_V4 candidate is dropped when a single-leg UNISWAP_V4 candidate
    over the same pool quoted successfully.
    """
    router_pools = {
        c.path.legs[0].pool_id
        for c in candidates
        if c.path.legs[0].dex is DexKind.UNISWAP_V4 and c.path.hop_count == 1
    }
    return [
        c
        for c in candidates
        if not (c.path.legs[0].dex is DexKind.DIRECT_V4 and c.path.legs[0].pool_id in router_pools)
    ]


__all__ = ["QUOTE_TIMEOUT", "PathQuoteSource", "PathRebuilder", "Quoter", "apply_direct_fallback"]
