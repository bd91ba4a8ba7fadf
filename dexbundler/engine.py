"""Routing engine: resolve, discover, quote, allocate, confirm, compose, execute.

Each query gets its own RoutingContext. Every public operation returns a
Result; nothing opaque escapes the engine.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
from dataclasses import dataclass, field, replace

import structlog

from dexbundler.allocation.allocator import Allocator, amounts_for_bips
from dexbundler.compose.composer import CalldataComposer, ComposedBundle
from dexbundler.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from dexbundler.constants import NATIVE_ADDRESS
from dexbundler.context import RoutingContext
from dexbundler.discovery.discoverer import RouteDiscoverer
from dexbundler.discovery.oneinch import OneInchAdapter, needs_materialize
from dexbundler.errors import (
    EngineError,
    ErrorCode,
    Result,
    UpstreamRejected,
    UpstreamUnavailable,
)
from dexbundler.execution.executor import BundleExecutor, TransactionSigner
from dexbundler.models.bundle import ExecutionResult
from dexbundler.models.pools import DexKind, OneInchRoute
from dexbundler.models.route import Allocation, AllocationEntry, Candidate
from dexbundler.models.tokens import Token
from dexbundler.net.rpc import ChainReader
from dexbundler.quoting.quoter import QUOTE_TIMEOUT, Quoter
from dexbundler.registry.cache import TtlCache
from dexbundler.registry.tokens import TokenRegistry

logger = structlog.get_logger()


@dataclass(frozen=True)
class RouteQuote:
    """Outcome of a routing query.

    ``bundle`` is None when the route cannot be composed yet (a 1inch leg
    without a known bundler has no calldata).
    """

    query_id: str
    from_token: Token
    to_token: Token
    amount_in: int
    allocation: Allocation
    mode: str
    expected_out: int
    block_number: int
    used_dexes: tuple[DexKind, ...]
    responded: tuple[DexKind, ...]
    bundle: ComposedBundle | None = None
    quote_failures: dict[str, str] = field(default_factory=dict, compare=False)

    @property
    def min_final_output(self) -> int:
        return self.bundle.descriptor.min_final_output if self.bundle is not None else 0


@dataclass(frozen=True)
class ExecutionOutcome:
    route: RouteQuote
    result: ExecutionResult


def _has_unbuilt_oneinch(allocation: Allocation, amounts: Sequence[int]) -> bool:
    return any(
        isinstance(leg.pool, OneInchRoute) and needs_materialize(leg.pool, amount)
        for entry, amount in zip(allocation.entries, amounts, strict=True)
        for leg in entry.path.legs
    )


class Engine:
    def __init__(
        self,
        registry: TokenRegistry,
        discoverer: RouteDiscoverer,
        quoter: Quoter,
        *,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        allocator: Allocator | None = None,
        composer: CalldataComposer | None = None,
        executor: BundleExecutor | None = None,
        oneinch: OneInchAdapter | None = None,
        chain: ChainReader | None = None,
    ) -> None:
        self.registry = registry
        self.discoverer = discoverer
        self.quoter = quoter
        self.config = config
        self.allocator = allocator or Allocator(config)
        self.composer = composer or CalldataComposer(config)
        self.executor = executor
        self.oneinch = oneinch
        self.chain = chain
        self._ether_rates: TtlCache[str, float] = TtlCache(config.gas_rate_ttl)

    async def _gas_price_in_output(self, ctx: RoutingContext) -> float:
        """Gas price in output base units per gas unit.

        Ether outputs use the gas price as is. Other outputs are priced by
        quoting ``gas_rate_reference`` wei of WETH into the output token
        through this engine's own discovery and quoting. Without such a
        quote gas is not counted.
        """
        if self.chain is None:
            return 0.0
        gas_price = await self.chain.gas_price()
        to_token = ctx.to_token
        if to_token.address == NATIVE_ADDRESS or self.registry.is_wrapped_native(to_token.address):
            return float(gas_price)
        try:
            rate = await self._ether_rates.get_or_load(to_token.address, lambda: self._ether_rate(ctx))
        except (EngineError, UpstreamUnavailable, TimeoutError) as e:
            ctx.log.info("gas_rate_unavailable", error=str(e))
            return 0.0
        return gas_price * rate

    async def _ether_rate(self, ctx: RoutingContext) -> float:
        """Output base units per wei, from the best WETH quote."""
        weth = await self.registry.resolve_token(self.registry.wrapped_native)
        amount = self.config.gas_rate_reference
        rate_ctx = RoutingContext(
            from_token=weth,
            to_token=ctx.to_token,
            amount_in=amount,
            config=self.config,
            block_number=ctx.block_number,
            query_id=ctx.query_id,
            clock=ctx.clock,
            started_at=ctx.started_at,
        )
        discovery = await asyncio.wait_for(self.discoverer.discover(rate_ctx), timeout=ctx.remaining())
        candidates = await self.quoter.quote_candidates(
            rate_ctx, discovery.paths, amount, timeout=ctx.remaining()
        )
        if not candidates:
            raise EngineError(ErrorCode.NO_ROUTE, "No WETH quote to price gas", to_token=ctx.to_token.address)
        best = max(c.quote.expected_out for c in candidates)
        ctx.log.debug("gas_rate", reference=amount, expected_out=best)
        return best / amount

    async def _candidates(self, ctx: RoutingContext) -> list[Candidate]:
        try:
            discovery = await asyncio.wait_for(self.discoverer.discover(ctx), timeout=ctx.remaining())
        except TimeoutError as e:
            raise EngineError(ErrorCode.TIMEOUT, "Discovery exceeded the query deadline") from e
        if not discovery.paths:
            if discovery.timed_out and not discovery.responded:
                raise EngineError(
                    ErrorCode.TIMEOUT,
                    "No adapter answered before the deadline",
                    timed_out=[k.value for k in discovery.timed_out],
                )
            raise EngineError(
                ErrorCode.NO_ROUTE,
                "No path between the tokens",
                responded=[k.value for k in discovery.responded],
            )

        candidates = await self.quoter.quote_candidates(
            ctx, discovery.paths, ctx.amount_in, timeout=ctx.remaining()
        )
        if not candidates:
            if any(reason == QUOTE_TIMEOUT for reason in ctx.quote_failures.values()):
                raise EngineError(ErrorCode.TIMEOUT, "No quote arrived before the deadline")
            raise EngineError(
                ErrorCode.QUOTE_FAILED,
                "Every candidate path failed to quote",
                failures=dict(ctx.quote_failures),
            )
        return candidates

    async def _confirm_entry(
        self, ctx: RoutingContext, entry: AllocationEntry, amount: int
    ) -> Candidate | None:
        """Re-quote an entry for its allocated amount; 1inch legs get fresh calldata."""
        candidate = entry.candidate
        leg = candidate.path.legs[0]
        if (
            isinstance(leg.pool, OneInchRoute)
            and self.oneinch is not None
            and ctx.bundler is not None
            and needs_materialize(leg.pool, amount)
        ):
            try:
                path = await self.oneinch.materialize(candidate.path, amount, ctx.bundler, ctx.owner)
            except (UpstreamUnavailable, UpstreamRejected, KeyError, ValueError) as e:
                ctx.log.warning("oneinch_materialize_failed", error=str(e))
                return None
            candidate = Candidate(path, candidate.quote, candidate.curve, candidate.leg_curves)

        result = await self.quoter.refresh(candidate, amount, ctx.block_number)
        if not result.is_ok:
            ctx.log.info("confirm_failed", path=candidate.path.key, reason=result.failure.message)
            return None
        return result.unwrap()

    async def _allocate_confirmed(
        self, ctx: RoutingContext, candidates: list[Candidate], gas_price: float
    ) -> tuple[Allocation, str]:
        """Allocate, then confirm each entry; failed entries are dropped and allocation reruns."""
        pool = list(candidates)
        while True:
            plan = self.allocator.plan(pool, ctx.amount_in, gas_price).unwrap()
            allocation = plan.allocation
            amounts = amounts_for_bips(ctx.amount_in, [e.fraction_bips for e in allocation.entries])
            confirmed = await asyncio.gather(
                *(
                    self._confirm_entry(ctx, entry, amount)
                    for entry, amount in zip(allocation.entries, amounts, strict=True)
                )
            )
            failed = {
                entry.path.key
                for entry, fresh in zip(allocation.entries, confirmed, strict=True)
                if fresh is None
            }
            if not failed:
                entries = tuple(
                    replace(entry, candidate=fresh)
                    for entry, fresh in zip(allocation.entries, confirmed, strict=True)
                    if fresh is not None
                )
                return (
                    Allocation(
                        entries,
                        allocation.min_fraction_bips,
                        allocation.expected_out,
                        allocation.shared_pools,
                    ),
                    plan.mode,
                )
            pool = [c for c in pool if c.path.key not in failed]
            ctx.log.info("allocation_rerun", dropped=sorted(failed), remaining=len(pool))
            if not pool:
                raise EngineError(
                    ErrorCode.NO_ROUTE, "No candidate survived confirmation", dropped=sorted(failed)
                )

    async def _route(
        self,
        from_address: str,
        to_address: str,
        amount_in: int,
        *,
        owner: str | None,
        bundler: str | None,
        slippage_bips: int | None,
        compose: bool,
    ) -> RouteQuote:
        if amount_in <= 0:
            raise EngineError(ErrorCode.NO_ROUTE, "Input amount must be positive", amount_in=amount_in)
        from_token, to_token = await asyncio.gather(
            self.registry.resolve_token(from_address),
            self.registry.resolve_token(to_address),
        )
        if self.registry.same_asset(from_token.address, to_token.address):
            raise EngineError(ErrorCode.NO_ROUTE, "Input and output are the same asset")

        ctx = RoutingContext(
            from_token=from_token,
            to_token=to_token,
            amount_in=amount_in,
            config=self.config,
            owner=owner,
            bundler=bundler,
        )
        try:
            ctx.block_number = await self.quoter.current_block()
        except UpstreamUnavailable as e:
            raise EngineError(ErrorCode.UNAVAILABLE, str(e)) from e
        ctx.log.info("query_started", amount_in=amount_in, block=ctx.block_number)

        gas_task = asyncio.create_task(self._gas_price_in_output(ctx))
        try:
            candidates = await self._candidates(ctx)
            gas_price = await gas_task
        except UpstreamUnavailable as e:
            raise EngineError(ErrorCode.UNAVAILABLE, str(e)) from e
        finally:
            gas_task.cancel()
        allocation, mode = await self._allocate_confirmed(ctx, candidates, gas_price)

        amounts = amounts_for_bips(amount_in, [e.fraction_bips for e in allocation.entries])
        expected = sum(
            entry.candidate.quote.expected_out * entry.impact_ratio[0] // entry.impact_ratio[1]
            for entry in allocation.entries
        )
        bundle = None
        if compose:
            if _has_unbuilt_oneinch(allocation, amounts):
                ctx.log.info("bundle_deferred", reason="1inch calldata needs a bundler")
            else:
                bundle = self.composer.compose(allocation, amount_in, slippage_bips)

        ctx.log.info(
            "query_complete",
            mode=mode,
            paths=len(allocation.entries),
            fractions=[e.fraction_bips for e in allocation.entries],
            expected_out=expected,
            elapsed=round(ctx.elapsed, 3),
        )
        return RouteQuote(
            query_id=ctx.query_id,
            from_token=from_token,
            to_token=to_token,
            amount_in=amount_in,
            allocation=allocation,
            mode=mode,
            expected_out=expected,
            block_number=ctx.block_number,
            used_dexes=allocation.dexes,
            responded=tuple(ctx.responded),
            bundle=bundle,
            quote_failures=dict(ctx.quote_failures),
        )

    async def quote(
        self,
        from_token: str,
        to_token: str,
        amount_in: int,
        *,
        owner: str | None = None,
        bundler: str | None = None,
        slippage_bips: int | None = None,
        compose: bool = True,
    ) -> Result[RouteQuote]:
        """Route ``amount_in`` of ``from_token`` into ``to_token``."""
        try:
            route = await asyncio.wait_for(
                self._route(
                    from_token,
                    to_token,
                    amount_in,
                    owner=owner,
                    bundler=bundler,
                    slippage_bips=slippage_bips,
                    compose=compose,
                ),
                # Confirmation and composing may run past the routing deadline
                timeout=self.config.query_deadline * 2,
            )
        except EngineError as e:
            logger.info("query_failed", code=e.code.value, message=e.message)
            return Result.from_error(e)
        except TimeoutError:
            return Result.fail(ErrorCode.TIMEOUT, "Query exceeded its deadline")
        return Result.ok(route)

    async def execute(
        self,
        from_token: str,
        to_token: str,
        amount_in: int,
        signer: TransactionSigner,
        *,
        slippage_bips: int | None = None,
    ) -> Result[ExecutionOutcome]:
        """Route, compose and submit a bundle signed by ``signer``."""
        if self.executor is None:
            return Result.fail(ErrorCode.EXECUTION, "No executor configured")
        try:
            bundler = await self.executor.resolve_bundler(signer.address)
        except EngineError as e:
            return Result.from_error(e)

        routed = await self.quote(
            from_token,
            to_token,
            amount_in,
            owner=signer.address,
            bundler=bundler,
            slippage_bips=slippage_bips,
        )
        if not routed.is_ok:
            return Result(failure=routed.failure)
        route = routed.unwrap()
        if route.bundle is None:
            return Result.fail(ErrorCode.COMPOSE_ERROR, "Route could not be composed", query_id=route.query_id)

        executed = await self.executor.execute_result(route.bundle.descriptor, signer, bundler)
        if not executed.is_ok:
            return Result(failure=executed.failure)
        return Result.ok(ExecutionOutcome(route, executed.unwrap()))


__all__ = ["RouteQuote", "ExecutionOutcome", "Engine"]
