"""Chooses one path or a split across several.

Pure: no I/O, deterministic for a given candidate list.
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass

import structlog

from dexbundler.allocation.segments import (
    SplitSolver,
    apportion,
    build_segment_tree,
    shared_pools,
)
from dexbundler.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from dexbundler.constants import BIPS
from dexbundler.errors import ErrorCode, Result
from dexbundler.models.curves import ConstantProductCurve, SwapCurve
from dexbundler.models.route import Allocation, AllocationEntry, Candidate

logger = structlog.get_logger()


def rank_key(candidate: Candidate, gas_price_in_output: float) -> tuple[int, int, int, str]:
    """Sort key: best expected output, then net of gas, fewer legs, smaller pool id."""
    return (
        -candidate.expected_out,
        -candidate.net_output(gas_price_in_output),
        candidate.path.hop_count,
        ",".join(candidate.path.pool_ids),
    )


def rank_candidates(candidates: Sequence[Candidate], gas_price_in_output: float = 0.0) -> list[Candidate]:
    return sorted(candidates, key=lambda c: rank_key(c, gas_price_in_output))


def splitting_collides(candidates: Sequence[Candidate]) -> bool:
    """True if two paths cross the same pool in opposite directions."""
    direction: dict[str, str] = {}
    for candidate in candidates:
        for leg in candidate.path.legs:
            seen = direction.setdefault(leg.pool_id, leg.input_token)
            if seen != leg.input_token:
                return True
    return False


def snap_to_bips(amounts: Sequence[int], total: int, min_fraction_bips: int) -> list[int]:
    """Convert amounts to bips summing to 10000, each 0 or >= the minimum.

    Entries under the minimum are dropped and their bips go to the largest
    entry (earliest on ties).
    """
    bips = apportion(BIPS, list(amounts)) if total > 0 else [BIPS] + [0] * (len(amounts) - 1)
    while True:
        small = [i for i, b in enumerate(bips) if 0 < b < min_fraction_bips]
        if not small:
            break
        drop = min(small, key=lambda i: (bips[i], -i))
        freed = bips[drop]
        bips[drop] = 0
        largest = max(range(len(bips)), key=lambda i: (bips[i], -i))
        bips[largest] += freed
    return bips


def amounts_for_bips(total: int, bips: Sequence[int]) -> list[int]:
    """Input per entry; the last non-zero entry takes the rounding remainder."""
    amounts = [total * b // BIPS for b in bips]
    nonzero = [i for i, b in enumerate(bips) if b > 0]
    if nonzero:
        amounts[nonzero[-1]] += total - sum(amounts)
    return amounts


def simulate_sequential(candidates: Sequence[Candidate], amounts: Sequence[int]) -> list[int]:
    """Model outputs when paths execute one after another in a bundle.

    Constant-product legs update a shared reserve book, so a pool crossed by
    several paths prices later paths after earlier ones moved it.
    """
    book: dict[str, ConstantProductCurve] = {}
    outputs: list[int] = []
    for candidate, amount in zip(candidates, amounts, strict=True):
        if amount <= 0:
            outputs.append(0)
            continue
        if candidate.leg_curves is None:
            outputs.append(candidate.curve.amount_out(amount))
            continue
        current = amount
        for leg, curve in zip(candidate.path.legs, candidate.leg_curves, strict=True):
            pool_curve: SwapCurve = book.get(leg.pool_id, curve)
            out = pool_curve.amount_out(current)
            if isinstance(pool_curve, ConstantProductCurve):
                book[leg.pool_id] = ConstantProductCurve(
                    pool_curve.reserve_in + current,
                    pool_curve.reserve_out - out,
                    pool_curve.fee_bips,
                )
            current = out
        outputs.append(current)
    return outputs


@dataclass(frozen=True)
class AllocationPlan:
    """Allocation plus the figures that decided it (for logging and tests)."""

    allocation: Allocation
    mode: str
    single_route_net: int
    split_net: int | None = None


class Allocator:
    """Mode A (best single route) or Mode B (split with shared-segment awareness)."""

    def __init__(self, config: EngineConfig = DEFAULT_ENGINE_CONFIG) -> None:
        self.max_paths = config.max_concurrent_paths
        self.margin_bips = config.single_route_margin_bips
        self.min_fraction_bips = config.min_fraction_bips
        self.samples = config.split_samples

    def _single(self, candidate: Candidate, amount_in: int) -> Allocation:
        model = candidate.curve.amount_out(amount_in)
        entry = AllocationEntry(candidate, BIPS, model, model)
        return Allocation((entry,), self.min_fraction_bips, model)

    def _beats_by_margin(self, best: Candidate, second: Candidate) -> bool:
        return best.expected_out * BIPS >= second.expected_out * (BIPS + self.margin_bips)

    def plan(
        self,
        candidates: Sequence[Candidate],
        amount_in: int,
        gas_price_in_output: float = 0.0,
    ) -> Result[AllocationPlan]:
        eligible = [c for c in candidates if c.expected_out > 0]
        if not eligible:
            return Result.fail(ErrorCode.NO_ROUTE, "No eligible candidates", candidates=len(candidates))
        if amount_in <= 0:
            return Result.fail(ErrorCode.NO_ROUTE, "Input amount must be positive", amount_in=amount_in)

        ranked = rank_candidates(eligible, gas_price_in_output)[: self.max_paths]
        best = ranked[0]
        single = self._single(best, amount_in)
        single_net = best.curve.amount_out(amount_in) - int(best.quote.estimated_gas * gas_price_in_output)

        if len(ranked) == 1:
            return Result.ok(AllocationPlan(single, "single", single_net))
        if self._beats_by_margin(best, ranked[1]):
            return Result.ok(AllocationPlan(single, "single_margin", single_net))
        if splitting_collides(ranked):
            logger.debug("split_collides", paths=[c.path.key for c in ranked])
            return Result.ok(AllocationPlan(single, "single_collision", single_net))

        root = build_segment_tree(ranked)
        solution = SplitSolver(root, self.samples).solve(amount_in)
        raw = [solution.path_amounts.get(i, 0) for i in range(len(ranked))]
        bips = snap_to_bips(raw, amount_in, self.min_fraction_bips)
        if sum(1 for b in bips if b > 0) < 2:
            return Result.ok(AllocationPlan(single, "single_no_split", single_net))

        chosen = [(c, b) for c, b in zip(ranked, bips, strict=True) if b > 0]
        chosen_candidates = [c for c, _ in chosen]
        amounts = amounts_for_bips(amount_in, [b for _, b in chosen])
        model_outs = simulate_sequential(chosen_candidates, amounts)
        independent = [c.curve.amount_out(a) for c, a in zip(chosen_candidates, amounts, strict=True)]
        split_gas = sum(c.quote.estimated_gas for c in chosen_candidates)
        split_net = sum(model_outs) - int(split_gas * gas_price_in_output)

        if split_net <= single_net:
            return Result.ok(AllocationPlan(single, "single_better", single_net, split_net))

        shared = {
            pool_id: sum(
                a for c, a in zip(chosen_candidates, amounts, strict=True) if pool_id in c.path.pool_ids
            )
            for pool_id in shared_pools(root)
        }
        entries = tuple(
            AllocationEntry(c, b, out, ind)
            for (c, b), out, ind in zip(chosen, model_outs, independent, strict=True)
        )
        allocation = Allocation(entries, self.min_fraction_bips, sum(model_outs), shared)
        logger.debug(
            "split_allocation",
            fractions=[b for _, b in chosen],
            shared_pools=list(shared),
            single_net=single_net,
            split_net=split_net,
        )
        return Result.ok(AllocationPlan(allocation, "split", single_net, split_net))

    def allocate(
        self,
        candidates: Sequence[Candidate],
        amount_in: int,
        gas_price_in_output: float = 0.0,
    ) -> Result[Allocation]:
        result = self.plan(candidates, amount_in, gas_price_in_output)
        if not result.is_ok:
            return Result(failure=result.failure)
        return Result.ok(result.unwrap().allocation)


__all__ = [
    "rank_key",
    "rank_candidates",
    "splitting_collides",
    "snap_to_bips",
    "amounts_for_bips",
    "simulate_sequential",
    "AllocationPlan",
    "Allocator",
]
