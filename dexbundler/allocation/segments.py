"""Segment tree over paths that share pools, and the split solver.

The tree is built once per query and walked root to leaves. Each interior
node is a pool crossed by two or more candidate paths at the same position
(a shared prefix). Leaves are the unshared remainders of single paths.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from dataclasses import dataclass, field

from dexbundler.models.curves import ChainedCurve, SwapCurve
from dexbundler.models.route import Candidate


@dataclass(frozen=True)
class Terminal:
    """The unshared remainder of one path."""

    member: int
    tail: SwapCurve


@dataclass(frozen=True)
class SegmentNode:
    """A shared pool (or the root when ``pool_id`` is None)."""

    pool_id: str | None
    curve: SwapCurve | None
    members: tuple[int, ...]
    children: tuple[SegmentNode | Terminal, ...] = field(default=())


def _build_children(
    candidates: Sequence[Candidate], members: list[int], depth: int
) -> tuple[SegmentNode | Terminal, ...]:
    children: list[SegmentNode | Terminal] = []
    groups: dict[str, list[int]] = {}
    order: list[str] = []

    for index in members:
        candidate = candidates[index]
        curves = candidate.leg_curves
        if curves is None:
            # Opaque or unmodelled path: never merged
            children.append(Terminal(index, candidate.curve))
            continue
        if depth >= len(curves):
            children.append(Terminal(index, ChainedCurve(())))
            continue
        pool_id = candidate.path.legs[depth].pool_id
        if pool_id not in groups:
            groups[pool_id] = []
            order.append(pool_id)
        groups[pool_id].append(index)

    for pool_id in order:
        group = groups[pool_id]
        if len(group) == 1:
            index = group[0]
            curves = candidates[index].leg_curves
            assert curves is not None
            children.append(Terminal(index, ChainedCurve(tuple(curves[depth:]))))
        else:
            first = candidates[group[0]].leg_curves
            assert first is not None
            children.append(
                SegmentNode(
                    pool_id=pool_id,
                    curve=first[depth],
                    members=tuple(group),
                    children=_build_children(candidates, group, depth + 1),
                )
            )
    return tuple(sorted(children, key=_first_member))


def _first_member(node: SegmentNode | Terminal) -> int:
    return node.member if isinstance(node, Terminal) else min(node.members)


def build_segment_tree(candidates: Sequence[Candidate]) -> SegmentNode:
    """Build the tree for candidates in rank order."""
    members = list(range(len(candidates)))
    return SegmentNode(None, None, tuple(members), _build_children(candidates, members, 0))


def shared_pools(root: SegmentNode) -> list[str]:
    """Pool ids of every interior node."""
    found: list[str] = []
    stack: list[SegmentNode | Terminal] = [root]
    while stack:
        node = stack.pop()
        if isinstance(node, SegmentNode):
            if node.pool_id is not None:
                found.append(node.pool_id)
            stack.extend(node.children)
    return sorted(found)


def distribute(total: int, values: Sequence[Callable[[int], int]], samples: int) -> list[int]:
    """Split ``total`` among options by greedy sampling.

    The total is cut into ``samples`` chunks; each chunk goes to the option
    with the best marginal output. Ties go to the earlier option.
    """
    allocation = [0] * len(values)
    if not values or total <= 0:
        return allocation
    if len(values) == 1:
        allocation[0] = total
        return allocation

    edges = [total * k // samples for k in range(samples + 1)]
    current = [value(0) for value in values]
    for k in range(samples):
        size = edges[k + 1] - edges[k]
        if size == 0:
            continue
        best_index = 0
        best_gain: int | None = None
        best_value = 0
        for i, value in enumerate(values):
            candidate_value = value(allocation[i] + size)
            gain = candidate_value - current[i]
            if best_gain is None or gain > best_gain:
                best_index, best_gain, best_value = i, gain, candidate_value
        allocation[best_index] += size
        current[best_index] = best_value
    return allocation


def apportion(total: int, weights: Sequence[int]) -> list[int]:
    """Split an integer total proportionally to weights; parts sum to total."""
    weight_sum = sum(weights)
    if weight_sum <= 0:
        return [total] + [0] * (len(weights) - 1)
    raw = [total * w for w in weights]
    parts = [r // weight_sum for r in raw]
    order = sorted(range(len(weights)), key=lambda i: (-(raw[i] % weight_sum), i))
    for i in order[: total - sum(parts)]:
        parts[i] += 1
    return parts


@dataclass(frozen=True)
class SplitSolution:
    """Solver output in units of the query input.

    Attributes:
        path_amounts: Input routed through each candidate (by index)
        node_amounts: Input flowing through each shared pool
        expected_out: Modelled total output
    """

    path_amounts: dict[int, int]
    node_amounts: dict[str, int]
    expected_out: int


class SplitSolver:
    """Solves the tree: shared pools first, then their downstream children."""

    def __init__(self, root: SegmentNode, samples: int = 100) -> None:
        self.root = root
        self.samples = samples
        self._memo: dict[tuple[int, int], int] = {}

    def value(self, node: SegmentNode | Terminal, amount: int) -> int:
        """Best modelled output of a subtree for a local input amount."""
        if amount <= 0:
            return 0
        if isinstance(node, Terminal):
            return node.tail.amount_out(amount)
        key = (id(node), amount)
        cached = self._memo.get(key)
        if cached is not None:
            return cached
        out = node.curve.amount_out(amount) if node.curve is not None else amount
        parts = self._split(node, out)
        total = sum(self.value(child, part) for child, part in zip(node.children, parts, strict=True))
        self._memo[key] = total
        return total

    def _split(self, node: SegmentNode, amount: int) -> list[int]:
        options = [lambda x, child=child: self.value(child, x) for child in node.children]
        return distribute(amount, options, self.samples)

    def solve(self, total: int) -> SplitSolution:
        path_amounts: dict[int, int] = {}
        node_amounts: dict[str, int] = {}

        def assign(node: SegmentNode | Terminal, local: int, root_units: int) -> None:
            if isinstance(node, Terminal):
                path_amounts[node.member] = path_amounts.get(node.member, 0) + root_units
                return
            if node.pool_id is not None:
                node_amounts[node.pool_id] = root_units
            out = node.curve.amount_out(local) if node.curve is not None else local
            parts = self._split(node, out)
            attributed = apportion(root_units, parts)
            for child, part, share in zip(node.children, parts, attributed, strict=True):
                assign(child, part, share)

        assign(self.root, total, total)
        return SplitSolution(path_amounts, node_amounts, self.value(self.root, total))


__all__ = [
    "Terminal",
    "SegmentNode",
    "build_segment_tree",
    "shared_pools",
    "distribute",
    "apportion",
    "SplitSolution",
    "SplitSolver",
]
