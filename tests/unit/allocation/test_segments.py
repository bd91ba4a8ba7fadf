"""Tests for greedy distribution, apportionment and the segment tree."""

from dexbundler.allocation.segments import (
    SegmentNode,
    SplitSolver,
    Terminal,
    apportion,
    build_segment_tree,
    distribute,
    shared_pools,
)
from dexbundler.models.curves import ConstantProductCurve, LinearCurve
from tests.helpers import DAI, USDC, USDT, cp_candidate, make_candidate, make_v4_key, make_v4_path

DAI_USDT = make_v4_key(DAI, USDT)
USDT_USDC = make_v4_key(USDT, USDC)
USDT_USDC_LOW_FEE = make_v4_key(USDT, USDC, 500, 10)
DAI_USDC = make_v4_key(DAI, USDC)
DAI_USDC_LOW_FEE = make_v4_key(DAI, USDC, 500, 10)

VIA_Q = make_v4_path(DAI, USDC, DAI_USDT, USDT_USDC)
VIA_R = make_v4_path(DAI, USDC, DAI_USDT, USDT_USDC_LOW_FEE)
DIRECT = make_v4_path(DAI, USDC, DAI_USDC)
DIRECT_LOW_FEE = make_v4_path(DAI, USDC, DAI_USDC_LOW_FEE)


class TestDistribute:
    def test_single_option_takes_all(self) -> None:
        assert distribute(1234, [LinearCurve(1, 1).amount_out], 10) == [1234]

    def test_nothing_to_distribute(self) -> None:
        assert distribute(0, [LinearCurve(1, 1).amount_out] * 2, 10) == [0, 0]

    def test_linear_ties_go_to_first(self) -> None:
        curve = LinearCurve(1, 2)
        assert distribute(1000, [curve.amount_out, curve.amount_out], 10) == [1000, 0]

    def test_better_linear_rate_wins(self) -> None:
        worse, better = LinearCurve(100, 99), LinearCurve(100, 100)
        assert distribute(1000, [worse.amount_out, better.amount_out], 10) == [0, 1000]

    def test_equal_pools_split_evenly(self) -> None:
        pool = ConstantProductCurve(10**6, 10**6)
        amounts = distribute(100_000, [pool.amount_out, pool.amount_out], 100)
        assert sum(amounts) == 100_000
        assert abs(amounts[0] - amounts[1]) <= 1000

    def test_deeper_pool_gets_more(self) -> None:
        shallow, deep = ConstantProductCurve(10**6, 10**6), ConstantProductCurve(3 * 10**6, 3 * 10**6)
        shallow_part, deep_part = distribute(100_000, [shallow.amount_out, deep.amount_out], 100)
        assert deep_part > 2 * shallow_part


class TestApportion:
    def test_remainder_to_largest_fractions(self) -> None:
        assert apportion(10, [1, 1, 1]) == [4, 3, 3]
        assert apportion(100, [30, 70]) == [30, 70]

    def test_sums_to_total(self) -> None:
        assert sum(apportion(999_999, [3, 5, 7, 11])) == 999_999

    def test_zero_weights(self) -> None:
        assert apportion(5, [0, 0]) == [5, 0]


class TestSegmentTree:
    def test_shared_prefix_becomes_node(self) -> None:
        candidates = [
            cp_candidate(VIA_Q, [(10**9, 10**9), (10**6, 10**6)], 1000),
            cp_candidate(VIA_R, [(10**9, 10**9), (10**6, 10**6)], 1000),
        ]
        root = build_segment_tree(candidates)

        assert root.pool_id is None
        (node,) = root.children
        assert isinstance(node, SegmentNode)
        assert node.pool_id == DAI_USDT.pool_id
        assert node.members == (0, 1)
        assert [c.member for c in node.children] == [0, 1]
        assert shared_pools(root) == [DAI_USDT.pool_id]

    def test_unmodelled_paths_are_terminals(self) -> None:
        candidates = [make_candidate(VIA_Q, 990, 1000), make_candidate(VIA_R, 980, 1000)]
        root = build_segment_tree(candidates)
        assert all(isinstance(child, Terminal) for child in root.children)
        assert shared_pools(root) == []

    def test_disjoint_paths(self) -> None:
        candidates = [
            cp_candidate(DIRECT, [(10**6, 10**6)], 1000),
            cp_candidate(DIRECT_LOW_FEE, [(10**6, 10**6)], 1000),
        ]
        root = build_segment_tree(candidates)
        assert [type(child) for child in root.children] == [Terminal, Terminal]


class TestSplitSolver:
    def test_independent_pools_split_evenly(self) -> None:
        candidates = [
            cp_candidate(DIRECT, [(10**6, 10**6)], 100_000),
            cp_candidate(DIRECT_LOW_FEE, [(10**6, 10**6)], 100_000),
        ]
        solution = SplitSolver(build_segment_tree(candidates)).solve(100_000)

        assert sum(solution.path_amounts.values()) == 100_000
        assert abs(solution.path_amounts[0] - solution.path_amounts[1]) <= 1000
        assert solution.node_amounts == {}
        assert solution.expected_out > candidates[0].expected_out

    def test_shared_pool_carries_whole_input(self) -> None:
        candidates = [
            cp_candidate(VIA_Q, [(10**9, 10**9), (10**6, 10**6)], 100_000),
            cp_candidate(VIA_R, [(10**9, 10**9), (10**6, 10**6)], 100_000),
        ]
        solution = SplitSolver(build_segment_tree(candidates)).solve(100_000)

        assert solution.node_amounts == {DAI_USDT.pool_id: 100_000}
        assert sum(solution.path_amounts.values()) == 100_000
        assert min(solution.path_amounts.values()) > 40_000

    def test_shared_pool_counted_once(self) -> None:
        shared = ConstantProductCurve(10**6, 10**6)
        candidates = [
            cp_candidate(VIA_Q, [(10**6, 10**6), (10**9, 10**9)], 100_000),
            cp_candidate(VIA_R, [(10**6, 10**6), (10**9, 10**9)], 100_000),
        ]
        solution = SplitSolver(build_segment_tree(candidates)).solve(100_000)
        # Splitting after a shared bottleneck cannot beat sending it all through
        assert solution.expected_out <= shared.amount_out(100_000)
