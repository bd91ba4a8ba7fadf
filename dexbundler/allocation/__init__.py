"""Allocation: single-route selection and shared-segment-aware splitting."""

from dexbundler.allocation.allocator import (
    AllocationPlan,
    Allocator,
    rank_candidates,
    simulate_sequential,
    snap_to_bips,
    splitting_collides,
)
from dexbundler.allocation.segments import SplitSolver, build_segment_tree, distribute

__all__ = [
    "Allocator",
    "AllocationPlan",
    "rank_candidates",
    "simulate_sequential",
    "snap_to_bips",
    "splitting_collides",
    "SplitSolver",
    "build_segment_tree",
    "distribute",
]
