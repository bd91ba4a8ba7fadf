"""Legs, paths, quotes and allocations.

Paths are built once per query by the discoverer and never mutated; the
composer derives new legs with concrete amounts via ``dataclasses.replace``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum, IntEnum

from dexbundler.constants import BIPS, MIN_FRACTION_BIPS, NATIVE_ADDRESS
from dexbundler.models.curves import SwapCurve
from dexbundler.models.pools import DexKind, PoolRef
from dexbundler.models.types import normalize_address


class AmountMode(Enum):
    """How a leg's input amount is sized on chain."""

    FIXED = "fixed"
    USE_BALANCE = "use_balance"


class WrapOp(IntEnum):
    """Native/wrapped conversion attached to a leg (bundler wire values)."""

    NONE = 0
    WRAP_NATIVE = 1  # before the leg
    UNWRAP_WRAPPED = 3  # after the leg


class QuoteSource(Enum):
    SIMULATION = "simulation"
    API = "api"
    SOR = "sor"
    CONSTANT_PRODUCT = "constant_product"


class PathError(ValueError):
    """A path violates the token-chain or leg-mode invariants."""


@dataclass(frozen=True)
class QuoteResult:
    """Expected output of a path for a given input.

    Attributes:
        expected_out: Output amount in base units of the path's output token
        estimated_gas: Gas units for executing the path's legs
        stale_at_block: Block the quote was taken at
        source: Where the number came from
        amount_in: Input the quote was taken for
    """

    expected_out: int
    estimated_gas: int
    stale_at_block: int
    source: QuoteSource
    amount_in: int = 0

    @property
    def confirmed(self) -> bool:
        """Fallback math may rank candidates but never sets min outputs."""
        return self.source is not QuoteSource.CONSTANT_PRODUCT

    def is_stale(self, current_block: int, max_age_blocks: int) -> bool:
        return current_block - self.stale_at_block > max_age_blocks


@dataclass(frozen=True)
class Leg:
    """A single hop through exactly one pool."""

    dex: DexKind
    pool: PoolRef
    input_token: str
    output_token: str
    mode: AmountMode = AmountMode.USE_BALANCE
    fixed_input_amount: int | None = None
    min_output_amount: int = 0
    wrap_op: WrapOp = WrapOp.NONE

    def __post_init__(self) -> None:
        object.__setattr__(self, "input_token", normalize_address(self.input_token))
        object.__setattr__(self, "output_token", normalize_address(self.output_token))
        if self.mode is AmountMode.FIXED and self.fixed_input_amount is not None:
            if self.fixed_input_amount <= 0:
                raise PathError("FIXED leg needs a positive input amount")

    @property
    def pool_id(self) -> str:
        return self.pool.identifier


def is_same_asset(a: str, b: str, wrapped_native: str) -> bool:
    """True if a and b are equal or the native/wrapped-native pair."""
    a, b = normalize_address(a), normalize_address(b)
    if a == b:
        return True
    return {a, b} == {NATIVE_ADDRESS, normalize_address(wrapped_native)}


def plan_wrap_ops(
    from_token: str,
    to_token: str,
    hops: list[tuple[str, str]],
    wrapped_native: str,
) -> tuple[WrapOp, ...]:
    """Compute the wrap op each leg needs for a chain of (input, output) hops.

    Native can be wrapped before a leg and wrapped can be unwrapped after a
    leg. Anything else (mismatched tokens, a leg needing both, unwrapping
    before the first leg) raises PathError.
    """
    wrapped = normalize_address(wrapped_native)
    ops = [WrapOp.NONE] * len(hops)

    def assign(index: int, op: WrapOp) -> None:
        if ops[index] not in (WrapOp.NONE, op):
            raise PathError(f"Leg {index} needs both wrap and unwrap")
        ops[index] = op

    held = normalize_address(from_token)
    for i, (token_in, token_out) in enumerate(hops):
        token_in = normalize_address(token_in)
        if token_in != held:
            if held == NATIVE_ADDRESS and token_in == wrapped:
                assign(i, WrapOp.WRAP_NATIVE)
            elif held == wrapped and token_in == NATIVE_ADDRESS and i > 0:
                assign(i - 1, WrapOp.UNWRAP_WRAPPED)
            else:
                raise PathError(f"Leg {i} input {token_in} does not follow {held}")
        held = normalize_address(token_out)

    target = normalize_address(to_token)
    if held != target:
        if held == wrapped and target == NATIVE_ADDRESS:
            assign(len(hops) - 1, WrapOp.UNWRAP_WRAPPED)
        else:
            raise PathError(f"Path ends in {held}, expected {target}")
    return tuple(ops)


@dataclass(frozen=True)
class Path:
    """Ordered legs from from_token to to_token."""

    from_token: str
    to_token: str
    legs: tuple[Leg, ...]
    wrapped_native: str

    def __post_init__(self) -> None:
        object.__setattr__(self, "from_token", normalize_address(self.from_token))
        object.__setattr__(self, "to_token", normalize_address(self.to_token))
        if not self.legs:
            raise PathError("Path must have at least one leg")
        if self.legs[0].mode is not AmountMode.FIXED:
            raise PathError("First leg must be FIXED")
        if any(leg.mode is not AmountMode.USE_BALANCE for leg in self.legs[1:]):
            raise PathError("Legs after the first must be USE_BALANCE")
        expected = plan_wrap_ops(
            self.from_token,
            self.to_token,
            [(leg.input_token, leg.output_token) for leg in self.legs],
            self.wrapped_native,
        )
        actual = tuple(leg.wrap_op for leg in self.legs)
        if actual != expected:
            raise PathError(f"Wrap ops {list(actual)} do not match token chain {list(expected)}")

    @classmethod
    def build(
        cls,
        from_token: str,
        to_token: str,
        legs: list[Leg],
        wrapped_native: str,
    ) -> Path:
        """Build a path, assigning amount modes and wrap ops."""
        ops = plan_wrap_ops(
            from_token,
            to_token,
            [(leg.input_token, leg.output_token) for leg in legs],
            wrapped_native,
        )
        built = []
        for i, (leg, op) in enumerate(zip(legs, ops, strict=True)):
            mode = AmountMode.FIXED if i == 0 else AmountMode.USE_BALANCE
            built.append(
                Leg(
                    dex=leg.dex,
                    pool=leg.pool,
                    input_token=leg.input_token,
                    output_token=leg.output_token,
                    mode=mode,
                    wrap_op=op,
                )
            )
        return cls(from_token, to_token, tuple(built), wrapped_native)

    @property
    def hop_count(self) -> int:
        return len(self.legs)

    @property
    def pool_ids(self) -> tuple[str, ...]:
        return tuple(leg.pool_id for leg in self.legs)

    @property
    def dexes(self) -> tuple[DexKind, ...]:
        return tuple(dict.fromkeys(leg.dex for leg in self.legs))

    @property
    def key(self) -> str:
        """Identifier unique per pool sequence and dex."""
        return "|".join(f"{leg.dex.value}:{leg.pool_id}" for leg in self.legs)


@dataclass(frozen=True)
class Candidate:
    """A quoted path plus the curve used for split optimisation.

    ``leg_curves`` is set only when every leg has a pool-level model; such
    legs can be merged into shared segments.
    """

    path: Path
    quote: QuoteResult
    curve: SwapCurve
    leg_curves: tuple[SwapCurve, ...] | None = None

    @property
    def expected_out(self) -> int:
        return self.quote.expected_out

    def net_output(self, gas_price_in_output: float) -> int:
        """Expected output net of gas, both in output token base units."""
        return self.quote.expected_out - int(self.quote.estimated_gas * gas_price_in_output)


@dataclass(frozen=True)
class AllocationEntry:
    """One path of an allocation.

    Attributes:
        candidate: The quoted path
        fraction_bips: Share of the query input routed through this path
        model_out: Modelled output, accounting for pools shared with other entries
        independent_out: Modelled output as if the path ran alone
    """

    candidate: Candidate
    fraction_bips: int
    model_out: int = 0
    independent_out: int = 0

    @property
    def path(self) -> Path:
        return self.candidate.path

    @property
    def impact_ratio(self) -> tuple[int, int]:
        """(numerator, denominator) scaling of an independent quote for shared pools."""
        if self.independent_out <= 0 or self.model_out >= self.independent_out:
            return (1, 1)
        return (self.model_out, self.independent_out)


@dataclass(frozen=True)
class Allocation:
    """Paths with input fractions summing to 10000 bips."""

    entries: tuple[AllocationEntry, ...]
    min_fraction_bips: int = MIN_FRACTION_BIPS
    expected_out: int = 0
    shared_pools: dict[str, int] = field(default_factory=dict, compare=False)

    def __post_init__(self) -> None:
        if not self.entries:
            raise ValueError("Allocation must have at least one entry")
        total = sum(entry.fraction_bips for entry in self.entries)
        if total != BIPS:
            raise ValueError(f"Allocation fractions sum to {total}, expected {BIPS}")
        for entry in self.entries:
            if entry.fraction_bips < self.min_fraction_bips:
                raise ValueError(
                    f"Fraction {entry.fraction_bips} below minimum {self.min_fraction_bips}"
                )

    @property
    def is_single_route(self) -> bool:
        return len(self.entries) == 1 and self.entries[0].fraction_bips == BIPS

    @property
    def dexes(self) -> tuple[DexKind, ...]:
        kinds: dict[DexKind, None] = {}
        for entry in self.entries:
            for dex in entry.path.dexes:
                kinds[dex] = None
        return tuple(kinds)


__all__ = [
    "AmountMode",
    "WrapOp",
    "QuoteSource",
    "PathError",
    "QuoteResult",
    "Leg",
    "is_same_asset",
    "plan_wrap_ops",
    "Path",
    "Candidate",
    "AllocationEntry",
    "Allocation",
]
