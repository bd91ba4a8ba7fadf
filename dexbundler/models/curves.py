"""Pure output-vs-input models used to rank candidates and split orders."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

BIPS = 10_000


class SwapCurve(Protocol):
    """Output of a pool (or whole path) as a function of its input."""

    def amount_out(self, amount_in: int) -> int: ...


@dataclass(frozen=True)
class ConstantProductCurve:
    """x*y=k pool with a fee in bips.

    Uses the UniswapV2 formula:
        amount_out = (amount_in * (10000 - fee) * reserve_out) /
                     (reserve_in * 10000 + amount_in * (10000 - fee))
    """

    reserve_in: int
    reserve_out: int
    fee_bips: int = 30

    def amount_out(self, amount_in: int) -> int:
        if amount_in <= 0 or self.reserve_in <= 0 or self.reserve_out <= 0:
            return 0
        amount_in_with_fee = amount_in * (BIPS - self.fee_bips)
        numerator = amount_in_with_fee * self.reserve_out
        denominator = self.reserve_in * BIPS + amount_in_with_fee
        return numerator // denominator


@dataclass(frozen=True)
class LinearCurve:
    """Constant rate taken from a single quote; no modelled price impact."""

    amount_in_ref: int
    amount_out_ref: int

    def amount_out(self, amount_in: int) -> int:
        if amount_in <= 0 or self.amount_in_ref <= 0:
            return 0
        return amount_in * self.amount_out_ref // self.amount_in_ref


@dataclass(frozen=True)
class ChainedCurve:
    """Sequential composition of per-leg curves."""

    legs: tuple[SwapCurve, ...]

    def amount_out(self, amount_in: int) -> int:
        amount = amount_in
        for curve in self.legs:
            amount = curve.amount_out(amount)
            if amount <= 0:
                return 0
        return amount


__all__ = ["SwapCurve", "ConstantProductCurve", "LinearCurve", "ChainedCurve"]
