"""Turns an allocation into an ``executeBundle`` descriptor.

Deterministic: the same allocation, amount and slippage always produce
byte-identical calldata.
"""

from __future__ import annotations

from dataclasses import dataclass, replace

import structlog

from dexbundler.allocation.allocator import amounts_for_bips
from dexbundler.compose.encoders import EncodingError, encode_leg
from dexbundler.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from dexbundler.constants import BIPS
from dexbundler.errors import EngineError, ErrorCode, Result
from dexbundler.models.bundle import BundleDescriptor, EncoderCall
from dexbundler.models.route import Allocation, AllocationEntry, AmountMode, Leg

logger = structlog.get_logger()


@dataclass(frozen=True)
class ComposedBundle:
    """Descriptor plus the concrete legs it was built from."""

    descriptor: BundleDescriptor
    legs: tuple[Leg, ...]
    path_amounts: tuple[int, ...]
    path_min_outputs: tuple[int, ...]


def min_output(entry: AllocationEntry, slippage_bips: int) -> int:
    """Minimum final output for one path: confirmed quote, shared-pool impact, slippage."""
    numerator, denominator = entry.impact_ratio
    expected = entry.candidate.quote.expected_out * numerator // denominator
    return expected * (BIPS - slippage_bips) // BIPS


class CalldataComposer:
    def __init__(self, config: EngineConfig = DEFAULT_ENGINE_CONFIG) -> None:
        self.config = config

    def _encoder(self, leg: Leg) -> str:
        target = self.config.encoder_for(leg.dex.value)
        if target is None:
            raise EngineError(
                ErrorCode.COMPOSE_ERROR, f"No encoder configured for {leg.dex.value}", dex=leg.dex.value
            )
        return target

    def _check_entry(self, entry: AllocationEntry, amount: int, allocation_from: str, to_token: str) -> None:
        path = entry.path
        if path.from_token != allocation_from or path.to_token != to_token:
            raise EngineError(
                ErrorCode.COMPOSE_ERROR,
                "Allocation paths disagree on input or output token",
                path=path.key,
            )
        quote = entry.candidate.quote
        if not quote.confirmed:
            raise EngineError(
                ErrorCode.COMPOSE_ERROR,
                "Min outputs need a confirmed quote",
                path=path.key,
                source=quote.source.value,
            )
        if quote.amount_in and quote.amount_in != amount:
            raise EngineError(
                ErrorCode.COMPOSE_ERROR,
                f"Quote was taken for {quote.amount_in}, path is allocated {amount}",
                path=path.key,
            )

    def compose(
        self,
        allocation: Allocation,
        from_amount: int,
        slippage_bips: int | None = None,
    ) -> ComposedBundle:
        """Build the bundle.

        Each path's first leg is FIXED at its share of ``from_amount`` (the
        last path takes the rounding remainder); later legs spend the
        bundler's balance. Only a path's last leg carries a min output.

        Raises:
            EngineError: COMPOSE_ERROR on any inconsistency
        """
        slippage = self.config.slippage_bips if slippage_bips is None else slippage_bips
        if not 0 <= slippage < BIPS:
            raise EngineError(ErrorCode.COMPOSE_ERROR, f"Slippage {slippage} out of range")
        if from_amount <= 0:
            raise EngineError(ErrorCode.COMPOSE_ERROR, "Bundle input must be positive")

        first = allocation.entries[0].path
        from_token, to_token = first.from_token, first.to_token
        amounts = amounts_for_bips(from_amount, [e.fraction_bips for e in allocation.entries])

        calls: list[EncoderCall] = []
        legs: list[Leg] = []
        path_mins: list[int] = []
        for entry, amount in zip(allocation.entries, amounts, strict=True):
            self._check_entry(entry, amount, from_token, to_token)
            path_min = min_output(entry, slippage)
            last = len(entry.path.legs) - 1
            for i, leg in enumerate(entry.path.legs):
                concrete = replace(
                    leg,
                    mode=AmountMode.FIXED if i == 0 else AmountMode.USE_BALANCE,
                    fixed_input_amount=amount if i == 0 else None,
                    min_output_amount=path_min if i == last else 0,
                )
                try:
                    calldata = encode_leg(concrete)
                except EncodingError as e:
                    raise EngineError(
                        ErrorCode.COMPOSE_ERROR, str(e), path=entry.path.key, leg=i
                    ) from e
                calls.append(EncoderCall(self._encoder(leg), calldata, concrete.wrap_op))
                legs.append(concrete)
            path_mins.append(path_min)

        try:
            descriptor = BundleDescriptor.from_calls(
                from_token, from_amount, to_token, sum(path_mins), calls
            )
        except ValueError as e:
            raise EngineError(ErrorCode.COMPOSE_ERROR, str(e)) from e

        logger.debug(
            "bundle_composed",
            legs=descriptor.leg_count,
            paths=len(allocation.entries),
            min_final_output=descriptor.min_final_output,
        )
        return ComposedBundle(descriptor, tuple(legs), tuple(amounts), tuple(path_mins))

    def compose_result(
        self,
        allocation: Allocation,
        from_amount: int,
        slippage_bips: int | None = None,
    ) -> Result[ComposedBundle]:
        try:
            return Result.ok(self.compose(allocation, from_amount, slippage_bips))
        except EngineError as e:
            return Result.from_error(e)


__all__ = ["ComposedBundle", "CalldataComposer", "min_output"]
