"""Bundle descriptors and execution results."""

from __future__ import annotations

from dataclasses import dataclass, field

from dexbundler.models.route import WrapOp
from dexbundler.models.types import normalize_address


@dataclass(frozen=True)
class EncoderCall:
    """One leg on the wire: an encoder static-call plus its wrap op."""

    target: str
    calldata: bytes
    wrap_op: WrapOp = WrapOp.NONE
    expect_success: bool = True


@dataclass(frozen=True)
class BundleDescriptor:
    """Materialized input of ``executeBundle``.

    The four per-leg arrays correspond positionally.
    """

    from_token: str
    from_amount: int
    to_token: str
    min_final_output: int
    encoder_targets: tuple[str, ...]
    encoder_calldata: tuple[bytes, ...]
    wrap_ops: tuple[WrapOp, ...]
    expect_success: tuple[bool, ...]

    def __post_init__(self) -> None:
        object.__setattr__(self, "from_token", normalize_address(self.from_token))
        object.__setattr__(self, "to_token", normalize_address(self.to_token))
        object.__setattr__(
            self, "encoder_targets", tuple(normalize_address(t) for t in self.encoder_targets)
        )
        n = len(self.encoder_targets)
        lengths = {len(self.encoder_calldata), len(self.wrap_ops), len(self.expect_success)}
        if lengths != {n}:
            raise ValueError(
                "Bundle arrays differ in length: "
                f"targets={n} calldata={len(self.encoder_calldata)} "
                f"wrap_ops={len(self.wrap_ops)} expect_success={len(self.expect_success)}"
            )
        if n == 0:
            raise ValueError("Bundle has no legs")
        if self.from_amount <= 0:
            raise ValueError(f"Bundle input must be positive, got {self.from_amount}")

    @classmethod
    def from_calls(
        cls,
        from_token: str,
        from_amount: int,
        to_token: str,
        min_final_output: int,
        calls: list[EncoderCall],
    ) -> BundleDescriptor:
        return cls(
            from_token=from_token,
            from_amount=from_amount,
            to_token=to_token,
            min_final_output=min_final_output,
            encoder_targets=tuple(c.target for c in calls),
            encoder_calldata=tuple(c.calldata for c in calls),
            wrap_ops=tuple(c.wrap_op for c in calls),
            expect_success=tuple(c.expect_success for c in calls),
        )

    @property
    def leg_count(self) -> int:
        return len(self.encoder_targets)

    def calls(self) -> list[EncoderCall]:
        return [
            EncoderCall(target, data, op, expect)
            for target, data, op, expect in zip(
                self.encoder_targets,
                self.encoder_calldata,
                self.wrap_ops,
                self.expect_success,
                strict=True,
            )
        ]


@dataclass(frozen=True)
class LegReturn:
    """Outcome of one leg as reported by a TradeExecuted event."""

    target: str
    success: bool
    return_data: bytes = b""


@dataclass(frozen=True)
class ExecutionResult:
    tx_hash: str
    success: bool
    gas_used: int
    per_leg_returns: tuple[LegReturn, ...] = ()
    final_output_amount: int = 0
    revert_reason: str | None = None
    details: dict[str, object] = field(default_factory=dict, compare=False)


__all__ = ["EncoderCall", "BundleDescriptor", "LegReturn", "ExecutionResult"]
