"""In-memory reference bundler.

Runs a BundleDescriptor with the bundler contract's observable semantics
against local pool simulators: pull the input from the owner, execute legs in
array order, sweep every balance back to the owner and enforce the minimum
final output. A revert restores all balances and pool states.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, field
from typing import Any, Protocol

import structlog
from eth_abi import encode

from dexbundler.compose.encoders import (
    BALANCER_PATHS_SWAP,
    BALANCER_SINGLE_SWAP,
    BALANCER_USE_BALANCE_PATHS_SWAP,
    BALANCER_USE_BALANCE_SWAP,
    DIRECT_V4_SWAP,
    DIRECT_V4_USE_BALANCE_SWAP,
    RAW_CALL,
    V4_SINGLE_SWAP,
    V4_USE_BALANCE_SWAP,
    EncoderFunction,
    EncodingError,
    decode_encoder_call,
)
from dexbundler.constants import (
    BALANCER_STEP_GAS,
    BIPS,
    BUNDLE_OVERHEAD_GAS,
    NATIVE_ADDRESS,
    ONEINCH_DEFAULT_GAS,
    V4_DIRECT_SWAP_GAS,
    V4_SWAP_GAS,
    WETH,
    WRAP_GAS,
)
from dexbundler.execution.revert import classify_revert
from dexbundler.models.bundle import BundleDescriptor, ExecutionResult, LegReturn
from dexbundler.models.curves import ConstantProductCurve
from dexbundler.models.pools import DexKind, V4PoolKey
from dexbundler.models.route import WrapOp
from dexbundler.models.types import normalize_address

logger = structlog.get_logger()

LEG_GAS = {
    DexKind.UNISWAP_V4: V4_SWAP_GAS,
    DexKind.DIRECT_V4: V4_DIRECT_SWAP_GAS,
    DexKind.BALANCER_V3: BALANCER_STEP_GAS,
    DexKind.ONEINCH: ONEINCH_DEFAULT_GAS,
}


class LocalRevert(Exception):
    """Revert inside the local bundler."""

    def __init__(self, reason: str) -> None:
        super().__init__(reason)
        self.reason = reason


class LocalPool(Protocol):
    def swap(self, token_in: str, amount_in: int) -> tuple[str, int]:
        """Execute a swap, returning (token_out, amount_out)."""
        ...

    def other(self, token: str) -> str: ...

    def snapshot(self) -> Any: ...

    def restore(self, state: Any) -> None: ...


@dataclass
class ConstantProductPool:
    """Two-token x*y=k pool with mutable reserves."""

    token0: str
    token1: str
    reserve0: int
    reserve1: int
    fee_bips: int = 30

    def __post_init__(self) -> None:
        self.token0 = normalize_address(self.token0)
        self.token1 = normalize_address(self.token1)

    def _side(self, token_in: str) -> bool:
        token = normalize_address(token_in)
        if token == self.token0:
            return True
        if token == self.token1:
            return False
        raise LocalRevert(f"token {token} not in pool")

    def other(self, token: str) -> str:
        return self.token1 if self._side(token) else self.token0

    def curve(self, token_in: str) -> ConstantProductCurve:
        if self._side(token_in):
            return ConstantProductCurve(self.reserve0, self.reserve1, self.fee_bips)
        return ConstantProductCurve(self.reserve1, self.reserve0, self.fee_bips)

    def quote(self, token_in: str, amount_in: int) -> int:
        return self.curve(token_in).amount_out(amount_in)

    def swap(self, token_in: str, amount_in: int) -> tuple[str, int]:
        out = self.quote(token_in, amount_in)
        if out <= 0:
            raise LocalRevert("zero output")
        if self._side(token_in):
            self.reserve0 += amount_in
            self.reserve1 -= out
            return self.token1, out
        self.reserve1 += amount_in
        self.reserve0 -= out
        return self.token0, out

    def snapshot(self) -> tuple[int, int]:
        return (self.reserve0, self.reserve1)

    def restore(self, state: tuple[int, int]) -> None:
        self.reserve0, self.reserve1 = state


@dataclass
class Ledger:
    """Token balances and ERC-20 allowances; NATIVE_ADDRESS is ether."""

    balances: dict[tuple[str, str], int] = field(default_factory=dict)
    allowances: dict[tuple[str, str, str], int] = field(default_factory=dict)

    def balance_of(self, holder: str, token: str) -> int:
        return self.balances.get((normalize_address(holder), normalize_address(token)), 0)

    def mint(self, holder: str, token: str, amount: int) -> None:
        key = (normalize_address(holder), normalize_address(token))
        self.balances[key] = self.balances.get(key, 0) + amount

    def burn(self, holder: str, token: str, amount: int) -> None:
        if self.balance_of(holder, token) < amount:
            raise LocalRevert(f"insufficient balance of {normalize_address(token)}")
        self.mint(holder, token, -amount)

    def transfer(self, token: str, sender: str, recipient: str, amount: int) -> None:
        self.burn(sender, token, amount)
        self.mint(recipient, token, amount)

    def approve(self, owner: str, token: str, spender: str, amount: int) -> None:
        key = (normalize_address(owner), normalize_address(token), normalize_address(spender))
        self.allowances[key] = amount

    def transfer_from(self, token: str, owner: str, spender: str, recipient: str, amount: int) -> None:
        key = (normalize_address(owner), normalize_address(token), normalize_address(spender))
        if self.allowances.get(key, 0) < amount:
            raise LocalRevert("transferFrom: insufficient allowance")
        self.allowances[key] -= amount
        self.transfer(token, owner, recipient, amount)

    def tokens_held(self, holder: str) -> list[str]:
        holder = normalize_address(holder)
        return sorted(token for (h, token), amount in self.balances.items() if h == holder and amount)


@dataclass
class _LegPlan:
    """A decoded encoder call: what the bundler spends and what it receives."""

    target: str
    token_in: str
    token_out: str
    amount_in: int | None
    min_out: int
    run: Callable[[int], int]


class LocalBundler:
    """Reference implementation of ``executeBundle``.

    Pools are keyed by the address or id an encoder call names: the v4 pool
    id for Uniswap legs, the pool address for Balancer steps and the router
    address for prebuilt 1inch calls.
    """

    def __init__(
        self,
        ledger: Ledger,
        owner: str,
        *,
        encoders: Mapping[str, DexKind],
        pools: Mapping[str, LocalPool],
        address: str = "0x00000000000000000000000000000000000b0b1e",
        wrapped_native: str = WETH,
    ) -> None:
        self.ledger = ledger
        self.owner = normalize_address(owner)
        self.address = normalize_address(address)
        self.encoders = {normalize_address(a): kind for a, kind in encoders.items()}
        self.pools = {k.lower(): pool for k, pool in pools.items()}
        self.wrapped_native = normalize_address(wrapped_native)
        self._executed = 0

    def _pool(self, key: str) -> LocalPool:
        pool = self.pools.get(key.lower())
        if pool is None:
            raise LocalRevert(f"unknown pool {key}")
        return pool

    def _swap(self, pool_key: str, token_in: str, amount: int) -> int:
        _, out = self._pool(pool_key).swap(token_in, amount)
        return out

    def _v4_plan(
        self, target: str, key_tuple: tuple, token_in: str, amount: int | None, min_out: int
    ) -> _LegPlan:
        key = V4PoolKey(*key_tuple)
        token_in = normalize_address(token_in)
        pool_id = key.pool_id
        return _LegPlan(
            target=target,
            token_in=token_in,
            token_out=key.other(token_in),
            amount_in=amount,
            min_out=min_out,
            run=lambda a: self._swap(pool_id, token_in, a),
        )

    def _held(self, token: str, weth_is_eth: bool) -> str:
        token = normalize_address(token)
        return NATIVE_ADDRESS if weth_is_eth and token == self.wrapped_native else token

    def _balancer_paths(
        self, token_in: str, paths: list, shares: list[int]
    ) -> tuple[str, Callable[[int], int]]:
        token_out = normalize_address(paths[0][-1][1])

        def run(amount: int) -> int:
            total = 0
            remaining = amount
            for i, (steps, share) in enumerate(zip(paths, shares, strict=True)):
                part = remaining if i == len(paths) - 1 else amount * share // BIPS
                remaining -= part
                current, token = part, normalize_address(token_in)
                for pool, step_out, _is_buffer in steps:
                    current = self._swap(pool, token, current)
                    token = normalize_address(step_out)
                total += current
            return total

        return token_out, run

    def _plan(self, target: str, dex: DexKind, calldata: bytes) -> _LegPlan:
        try:
            function, args = decode_encoder_call(dex, calldata)
        except EncodingError as e:
            raise LocalRevert(str(e)) from e
        return self._plan_for(target, function, args)

    def _plan_for(self, target: str, function: EncoderFunction, args: tuple) -> _LegPlan:
        if function is V4_SINGLE_SWAP:
            key, _zfo, amount, min_out, token_in = args
            return self._v4_plan(target, key, token_in, amount, min_out)
        if function is V4_USE_BALANCE_SWAP:
            key, _zfo, min_out, _wrap, token_in = args
            return self._v4_plan(target, key, token_in, None, min_out)
        if function is DIRECT_V4_SWAP:
            token_in, amount, _token_out, key, _zfo, specified, _limit, min_out = args
            if specified != -amount:
                raise LocalRevert("amountSpecified does not match amountIn")
            return self._v4_plan(target, key, token_in, amount, min_out)
        if function is DIRECT_V4_USE_BALANCE_SWAP:
            token_in, _token_out, key, _zfo, _limit, min_out = args
            return self._v4_plan(target, key, token_in, None, min_out)
        if function in (BALANCER_SINGLE_SWAP, BALANCER_USE_BALANCE_SWAP):
            if function is BALANCER_SINGLE_SWAP:
                pool, token_in, token_out, amount, min_out, weth_is_eth = args
            else:
                pool, token_in, token_out, min_out, weth_is_eth = args
                amount = None
            pool_token_in = normalize_address(token_in)
            return _LegPlan(
                target,
                self._held(token_in, weth_is_eth),
                self._held(token_out, weth_is_eth),
                amount,
                min_out,
                lambda a: self._swap(pool, pool_token_in, a),
            )
        if function in (BALANCER_PATHS_SWAP, BALANCER_USE_BALANCE_PATHS_SWAP):
            if function is BALANCER_PATHS_SWAP:
                token_in, paths, shares, amount, min_out, weth_is_eth = args
            else:
                token_in, paths, shares, min_out, weth_is_eth = args
                amount = None
            token_out, run = self._balancer_paths(token_in, paths, shares)
            return _LegPlan(
                target,
                self._held(token_in, weth_is_eth),
                self._held(token_out, weth_is_eth),
                amount,
                min_out,
                run,
            )
        if function is RAW_CALL:
            router, _data, amount, token_in = args
            token_in = normalize_address(token_in)
            pool = self._pool(router)
            return _LegPlan(
                target=normalize_address(router),
                token_in=token_in,
                token_out=pool.other(token_in),
                amount_in=amount,
                min_out=0,
                run=lambda a: pool.swap(token_in, a)[1],
            )
        raise LocalRevert(f"unsupported encoder function {function.signature}")

    def _wrap(self, amount: int) -> None:
        self.ledger.burn(self.address, NATIVE_ADDRESS, amount)
        self.ledger.mint(self.address, self.wrapped_native, amount)

    def _unwrap_all(self) -> None:
        amount = self.ledger.balance_of(self.address, self.wrapped_native)
        if amount:
            self.ledger.burn(self.address, self.wrapped_native, amount)
            self.ledger.mint(self.address, NATIVE_ADDRESS, amount)

    def _run_leg(self, index: int, target: str, calldata: bytes, wrap_op: WrapOp) -> tuple[int, LegReturn]:
        dex = self.encoders.get(normalize_address(target))
        if dex is None:
            raise LocalRevert(f"leg {index}: unknown encoder {target}")
        plan = self._plan(target, dex, calldata)

        if wrap_op is WrapOp.WRAP_NATIVE:
            native = self.ledger.balance_of(self.address, NATIVE_ADDRESS)
            self._wrap(native if plan.amount_in is None else min(plan.amount_in, native))

        amount = plan.amount_in
        if amount is None:
            amount = self.ledger.balance_of(self.address, plan.token_in)
        if amount <= 0:
            raise LocalRevert(f"leg {index}: nothing to swap")
        self.ledger.burn(self.address, plan.token_in, amount)
        out = plan.run(amount)
        if out < plan.min_out:
            raise LocalRevert(f"leg {index}: insufficient output {out} < {plan.min_out}")
        self.ledger.mint(self.address, plan.token_out, out)

        if wrap_op is WrapOp.UNWRAP_WRAPPED:
            self._unwrap_all()

        gas = LEG_GAS[dex] + (WRAP_GAS if wrap_op is not WrapOp.NONE else 0)
        return gas, LegReturn(plan.target, True, encode(["uint256"], [out]))

    def _snapshot(self) -> tuple[dict, dict, dict[str, Any]]:
        return (
            dict(self.ledger.balances),
            dict(self.ledger.allowances),
            {key: pool.snapshot() for key, pool in self.pools.items()},
        )

    def _restore(self, state: tuple[dict, dict, dict[str, Any]]) -> None:
        balances, allowances, pools = state
        self.ledger.balances = dict(balances)
        self.ledger.allowances = dict(allowances)
        for key, pool_state in pools.items():
            self.pools[key].restore(pool_state)

    def _pull(self, descriptor: BundleDescriptor, value: int) -> None:
        if descriptor.from_token == NATIVE_ADDRESS:
            if value != descriptor.from_amount:
                raise LocalRevert("msg.value does not match fromAmount")
            self.ledger.transfer(NATIVE_ADDRESS, self.owner, self.address, value)
            return
        if value:
            raise LocalRevert("unexpected msg.value")
        self.ledger.transfer_from(
            descriptor.from_token, self.owner, self.address, self.address, descriptor.from_amount
        )

    def execute(self, descriptor: BundleDescriptor, value: int | None = None) -> ExecutionResult:
        """Run the bundle; on revert every balance and pool is left untouched."""
        if value is None:
            value = descriptor.from_amount if descriptor.from_token == NATIVE_ADDRESS else 0
        self._executed += 1
        tx_hash = f"local:{self._executed}"
        initial = self._snapshot()
        owner_before = self.ledger.balance_of(self.owner, descriptor.to_token)
        held_before = {
            token: self.ledger.balance_of(self.address, token)
            for token in self.ledger.tokens_held(self.address)
        }
        gas_used = BUNDLE_OVERHEAD_GAS
        returns: list[LegReturn] = []
        try:
            self._pull(descriptor, value)
            for index, call in enumerate(descriptor.calls()):
                leg_state = self._snapshot()
                try:
                    gas, leg_return = self._run_leg(index, call.target, call.calldata, call.wrap_op)
                except LocalRevert as e:
                    if call.expect_success:
                        raise
                    self._restore(leg_state)
                    returns.append(LegReturn(call.target, False, e.reason.encode()))
                    continue
                gas_used += gas
                returns.append(leg_return)

            for token in self.ledger.tokens_held(self.address):
                excess = self.ledger.balance_of(self.address, token) - held_before.get(token, 0)
                if excess > 0:
                    self.ledger.transfer(token, self.address, self.owner, excess)

            delta = self.ledger.balance_of(self.owner, descriptor.to_token) - owner_before
            if delta < descriptor.min_final_output:
                raise LocalRevert(
                    f"min final output not met: {delta} < {descriptor.min_final_output}"
                )
        except LocalRevert as e:
            self._restore(initial)
            code = classify_revert(e.reason)
            logger.info("local_bundle_reverted", reason=e.reason, code=code.value)
            return ExecutionResult(
                tx_hash=tx_hash,
                success=False,
                gas_used=gas_used,
                per_leg_returns=tuple(returns),
                revert_reason=e.reason,
                details={"code": code.value},
            )

        return ExecutionResult(
            tx_hash=tx_hash,
            success=True,
            gas_used=gas_used,
            per_leg_returns=tuple(returns),
            final_output_amount=delta,
        )


__all__ = ["LocalRevert", "LocalPool", "ConstantProductPool", "Ledger", "LocalBundler"]
