"""Encoder contract ABI: one call per leg, fixed-amount or use-balance.

Each dex family has an Encoder contract whose view functions return
``(address target, bytes callData, uint256 inputAmount, address tokenIn)``
for the bundler to execute. Only the parameters differ per family.
"""

from __future__ import annotations

from dataclasses import dataclass
from functools import cached_property
from typing import Any

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector

from dexbundler.constants import MAX_SQRT_PRICE_LIMIT, MIN_SQRT_PRICE_LIMIT
from dexbundler.models.pools import BalancerRoute, DexKind, OneInchRoute, V4PoolKey
from dexbundler.models.route import AmountMode, Leg
from dexbundler.models.types import address_bytes, hex_bytes

POOL_KEY = "(address,address,uint24,int24,address)"
BALANCER_STEP = "(address,address,bool)"

# Return tuple of every encoder function
ENCODER_RETURN_TYPES = ("address", "bytes", "uint256", "address")


@dataclass(frozen=True)
class EncoderFunction:
    """An encoder view function: name plus ABI argument types."""

    name: str
    arg_types: tuple[str, ...]

    @property
    def signature(self) -> str:
        return f"{self.name}({','.join(self.arg_types)})"

    @cached_property
    def selector(self) -> bytes:
        return function_signature_to_4byte_selector(self.signature)

    def encode(self, *args: Any) -> bytes:
        return self.selector + encode(list(self.arg_types), list(args))

    def decode(self, calldata: bytes) -> tuple[Any, ...]:
        if calldata[:4] != self.selector:
            raise ValueError(f"Calldata does not call {self.signature}")
        return tuple(decode(list(self.arg_types), calldata[4:]))


# Uniswap v4 (universal router)
# encodeSingleSwap(poolKey, zeroForOne, amountIn, minAmountOut, tokenIn)
V4_SINGLE_SWAP = EncoderFunction(
    "encodeSingleSwap", (POOL_KEY, "bool", "uint256", "uint256", "address")
)
# encodeUseAllBalanceSwap(poolKey, zeroForOne, minAmountOut, wrapOp, tokenIn)
V4_USE_BALANCE_SWAP = EncoderFunction(
    "encodeUseAllBalanceSwap", (POOL_KEY, "bool", "uint256", "uint8", "address")
)

# Uniswap v4 straight to the pool manager
# encodeDirectSwap(tokenIn, amountIn, tokenOut, poolKey, zeroForOne, amountSpecified, sqrtPriceLimitX96, minAmountOut)
DIRECT_V4_SWAP = EncoderFunction(
    "encodeDirectSwap",
    ("address", "uint256", "address", POOL_KEY, "bool", "int256", "uint160", "uint256"),
)
# encodeDirectUseAllBalanceSwap(tokenIn, tokenOut, poolKey, zeroForOne, sqrtPriceLimitX96, minAmountOut)
DIRECT_V4_USE_BALANCE_SWAP = EncoderFunction(
    "encodeDirectUseAllBalanceSwap",
    ("address", "address", POOL_KEY, "bool", "uint160", "uint256"),
)

# Balancer v3 router
# encodeSingleSwap(pool, tokenIn, tokenOut, amountIn, minAmountOut, wethIsEth)
BALANCER_SINGLE_SWAP = EncoderFunction(
    "encodeSingleSwap", ("address", "address", "address", "uint256", "uint256", "bool")
)
# encodeUseAllBalanceSwap(pool, tokenIn, tokenOut, minAmountOut, wethIsEth)
BALANCER_USE_BALANCE_SWAP = EncoderFunction(
    "encodeUseAllBalanceSwap", ("address", "address", "address", "uint256", "bool")
)
# encodeSwapExactIn(tokenIn, paths, sharesBips, amountIn, minAmountOut, wethIsEth)
BALANCER_PATHS_SWAP = EncoderFunction(
    "encodeSwapExactIn",
    ("address", f"{BALANCER_STEP}[][]", "uint16[]", "uint256", "uint256", "bool"),
)
# encodeUseAllBalanceSwapExactIn(tokenIn, paths, sharesBips, minAmountOut, wethIsEth)
BALANCER_USE_BALANCE_PATHS_SWAP = EncoderFunction(
    "encodeUseAllBalanceSwapExactIn",
    ("address", f"{BALANCER_STEP}[][]", "uint16[]", "uint256", "bool"),
)

# Prebuilt router call (1inch): encodeRawCall(target, data, inputAmount, tokenIn)
RAW_CALL = EncoderFunction("encodeRawCall", ("address", "bytes", "uint256", "address"))

ENCODER_FUNCTIONS: dict[DexKind, tuple[EncoderFunction, ...]] = {
    DexKind.UNISWAP_V4: (V4_SINGLE_SWAP, V4_USE_BALANCE_SWAP),
    DexKind.DIRECT_V4: (DIRECT_V4_SWAP, DIRECT_V4_USE_BALANCE_SWAP),
    DexKind.BALANCER_V3: (
        BALANCER_SINGLE_SWAP,
        BALANCER_USE_BALANCE_SWAP,
        BALANCER_PATHS_SWAP,
        BALANCER_USE_BALANCE_PATHS_SWAP,
    ),
    DexKind.ONEINCH: (RAW_CALL,),
}


class EncodingError(ValueError):
    """A leg cannot be expressed in its encoder's ABI."""


def sqrt_price_limit(zero_for_one: bool) -> int:
    """Loosest price limit in the swap direction."""
    return MIN_SQRT_PRICE_LIMIT if zero_for_one else MAX_SQRT_PRICE_LIMIT


def _encode_v4(leg: Leg, key: V4PoolKey) -> bytes:
    zero_for_one = key.zero_for_one(leg.input_token)
    token_in = address_bytes(leg.input_token)
    if leg.mode is AmountMode.FIXED:
        return V4_SINGLE_SWAP.encode(
            key.abi_tuple(), zero_for_one, leg.fixed_input_amount, leg.min_output_amount, token_in
        )
    return V4_USE_BALANCE_SWAP.encode(
        key.abi_tuple(), zero_for_one, leg.min_output_amount, int(leg.wrap_op), token_in
    )


def _encode_direct_v4(leg: Leg, key: V4PoolKey) -> bytes:
    zero_for_one = key.zero_for_one(leg.input_token)
    limit = sqrt_price_limit(zero_for_one)
    if leg.mode is AmountMode.FIXED:
        assert leg.fixed_input_amount is not None
        return DIRECT_V4_SWAP.encode(
            address_bytes(leg.input_token),
            leg.fixed_input_amount,
            address_bytes(leg.output_token),
            key.abi_tuple(),
            zero_for_one,
            -leg.fixed_input_amount,  # negative: exact input
            limit,
            leg.min_output_amount,
        )
    return DIRECT_V4_USE_BALANCE_SWAP.encode(
        address_bytes(leg.input_token),
        address_bytes(leg.output_token),
        key.abi_tuple(),
        zero_for_one,
        limit,
        leg.min_output_amount,
    )


def _encode_balancer(leg: Leg, route: BalancerRoute) -> bytes:
    token_in = address_bytes(route.token_in)
    single = len(route.paths) == 1 and len(route.paths[0].steps) == 1
    if single:
        step = route.paths[0].steps[0]
        args = (address_bytes(step.pool), token_in, address_bytes(route.token_out))
        if leg.mode is AmountMode.FIXED:
            return BALANCER_SINGLE_SWAP.encode(
                *args, leg.fixed_input_amount, leg.min_output_amount, route.weth_is_eth
            )
        return BALANCER_USE_BALANCE_SWAP.encode(*args, leg.min_output_amount, route.weth_is_eth)

    paths = [[step.abi_tuple() for step in path.steps] for path in route.paths]
    shares = [path.share_bips for path in route.paths]
    if leg.mode is AmountMode.FIXED:
        return BALANCER_PATHS_SWAP.encode(
            token_in, paths, shares, leg.fixed_input_amount, leg.min_output_amount, route.weth_is_eth
        )
    return BALANCER_USE_BALANCE_PATHS_SWAP.encode(
        token_in, paths, shares, leg.min_output_amount, route.weth_is_eth
    )


def _encode_oneinch(leg: Leg, route: OneInchRoute) -> bytes:
    if leg.mode is not AmountMode.FIXED:
        raise EncodingError("1inch calldata fixes its input amount; it cannot use the balance")
    if route.calldata in ("", "0x"):
        raise EncodingError("1inch route has no swap calldata")
    if route.amount_in != leg.fixed_input_amount:
        raise EncodingError(
            f"1inch calldata built for {route.amount_in}, leg needs {leg.fixed_input_amount}"
        )
    return RAW_CALL.encode(
        address_bytes(route.router),
        hex_bytes(route.calldata),
        route.amount_in,
        address_bytes(leg.input_token),
    )


def encode_leg(leg: Leg) -> bytes:
    """Encoder calldata for a leg with concrete amounts.

    Raises:
        EncodingError: If the leg cannot be encoded
    """
    if leg.mode is AmountMode.FIXED and not leg.fixed_input_amount:
        raise EncodingError("FIXED leg without an input amount")
    pool = leg.pool
    if leg.dex is DexKind.UNISWAP_V4 and isinstance(pool, V4PoolKey):
        return _encode_v4(leg, pool)
    if leg.dex is DexKind.DIRECT_V4 and isinstance(pool, V4PoolKey):
        return _encode_direct_v4(leg, pool)
    if leg.dex is DexKind.BALANCER_V3 and isinstance(pool, BalancerRoute):
        return _encode_balancer(leg, pool)
    if leg.dex is DexKind.ONEINCH and isinstance(pool, OneInchRoute):
        return _encode_oneinch(leg, pool)
    raise EncodingError(f"Pool {type(pool).__name__} does not match dex {leg.dex.value}")


def decode_encoder_call(dex: DexKind, calldata: bytes) -> tuple[EncoderFunction, tuple[Any, ...]]:
    """Identify and decode an encoder call (used by the local bundler)."""
    for function in ENCODER_FUNCTIONS[dex]:
        if calldata[:4] == function.selector:
            return function, function.decode(calldata)
    raise EncodingError(f"Unknown {dex.value} encoder selector 0x{calldata[:4].hex()}")


__all__ = [
    "ENCODER_RETURN_TYPES",
    "EncoderFunction",
    "EncodingError",
    "V4_SINGLE_SWAP",
    "V4_USE_BALANCE_SWAP",
    "DIRECT_V4_SWAP",
    "DIRECT_V4_USE_BALANCE_SWAP",
    "BALANCER_SINGLE_SWAP",
    "BALANCER_USE_BALANCE_SWAP",
    "BALANCER_PATHS_SWAP",
    "BALANCER_USE_BALANCE_PATHS_SWAP",
    "RAW_CALL",
    "ENCODER_FUNCTIONS",
    "sqrt_price_limit",
    "encode_leg",
    "decode_encoder_call",
]
