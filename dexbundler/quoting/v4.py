"""Uniswap v4 quotes via the V4Quoter contract (eth_call simulation)."""

from __future__ import annotations

from dataclasses import dataclass

import structlog
from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector

from dexbundler.constants import V4_DIRECT_SWAP_GAS, V4_SWAP_GAS, WRAP_GAS
from dexbundler.models.pools import V4PoolKey
from dexbundler.models.route import Path, QuoteResult, QuoteSource, WrapOp
from dexbundler.models.types import address_bytes, normalize_address
from dexbundler.net.rpc import ChainReader

logger = structlog.get_logger()

POOL_KEY_TYPE = "(address,address,uint24,int24,address)"
PATH_KEY_TYPE = "(address,uint24,int24,address,bytes)"

# quoteExactInputSingle((PoolKey poolKey, bool zeroForOne, uint128 exactAmount, bytes hookData))
QUOTE_EXACT_INPUT_SINGLE_SELECTOR = function_signature_to_4byte_selector(
    f"quoteExactInputSingle(({POOL_KEY_TYPE},bool,uint128,bytes))"
)

# quoteExactInput((address exactCurrency, PathKey[] path, uint128 exactAmount))
QUOTE_EXACT_INPUT_SELECTOR = function_signature_to_4byte_selector(
    f"quoteExactInput((address,{PATH_KEY_TYPE}[],uint128))"
)

UINT128_MAX = 2**128 - 1


def encode_quote_exact_input_single(key: V4PoolKey, token_in: str, amount_in: int) -> bytes:
    params = (key.abi_tuple(), key.zero_for_one(token_in), amount_in, b"")
    return QUOTE_EXACT_INPUT_SINGLE_SELECTOR + encode(
        [f"({POOL_KEY_TYPE},bool,uint128,bytes)"], [params]
    )


def encode_quote_exact_input(token_in: str, hops: list[tuple[V4PoolKey, str]], amount_in: int) -> bytes:
    """Encode a multi-hop quote; hops are (pool key, currency received)."""
    path_keys = [
        (address_bytes(currency_out), key.fee, key.tick_spacing, address_bytes(key.hooks), b"")
        for key, currency_out in hops
    ]
    return QUOTE_EXACT_INPUT_SELECTOR + encode(
        [f"(address,{PATH_KEY_TYPE}[],uint128)"],
        [(address_bytes(token_in), path_keys, amount_in)],
    )


def decode_quote(raw: bytes) -> tuple[int, int]:
    """(amountOut, gasEstimate)."""
    amount_out, gas_estimate = decode(["uint256", "uint256"], raw)
    return int(amount_out), int(gas_estimate)


@dataclass
class V4QuoteSource:
    """Universal-router style quotes.

    Paths whose currencies chain exactly (single legs included) are quoted
    with one ``quoteExactInput``, the entry the router path uses. A wrap
    boundary between legs falls back to chained single-pool quotes.
    """

    rpc: ChainReader
    quoter: str

    async def _single(self, key: V4PoolKey, token_in: str, amount_in: int) -> tuple[int, int]:
        raw = await self.rpc.call(
            normalize_address(self.quoter), encode_quote_exact_input_single(key, token_in, amount_in)
        )
        return decode_quote(raw)

    async def quote(self, path: Path, amount_in: int, block: int) -> QuoteResult:
        if amount_in > UINT128_MAX:
            raise ValueError(f"Amount {amount_in} exceeds uint128")
        legs = path.legs
        keys = [leg.pool for leg in legs]
        if not all(isinstance(k, V4PoolKey) for k in keys):
            raise TypeError("V4 quote source needs v4 pool keys")

        chained = all(legs[i].output_token == legs[i + 1].input_token for i in range(len(legs) - 1))
        wraps = sum(1 for leg in legs if leg.wrap_op is not WrapOp.NONE)

        if chained:
            raw = await self.rpc.call(
                normalize_address(self.quoter),
                encode_quote_exact_input(
                    legs[0].input_token,
                    [(leg.pool, leg.output_token) for leg in legs],  # type: ignore[misc]
                    amount_in,
                ),
            )
            amount_out, gas = decode_quote(raw)
        else:
            amount_out, gas = amount_in, 0
            for leg in legs:
                amount_out, leg_gas = await self._single(leg.pool, leg.input_token, amount_out)  # type: ignore[arg-type]
                gas += leg_gas

        gas = max(gas, V4_SWAP_GAS * len(legs)) + WRAP_GAS * wraps
        return QuoteResult(amount_out, gas, block, QuoteSource.SIMULATION, amount_in)


@dataclass
class DirectV4QuoteSource:
    """Single-pool quotes for swaps sent straight to the pool manager."""

    rpc: ChainReader
    quoter: str

    async def quote(self, path: Path, amount_in: int, block: int) -> QuoteResult:
        if len(path.legs) != 1:
            raise ValueError("Direct pool-manager paths have exactly one leg")
        leg = path.legs[0]
        if not isinstance(leg.pool, V4PoolKey):
            raise TypeError("Direct v4 quote source needs a v4 pool key")
        raw = await self.rpc.call(
            normalize_address(self.quoter),
            encode_quote_exact_input_single(leg.pool, leg.input_token, amount_in),
        )
        amount_out, gas = decode_quote(raw)
        wraps = WRAP_GAS if leg.wrap_op is not WrapOp.NONE else 0
        return QuoteResult(
            amount_out, max(gas, V4_DIRECT_SWAP_GAS) + wraps, block, QuoteSource.SIMULATION, amount_in
        )


__all__ = [
    "V4QuoteSource",
    "DirectV4QuoteSource",
    "encode_quote_exact_input_single",
    "encode_quote_exact_input",
    "decode_quote",
    "QUOTE_EXACT_INPUT_SINGLE_SELECTOR",
    "QUOTE_EXACT_INPUT_SELECTOR",
]
