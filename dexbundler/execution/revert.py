"""Revert data decoding and classification into on-chain error codes."""

from __future__ import annotations

from eth_abi import decode
from eth_abi.exceptions import DecodingError

from dexbundler.errors import ErrorCode

ERROR_STRING_SELECTOR = bytes.fromhex("08c379a0")  # Error(string)
PANIC_SELECTOR = bytes.fromhex("4e487b71")  # Panic(uint256)

PANIC_CODES = {
    0x01: "assertion failed",
    0x11: "arithmetic overflow or underflow",
    0x12: "division by zero",
    0x21: "invalid enum value",
    0x31: "pop on empty array",
    0x32: "array index out of bounds",
    0x41: "out of memory",
    0x51: "call to zero-initialized function",
}

SLIPPAGE_MARKERS = (
    "min final output",
    "minfinaloutput",
    "insufficient output",
    "insufficient_output",
    "too little received",
    "slippage",
    "min out",
    "minamountout",
    "v4toolittlereceived",
)

APPROVAL_MARKERS = (
    "allowance",
    "transferfrom",
    "transfer_from_failed",
    "not approved",
    "approve",
)


def decode_revert(data: bytes) -> str | None:
    """Human-readable reason from Error(string) or Panic(uint256) revert data."""
    if len(data) < 4:
        return None
    selector, payload = data[:4], data[4:]
    try:
        if selector == ERROR_STRING_SELECTOR:
            (message,) = decode(["string"], payload)
            return str(message)
        if selector == PANIC_SELECTOR:
            (code,) = decode(["uint256"], payload)
            return f"panic: {PANIC_CODES.get(code, hex(code))}"
    except DecodingError:
        return None
    return None


def classify_revert(reason: str | None, data: bytes = b"") -> ErrorCode:
    """Map a revert to SLIPPAGE, APPROVAL or EXECUTION."""
    text = " ".join(filter(None, [reason, decode_revert(data)])).lower()
    if any(marker in text for marker in SLIPPAGE_MARKERS):
        return ErrorCode.SLIPPAGE
    words = set(text.replace(":", " ").replace(",", " ").split())
    # Uniswap's TransferHelper reverts with the bare string "STF"
    if any(marker in text for marker in APPROVAL_MARKERS) or "stf" in words:
        return ErrorCode.APPROVAL
    return ErrorCode.EXECUTION


__all__ = [
    "ERROR_STRING_SELECTOR",
    "PANIC_SELECTOR",
    "decode_revert",
    "classify_revert",
]
