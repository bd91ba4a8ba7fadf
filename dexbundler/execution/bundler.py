"""Bundler and registry contract ABI."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
from typing import Any

from eth_abi import decode, encode
from eth_utils import function_signature_to_4byte_selector, keccak

from dexbundler.models.bundle import BundleDescriptor, LegReturn
from dexbundler.models.route import WrapOp
from dexbundler.models.types import address_bytes, hex_bytes, normalize_address

EXECUTE_BUNDLE_TYPES = (
    "address",  # fromToken
    "uint256",  # fromAmount
    "address",  # toToken
    "uint256",  # minFinalOutput
    "address[]",  # encoderTargets
    "bytes[]",  # encoderCalldata
    "uint8[]",  # wrapOps
    "bool[]",  # expectSuccess
)
EXECUTE_BUNDLE_SIGNATURE = f"executeBundle({','.join(EXECUTE_BUNDLE_TYPES)})"
EXECUTE_BUNDLE_SELECTOR = function_signature_to_4byte_selector(EXECUTE_BUNDLE_SIGNATURE)

READ_ADDRESS_SELECTOR = function_signature_to_4byte_selector("readAddress(address)")
ALLOWANCE_SELECTOR = bytes.fromhex("dd62ed3e")  # allowance(address,address)

TRADE_EXECUTED_TOPIC = keccak(text="TradeExecuted(address,bool,bytes)")
TRANSFER_TOPIC = keccak(text="Transfer(address,address,uint256)")


def encode_execute_bundle(descriptor: BundleDescriptor) -> bytes:
    return EXECUTE_BUNDLE_SELECTOR + encode(
        list(EXECUTE_BUNDLE_TYPES),
        [
            address_bytes(descriptor.from_token),
            descriptor.from_amount,
            address_bytes(descriptor.to_token),
            descriptor.min_final_output,
            [address_bytes(t) for t in descriptor.encoder_targets],
            list(descriptor.encoder_calldata),
            [int(op) for op in descriptor.wrap_ops],
            list(descriptor.expect_success),
        ],
    )


def decode_execute_bundle(calldata: bytes) -> BundleDescriptor:
    if calldata[:4] != EXECUTE_BUNDLE_SELECTOR:
        raise ValueError("Calldata does not call executeBundle")
    values = decode(list(EXECUTE_BUNDLE_TYPES), calldata[4:])
    from_token, from_amount, to_token, min_out, targets, datas, ops, expects = values
    return BundleDescriptor(
        from_token=from_token,
        from_amount=from_amount,
        to_token=to_token,
        min_final_output=min_out,
        encoder_targets=tuple(targets),
        encoder_calldata=tuple(bytes(d) for d in datas),
        wrap_ops=tuple(WrapOp(op) for op in ops),
        expect_success=tuple(expects),
    )


def encode_read_address(owner: str) -> bytes:
    return READ_ADDRESS_SELECTOR + encode(["address"], [address_bytes(owner)])


def encode_allowance(owner: str, spender: str) -> bytes:
    return ALLOWANCE_SELECTOR + encode(["address", "address"], [address_bytes(owner), address_bytes(spender)])


def decode_address(raw: bytes) -> str:
    (address,) = decode(["address"], raw)
    return normalize_address(address)


def decode_uint(raw: bytes) -> int:
    (value,) = decode(["uint256"], raw)
    return int(value)


def _topic_bytes(topic: Any) -> bytes:
    return bytes(topic) if not isinstance(topic, str) else hex_bytes(topic)


def _topic_address(topic: Any) -> str:
    return normalize_address("0x" + _topic_bytes(topic)[-20:].hex())


def parse_trade_events(logs: Iterable[Mapping[str, Any]], bundler: str) -> tuple[LegReturn, ...]:
    """TradeExecuted(address indexed target, bool success, bytes returnData) in log order."""
    bundler = normalize_address(bundler)
    legs = []
    for log in logs:
        topics = log.get("topics") or []
        if not topics or _topic_bytes(topics[0]) != TRADE_EXECUTED_TOPIC:
            continue
        if normalize_address(str(log["address"])) != bundler:
            continue
        success, return_data = decode(["bool", "bytes"], _topic_bytes(log["data"]))
        legs.append(LegReturn(_topic_address(topics[1]), bool(success), bytes(return_data)))
    return tuple(legs)


def transferred_to(logs: Iterable[Mapping[str, Any]], token: str, recipient: str) -> int:
    """Sum of ERC-20 Transfer amounts of ``token`` received by ``recipient``."""
    token, recipient = normalize_address(token), normalize_address(recipient)
    total = 0
    for log in logs:
        topics = log.get("topics") or []
        if len(topics) < 3 or _topic_bytes(topics[0]) != TRANSFER_TOPIC:
            continue
        if normalize_address(str(log["address"])) != token:
            continue
        if _topic_address(topics[2]) != recipient:
            continue
        total += decode_uint(_topic_bytes(log["data"]))
    return total


__all__ = [
    "EXECUTE_BUNDLE_SIGNATURE",
    "EXECUTE_BUNDLE_SELECTOR",
    "TRADE_EXECUTED_TOPIC",
    "TRANSFER_TOPIC",
    "encode_execute_bundle",
    "decode_execute_bundle",
    "encode_read_address",
    "encode_allowance",
    "decode_address",
    "decode_uint",
    "parse_trade_events",
    "transferred_to",
]
