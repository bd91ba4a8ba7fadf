"""Token resolution and native-asset wire forms."""

from __future__ import annotations

import asyncio
import time
from collections.abc import Awaitable, Callable, Iterable
from typing import Protocol

import structlog
from eth_abi import decode
from eth_abi.exceptions import DecodingError

from dexbundler.constants import (
    AAVE,
    DAI,
    LINK,
    NATIVE_ADDRESS,
    ONEINCH_NATIVE_ADDRESS,
    UNI,
    USDC,
    USDT,
    WBTC,
    WETH,
)
from dexbundler.errors import CallReverted, EngineError, ErrorCode, Result, UpstreamUnavailable
from dexbundler.models.pools import DexKind
from dexbundler.models.tokens import Token
from dexbundler.models.types import is_valid_address, normalize_address
from dexbundler.net.retry import retry_with_backoff
from dexbundler.net.rpc import ChainReader
from dexbundler.registry.cache import TtlCache

logger = structlog.get_logger()

# ERC-20 metadata selectors
DECIMALS_SELECTOR = bytes.fromhex("313ce567")  # decimals()
SYMBOL_SELECTOR = bytes.fromhex("95d89b41")  # symbol()

KNOWN_TOKENS: tuple[Token, ...] = (
    Token(WETH, 18, "WETH"),
    Token(USDC, 6, "USDC"),
    Token(USDT, 6, "USDT"),
    Token(DAI, 18, "DAI"),
    Token(WBTC, 8, "WBTC"),
    Token(AAVE, 18, "AAVE"),
    Token(UNI, 18, "UNI"),
    Token(LINK, 18, "LINK"),
)


class TokenSource(Protocol):
    """Upstream token metadata lookup."""

    async def fetch_token(self, address: str) -> Token | None:
        """Return metadata, None if the address is not a token.

        Raises:
            UpstreamUnavailable: If the data source cannot be reached
        """
        ...


def _decode_symbol(raw: bytes) -> str:
    """Decode a string symbol, falling back to bytes32 (e.g. MKR)."""
    try:
        (symbol,) = decode(["string"], raw)
        return str(symbol)
    except (DecodingError, UnicodeDecodeError, OverflowError):
        pass
    if len(raw) >= 32:
        return raw[:32].rstrip(b"\x00").decode("utf-8", errors="replace")
    return ""


class OnChainTokenSource:
    """Reads ERC-20 ``decimals()`` and ``symbol()`` over RPC."""

    def __init__(self, rpc: ChainReader) -> None:
        self.rpc = rpc

    async def fetch_token(self, address: str) -> Token | None:
        try:
            raw_decimals = await self.rpc.call(address, DECIMALS_SELECTOR)
        except CallReverted:
            return None
        if len(raw_decimals) < 32:
            # No code at the address, or not an ERC-20
            return None
        (decimals,) = decode(["uint256"], raw_decimals[:32])
        if decimals > 77:
            return None

        try:
            symbol = _decode_symbol(await self.rpc.call(address, SYMBOL_SELECTOR))
        except CallReverted:
            symbol = ""
        return Token(address, int(decimals), symbol)


class TokenRegistry:
    """Resolves token metadata and owns native/wrapped address translation.

    Internally the native asset is always the zero address. ``to_wire_form``
    converts to whatever a given dex expects.
    """

    def __init__(
        self,
        source: TokenSource,
        *,
        wrapped_native: str = WETH,
        native_symbol: str = "ETH",
        known: Iterable[Token] = KNOWN_TOKENS,
        ttl: float = 3600.0,
        attempts: int = 3,
        base_delay: float = 1.0,
        max_delay: float = 10.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.source = source
        self.wrapped_native = normalize_address(wrapped_native)
        self.native = Token.native(native_symbol)
        self._known = {token.address: token for token in known}
        self._cache: TtlCache[str, Token] = TtlCache(ttl, clock)
        self._attempts = attempts
        self._base_delay = base_delay
        self._max_delay = max_delay
        self._sleep = sleep

    def canonical(self, address: str) -> str:
        """Map every spelling of the native asset to the zero address."""
        addr = normalize_address(address)
        return NATIVE_ADDRESS if addr == ONEINCH_NATIVE_ADDRESS else addr

    def is_native(self, address: str) -> bool:
        return self.canonical(address) == NATIVE_ADDRESS

    def is_wrapped_native(self, address: str) -> bool:
        return self.canonical(address) == self.wrapped_native

    def same_asset(self, a: str, b: str) -> bool:
        ca, cb = self.canonical(a), self.canonical(b)
        return ca == cb or {ca, cb} == {NATIVE_ADDRESS, self.wrapped_native}

    def to_wire_form(self, token: Token | str, dex: DexKind) -> str:
        """Address a dex expects for a token.

        Uniswap v4 accepts native as the zero address. Balancer v3 takes the
        wrapped address (the router unwraps with ``wethIsEth``). 1inch spells
        native as 0xEeee...EEeE.
        """
        address = self.canonical(token.address if isinstance(token, Token) else token)
        if address != NATIVE_ADDRESS:
            return address
        if dex is DexKind.BALANCER_V3:
            return self.wrapped_native
        if dex is DexKind.ONEINCH:
            return ONEINCH_NATIVE_ADDRESS
        return NATIVE_ADDRESS

    async def resolve_token(self, address: str) -> Token:
        """Resolve token metadata.

        Raises:
            EngineError: UNKNOWN_TOKEN if the address is not a token,
                UNAVAILABLE if the source stayed unreachable after retries
        """
        if not is_valid_address(normalize_address(address)):
            raise EngineError(ErrorCode.UNKNOWN_TOKEN, "Invalid token address", address=address)
        canonical = self.canonical(address)
        if canonical == NATIVE_ADDRESS:
            return self.native
        if canonical in self._known:
            return self._known[canonical]
        return await self._cache.get_or_load(canonical, lambda: self._load(canonical))

    async def resolve(self, address: str) -> Result[Token]:
        try:
            return Result.ok(await self.resolve_token(address))
        except EngineError as e:
            return Result.from_error(e)

    async def _load(self, address: str) -> Token:
        try:
            token = await retry_with_backoff(
                lambda: self.source.fetch_token(address),
                attempts=self._attempts,
                base_delay=self._base_delay,
                max_delay=self._max_delay,
                name="resolve_token",
                sleep=self._sleep,
            )
        except UpstreamUnavailable as e:
            raise EngineError(
                ErrorCode.UNAVAILABLE, "Token metadata source unreachable", address=address, error=str(e)
            ) from e
        if token is None:
            logger.info("unknown_token", address=address)
            raise EngineError(ErrorCode.UNKNOWN_TOKEN, "Address is not a known token", address=address)
        logger.debug("token_resolved", address=address, symbol=token.symbol, decimals=token.decimals)
        return token


__all__ = [
    "KNOWN_TOKENS",
    "TokenSource",
    "OnChainTokenSource",
    "TokenRegistry",
    "DECIMALS_SELECTOR",
    "SYMBOL_SELECTOR",
]
