"""JSON-RPC access with provider failover.

Reads are satisfied by the first healthy provider (quorum of 1). Reverts are
not provider failures: they surface as CallReverted immediately.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Protocol, TypeVar

import structlog
from web3 import AsyncWeb3
from web3.exceptions import ContractLogicError, TimeExhausted

from dexbundler.errors import CallReverted, ErrorCode, EngineError, UpstreamUnavailable
from dexbundler.models.types import hex_bytes

logger = structlog.get_logger()

T = TypeVar("T")


class ChainReader(Protocol):
    """Read-only chain access used by quoters, adapters and the registry.

    This allows swapping the RPC client for a fake in tests.
    """

    async def call(
        self,
        to: str,
        data: bytes,
        *,
        sender: str | None = None,
        value: int = 0,
        block: int | str = "latest",
    ) -> bytes:
        """eth_call; raises CallReverted on revert, UpstreamUnavailable when unreachable."""
        ...

    async def block_number(self) -> int: ...

    async def gas_price(self) -> int: ...


def _revert_data(error: ContractLogicError) -> bytes:
    data = getattr(error, "data", None)
    if isinstance(data, str) and data.startswith("0x"):
        try:
            return hex_bytes(data)
        except ValueError:
            return b""
    if isinstance(data, bytes):
        return data
    return b""


class RpcClient:
    """AsyncWeb3 client over a list of providers."""

    def __init__(
        self,
        urls: Sequence[str],
        *,
        chain_id: int,
        request_timeout: float = 10.0,
        providers: Sequence[AsyncWeb3] | None = None,
    ) -> None:
        if providers is None:
            providers = [
                AsyncWeb3(
                    AsyncWeb3.AsyncHTTPProvider(url, request_kwargs={"timeout": request_timeout})
                )
                for url in urls
            ]
        if not providers:
            raise ValueError("At least one RPC provider is required")
        self._providers = list(providers)
        self.chain_id = chain_id

    async def _first_healthy(self, name: str, op: Callable[[AsyncWeb3], Awaitable[T]]) -> T:
        last_error: Exception | None = None
        for index, w3 in enumerate(self._providers):
            try:
                return await op(w3)
            except ContractLogicError as e:
                raise CallReverted(str(getattr(e, "message", None) or e), _revert_data(e)) from e
            except (TimeExhausted, CallReverted):
                raise
            except Exception as e:
                last_error = e
                logger.warning("rpc_provider_failed", method=name, provider=index, error=str(e))
        raise UpstreamUnavailable("rpc", f"{name}: {last_error}")

    async def verify_chain(self) -> None:
        """Fail fast when the providers serve a different chain."""
        chain_id = await self._first_healthy("eth_chainId", lambda w3: w3.eth.chain_id)
        if chain_id != self.chain_id:
            raise EngineError(
                ErrorCode.UNAVAILABLE,
                "RPC provider serves the wrong chain",
                expected=self.chain_id,
                actual=chain_id,
            )

    async def call(
        self,
        to: str,
        data: bytes,
        *,
        sender: str | None = None,
        value: int = 0,
        block: int | str = "latest",
    ) -> bytes:
        tx: dict[str, Any] = {"to": AsyncWeb3.to_checksum_address(to), "data": "0x" + data.hex()}
        if sender is not None:
            tx["from"] = AsyncWeb3.to_checksum_address(sender)
        if value:
            tx["value"] = value

        async def op(w3: AsyncWeb3) -> bytes:
            return bytes(await w3.eth.call(tx, block))  # type: ignore[arg-type]

        return await self._first_healthy("eth_call", op)

    async def block_number(self) -> int:
        return int(await self._first_healthy("eth_blockNumber", lambda w3: w3.eth.block_number))

    async def gas_price(self) -> int:
        return int(await self._first_healthy("eth_gasPrice", lambda w3: w3.eth.gas_price))

    async def transaction_count(self, address: str) -> int:
        checksum = AsyncWeb3.to_checksum_address(address)
        return int(
            await self._first_healthy(
                "eth_getTransactionCount",
                lambda w3: w3.eth.get_transaction_count(checksum, "pending"),
            )
        )

    async def balance(self, address: str, block: int | str = "latest") -> int:
        checksum = AsyncWeb3.to_checksum_address(address)
        return int(
            await self._first_healthy(
                "eth_getBalance", lambda w3: w3.eth.get_balance(checksum, block)
            )
        )

    async def estimate_gas(self, tx: dict[str, Any]) -> int:
        params = dict(tx)
        for key in ("from", "to"):
            if params.get(key):
                params[key] = AsyncWeb3.to_checksum_address(params[key])
        if isinstance(params.get("data"), bytes):
            params["data"] = "0x" + params["data"].hex()
        return int(
            await self._first_healthy("eth_estimateGas", lambda w3: w3.eth.estimate_gas(params))  # type: ignore[arg-type]
        )

    async def send_raw_transaction(self, raw: bytes) -> str:
        tx_hash = await self._first_healthy(
            "eth_sendRawTransaction", lambda w3: w3.eth.send_raw_transaction(raw)
        )
        return "0x" + bytes(tx_hash).hex()

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict[str, Any]:
        """Wait on the first healthy provider; raises TimeExhausted after timeout."""
        receipt = await self._first_healthy(
            "eth_getTransactionReceipt",
            lambda w3: w3.eth.wait_for_transaction_receipt(tx_hash, timeout=timeout),  # type: ignore[arg-type]
        )
        return dict(receipt)


__all__ = ["ChainReader", "RpcClient"]
