"""Submits bundles to the owner's bundler contract.

Every submission is simulated with eth_call first; a revert there fails the
bundle with a classified error before any gas is spent.
"""

from __future__ import annotations

from typing import Any, Protocol

import structlog
from eth_account import Account
from eth_utils import to_checksum_address
from web3.exceptions import TimeExhausted

from dexbundler.config import DEFAULT_ENGINE_CONFIG, EngineConfig
from dexbundler.constants import NATIVE_ADDRESS
from dexbundler.errors import (
    CallReverted,
    EngineError,
    ErrorCode,
    Result,
    UpstreamRejected,
    UpstreamUnavailable,
)
from dexbundler.execution.bundler import (
    decode_address,
    decode_uint,
    encode_allowance,
    encode_execute_bundle,
    encode_read_address,
    parse_trade_events,
    transferred_to,
)
from dexbundler.execution.revert import classify_revert, decode_revert
from dexbundler.models.bundle import BundleDescriptor, ExecutionResult
from dexbundler.models.types import normalize_address
from dexbundler.net.http import JsonApiClient

logger = structlog.get_logger()

# Headroom over eth_estimateGas
GAS_LIMIT_BUFFER_BIPS = 12_000


class BundleChain(Protocol):
    """Chain access needed to submit a bundle (RpcClient satisfies it)."""

    chain_id: int

    async def call(
        self,
        to: str,
        data: bytes,
        *,
        sender: str | None = None,
        value: int = 0,
        block: int | str = "latest",
    ) -> bytes: ...

    async def gas_price(self) -> int: ...

    async def transaction_count(self, address: str) -> int: ...

    async def estimate_gas(self, tx: dict[str, Any]) -> int: ...

    async def balance(self, address: str, block: int | str = "latest") -> int: ...

    async def send_raw_transaction(self, raw: bytes) -> str: ...

    async def wait_for_receipt(self, tx_hash: str, timeout: float) -> dict[str, Any]: ...


class TransactionSigner(Protocol):
    address: str

    def sign_transaction(self, tx: dict[str, Any]) -> bytes: ...


class AccountSigner:
    """Signs with a local private key."""

    def __init__(self, private_key: str) -> None:
        self._account = Account.from_key(private_key)
        self.address = normalize_address(self._account.address)

    def sign_transaction(self, tx: dict[str, Any]) -> bytes:
        signed = self._account.sign_transaction(tx)
        return bytes(signed.raw_transaction)


def revert_error(error: CallReverted, **details: Any) -> EngineError:
    reason = decode_revert(error.data) or error.reason
    return EngineError(
        classify_revert(error.reason, error.data),
        reason,
        revert_data="0x" + error.data.hex(),
        **details,
    )


class BundleExecutor:
    def __init__(
        self,
        chain: BundleChain,
        config: EngineConfig = DEFAULT_ENGINE_CONFIG,
        relay: JsonApiClient | None = None,
    ) -> None:
        self.chain = chain
        self.config = config
        self.relay = relay

    async def resolve_bundler(self, owner: str) -> str:
        """Look up the owner's bundler in the registry contract."""
        if not self.config.bundler_registry:
            raise EngineError(ErrorCode.EXECUTION, "No bundler registry configured")
        try:
            raw = await self.chain.call(self.config.bundler_registry, encode_read_address(owner))
        except CallReverted as e:
            raise revert_error(e, owner=owner) from e
        except UpstreamUnavailable as e:
            raise EngineError(ErrorCode.UNAVAILABLE, str(e)) from e
        bundler = decode_address(raw)
        if bundler == NATIVE_ADDRESS:
            raise EngineError(ErrorCode.EXECUTION, "Owner has no bundler", owner=owner)
        return bundler

    async def check_allowance(self, owner: str, bundler: str, descriptor: BundleDescriptor) -> None:
        if descriptor.from_token == NATIVE_ADDRESS:
            return
        try:
            raw = await self.chain.call(descriptor.from_token, encode_allowance(owner, bundler))
        except UpstreamUnavailable as e:
            raise EngineError(ErrorCode.UNAVAILABLE, str(e)) from e
        allowance = decode_uint(raw)
        if allowance < descriptor.from_amount:
            raise EngineError(
                ErrorCode.APPROVAL,
                "Bundler allowance is below the bundle input",
                token=descriptor.from_token,
                allowance=allowance,
                required=descriptor.from_amount,
            )

    def transaction(self, descriptor: BundleDescriptor, owner: str, bundler: str) -> dict[str, Any]:
        value = descriptor.from_amount if descriptor.from_token == NATIVE_ADDRESS else 0
        return {
            "from": owner,
            "to": bundler,
            "data": encode_execute_bundle(descriptor),
            "value": value,
            "chainId": self.chain.chain_id,
        }

    async def simulate(self, descriptor: BundleDescriptor, owner: str, bundler: str) -> None:
        """eth_call the bundle; raises a classified EngineError on revert."""
        tx = self.transaction(descriptor, owner, bundler)
        try:
            await self.chain.call(bundler, tx["data"], sender=owner, value=tx["value"])
        except CallReverted as e:
            raise revert_error(e, stage="simulation") from e
        except UpstreamUnavailable as e:
            raise EngineError(ErrorCode.UNAVAILABLE, str(e)) from e

    async def _submit(self, raw: bytes) -> str:
        if self.relay is None:
            return await self.chain.send_raw_transaction(raw)
        body = await self.relay.post(
            "",
            {"jsonrpc": "2.0", "id": 1, "method": "eth_sendRawTransaction", "params": ["0x" + raw.hex()]},
        )
        if "error" in body:
            raise UpstreamRejected("relay", 400, str(body["error"]))
        return str(body["result"])

    async def _final_output(
        self, receipt: dict[str, Any], descriptor: BundleDescriptor, owner: str
    ) -> int:
        logs = receipt.get("logs", [])
        if descriptor.to_token != NATIVE_ADDRESS:
            return transferred_to(logs, descriptor.to_token, owner)
        # Native output has no Transfer log: use the owner's balance delta plus gas paid
        block = int(receipt["blockNumber"])
        before = await self.chain.balance(owner, block - 1)
        after = await self.chain.balance(owner, block)
        fee = int(receipt["gasUsed"]) * int(receipt.get("effectiveGasPrice", 0))
        return after - before + fee

    async def execute(
        self,
        descriptor: BundleDescriptor,
        signer: TransactionSigner,
        bundler: str | None = None,
    ) -> ExecutionResult:
        """Simulate, sign, submit and wait for the bundle.

        Raises:
            EngineError: SLIPPAGE, APPROVAL, EXECUTION, TIMEOUT or UNAVAILABLE
        """
        owner = signer.address
        bundler = normalize_address(bundler) if bundler else await self.resolve_bundler(owner)
        log = logger.bind(owner=owner, bundler=bundler, legs=descriptor.leg_count)

        await self.check_allowance(owner, bundler, descriptor)
        await self.simulate(descriptor, owner, bundler)

        tx = self.transaction(descriptor, owner, bundler)
        try:
            estimate = await self.chain.estimate_gas(dict(tx))
            tx["gas"] = estimate * GAS_LIMIT_BUFFER_BIPS // 10_000
            tx["gasPrice"] = await self.chain.gas_price()
            tx["nonce"] = await self.chain.transaction_count(owner)
        except CallReverted as e:
            raise revert_error(e, stage="estimate_gas") from e
        except UpstreamUnavailable as e:
            raise EngineError(ErrorCode.UNAVAILABLE, str(e)) from e

        unsigned = {k: v for k, v in tx.items() if k != "from"}
        raw = signer.sign_transaction(
            {**unsigned, "to": to_checksum_address(tx["to"]), "data": "0x" + tx["data"].hex()}
        )
        try:
            tx_hash = await self._submit(raw)
        except (UpstreamUnavailable, UpstreamRejected) as e:
            raise EngineError(ErrorCode.UNAVAILABLE, str(e)) from e
        log.info("bundle_submitted", tx_hash=tx_hash, gas_limit=tx["gas"], via_relay=self.relay is not None)

        try:
            receipt = await self.chain.wait_for_receipt(tx_hash, self.config.confirmation_timeout)
        except TimeExhausted as e:
            raise EngineError(
                ErrorCode.TIMEOUT,
                "Bundle not confirmed in time",
                tx_hash=tx_hash,
                timeout=self.config.confirmation_timeout,
            ) from e
        except (UpstreamUnavailable, OSError) as e:
            log.warning("receipt_unavailable", tx_hash=tx_hash, error=str(e))
            raise EngineError(
                ErrorCode.UNAVAILABLE,
                "Bundle submitted but its receipt could not be read",
                tx_hash=tx_hash,
                error=str(e),
            ) from e

        gas_used = int(receipt.get("gasUsed", 0))
        if int(receipt.get("status", 0)) != 1:
            error = await self._replay_failure(tx, int(receipt["blockNumber"]))
            log.warning("bundle_reverted", tx_hash=tx_hash, reason=error.message, code=error.code.value)
            error.details.update(tx_hash=tx_hash, gas_used=gas_used)
            raise error

        legs = parse_trade_events(receipt.get("logs", []), bundler)
        try:
            final_out = await self._final_output(receipt, descriptor, owner)
        except (UpstreamUnavailable, OSError) as e:
            log.warning("final_output_unavailable", tx_hash=tx_hash, error=str(e))
            raise EngineError(
                ErrorCode.UNAVAILABLE,
                "Bundle confirmed but its output could not be read",
                tx_hash=tx_hash,
                gas_used=gas_used,
                error=str(e),
            ) from e
        log.info("bundle_confirmed", tx_hash=tx_hash, gas_used=gas_used, final_output=final_out)
        return ExecutionResult(
            tx_hash=tx_hash,
            success=True,
            gas_used=gas_used,
            per_leg_returns=legs,
            final_output_amount=final_out,
            details={"block_number": int(receipt["blockNumber"])},
        )

    async def _replay_failure(self, tx: dict[str, Any], block: int) -> EngineError:
        """Re-run a mined revert at its block to recover the reason."""
        try:
            await self.chain.call(
                tx["to"], tx["data"], sender=tx["from"], value=tx["value"], block=block - 1
            )
        except CallReverted as e:
            return revert_error(e)
        except UpstreamUnavailable as e:
            logger.warning("revert_replay_failed", error=str(e))
        return EngineError(ErrorCode.EXECUTION, "Bundle reverted on chain")

    async def execute_result(
        self,
        descriptor: BundleDescriptor,
        signer: TransactionSigner,
        bundler: str | None = None,
    ) -> Result[ExecutionResult]:
        try:
            return Result.ok(await self.execute(descriptor, signer, bundler))
        except EngineError as e:
            return Result.from_error(e)


__all__ = [
    "BundleChain",
    "TransactionSigner",
    "AccountSigner",
    "BundleExecutor",
    "revert_error",
]
