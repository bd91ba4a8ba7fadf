"""Pydantic request/response models for the HTTP API.

Amounts travel as decimal strings; field names are camelCase on the wire.
"""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field

from dexbundler.models.types import Address, Bytes, Uint256


class QuoteRequest(BaseModel):
    """Route ``amountIn`` of ``fromToken`` into ``toToken``."""

    from_token: Address = Field(alias="fromToken", description="Input token (zero address for ether)")
    to_token: Address = Field(alias="toToken", description="Output token (zero address for ether)")
    amount_in: Uint256 = Field(alias="amountIn", description="Input amount in base units")
    owner: Address | None = Field(
        default=None, description="Wallet that will execute; enables 1inch calldata"
    )
    slippage_bips: int | None = Field(default=None, alias="slippageBips", ge=0, lt=10_000)

    model_config = {"populate_by_name": True}


class ExecuteRequest(BaseModel):
    from_token: Address = Field(alias="fromToken")
    to_token: Address = Field(alias="toToken")
    amount_in: Uint256 = Field(alias="amountIn")
    slippage_bips: int | None = Field(default=None, alias="slippageBips", ge=0, lt=10_000)

    model_config = {"populate_by_name": True}


class LegModel(BaseModel):
    dex: str
    pool: str
    input_token: Address = Field(alias="inputToken")
    output_token: Address = Field(alias="outputToken")
    mode: str
    fixed_input_amount: Uint256 | None = Field(default=None, alias="fixedInputAmount")
    min_output_amount: Uint256 = Field(alias="minOutputAmount")
    wrap_op: int = Field(alias="wrapOp")

    model_config = {"populate_by_name": True}


class AllocationEntryModel(BaseModel):
    path: str = Field(description="Pool sequence of the path")
    fraction_bips: int = Field(alias="fractionBips")
    expected_out: Uint256 = Field(alias="expectedOut")
    quote_source: str = Field(alias="quoteSource")

    model_config = {"populate_by_name": True}


class BundleModel(BaseModel):
    """Arguments of ``executeBundle`` in wire form."""

    from_token: Address = Field(alias="fromToken")
    from_amount: Uint256 = Field(alias="fromAmount")
    to_token: Address = Field(alias="toToken")
    min_final_output: Uint256 = Field(alias="minFinalOutput")
    encoder_targets: list[Address] = Field(alias="encoderTargets")
    encoder_calldata: list[Bytes] = Field(alias="encoderCalldata")
    wrap_ops: list[int] = Field(alias="wrapOps")
    expect_success: list[bool] = Field(alias="expectSuccess")
    legs: list[LegModel] = Field(default_factory=list)

    model_config = {"populate_by_name": True}


class QuoteResponse(BaseModel):
    query_id: str = Field(alias="queryId")
    from_token: Address = Field(alias="fromToken")
    to_token: Address = Field(alias="toToken")
    amount_in: Uint256 = Field(alias="amountIn")
    expected_out: Uint256 = Field(alias="expectedOut")
    min_final_output: Uint256 | None = Field(default=None, alias="minFinalOutput")
    block_number: int = Field(alias="blockNumber")
    mode: str
    used_dexes: list[str] = Field(alias="usedDexes")
    allocation: list[AllocationEntryModel]
    bundle: BundleModel | None = None

    model_config = {"populate_by_name": True}


class ExecuteResponse(BaseModel):
    quote: QuoteResponse
    tx_hash: str = Field(alias="txHash")
    success: bool
    gas_used: int = Field(alias="gasUsed")
    final_output_amount: Uint256 = Field(alias="finalOutputAmount")

    model_config = {"populate_by_name": True}


class ErrorResponse(BaseModel):
    """Structured failure: stable code, message and details."""

    code: str
    message: str
    details: dict[str, Any] = Field(default_factory=dict)


__all__ = [
    "QuoteRequest",
    "ExecuteRequest",
    "LegModel",
    "AllocationEntryModel",
    "BundleModel",
    "QuoteResponse",
    "ExecuteResponse",
    "ErrorResponse",
]
