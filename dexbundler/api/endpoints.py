"""API endpoints for routing and execution."""

import os

import structlog
from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from dexbundler.engine import Engine, RouteQuote
from dexbundler.errors import ErrorCode, Failure
from dexbundler.execution.executor import AccountSigner, TransactionSigner
from dexbundler.models.api import (
    AllocationEntryModel,
    BundleModel,
    ErrorResponse,
    ExecuteRequest,
    ExecuteResponse,
    LegModel,
    QuoteRequest,
    QuoteResponse,
)
from dexbundler.service import get_default_engine

logger = structlog.get_logger()

router = APIRouter()

# HTTP status per failure code; on-chain failures are the caller's problem (422)
STATUS_FOR_CODE = {
    ErrorCode.UNKNOWN_TOKEN: 400,
    ErrorCode.NO_ROUTE: 404,
    ErrorCode.QUOTE_FAILED: 502,
    ErrorCode.UNAVAILABLE: 503,
    ErrorCode.TIMEOUT: 504,
    ErrorCode.COMPOSE_ERROR: 500,
    ErrorCode.SLIPPAGE: 422,
    ErrorCode.APPROVAL: 422,
    ErrorCode.EXECUTION: 422,
}

SIGNER_KEY_ENV = "DEXBUNDLER_SIGNER_KEY"


def get_engine() -> Engine:
    """Dependency provider for the engine.

    Override this in tests to inject an engine built from fakes:
        app.dependency_overrides[get_engine] = lambda: engine
    """
    return get_default_engine()


def get_signer() -> TransactionSigner | None:
    """Signer for /execute, from DEXBUNDLER_SIGNER_KEY when set."""
    key = os.environ.get(SIGNER_KEY_ENV)
    return AccountSigner(key) if key else None


def error_response(failure: Failure) -> JSONResponse:
    body = ErrorResponse(
        code=failure.code.value, message=failure.message, details=_jsonable(failure.details)
    )
    return JSONResponse(status_code=STATUS_FOR_CODE[failure.code], content=body.model_dump())


def _jsonable(details: dict) -> dict:
    """Stringify values JSON cannot carry (big ints stay exact as strings)."""
    out = {}
    for key, value in details.items():
        if isinstance(value, (str, bool, type(None))):
            out[key] = value
        elif isinstance(value, int):
            out[key] = str(value) if abs(value) >= 2**53 else value
        elif isinstance(value, dict):
            out[key] = _jsonable(value)
        elif isinstance(value, (list, tuple)):
            out[key] = [v if isinstance(v, (str, int, bool)) else str(v) for v in value]
        else:
            out[key] = str(value)
    return out


def to_response(route: RouteQuote) -> QuoteResponse:
    bundle = None
    if route.bundle is not None:
        descriptor = route.bundle.descriptor
        bundle = BundleModel(
            from_token=descriptor.from_token,
            from_amount=str(descriptor.from_amount),
            to_token=descriptor.to_token,
            min_final_output=str(descriptor.min_final_output),
            encoder_targets=list(descriptor.encoder_targets),
            encoder_calldata=["0x" + data.hex() for data in descriptor.encoder_calldata],
            wrap_ops=[int(op) for op in descriptor.wrap_ops],
            expect_success=list(descriptor.expect_success),
            legs=[
                LegModel(
                    dex=leg.dex.value,
                    pool=leg.pool_id,
                    input_token=leg.input_token,
                    output_token=leg.output_token,
                    mode=leg.mode.value,
                    fixed_input_amount=(
                        str(leg.fixed_input_amount) if leg.fixed_input_amount is not None else None
                    ),
                    min_output_amount=str(leg.min_output_amount),
                    wrap_op=int(leg.wrap_op),
                )
                for leg in route.bundle.legs
            ],
        )
    return QuoteResponse(
        query_id=route.query_id,
        from_token=route.from_token.address,
        to_token=route.to_token.address,
        amount_in=str(route.amount_in),
        expected_out=str(route.expected_out),
        min_final_output=str(route.min_final_output) if route.bundle is not None else None,
        block_number=route.block_number,
        mode=route.mode,
        used_dexes=[dex.value for dex in route.used_dexes],
        allocation=[
            AllocationEntryModel(
                path=entry.path.key,
                fraction_bips=entry.fraction_bips,
                expected_out=str(entry.candidate.expected_out),
                quote_source=entry.candidate.quote.source.value,
            )
            for entry in route.allocation.entries
        ],
        bundle=bundle,
    )


@router.post("/quote", response_model=QuoteResponse, response_model_exclude_none=True)
async def quote(request: QuoteRequest, engine: Engine = Depends(get_engine)):  # type: ignore[no-untyped-def]
    """Route an amount and preview the bundle.

    Error Handling:
        - Invalid request schema: 422 (Pydantic)
        - Engine failure: structured {code, message, details} with a status per code
    """
    logger.info(
        "received_quote",
        from_token=request.from_token,
        to_token=request.to_token,
        amount_in=request.amount_in,
    )
    result = await engine.quote(
        request.from_token,
        request.to_token,
        int(request.amount_in),
        owner=request.owner,
        slippage_bips=request.slippage_bips,
    )
    if not result.is_ok:
        assert result.failure is not None
        return error_response(result.failure)
    return to_response(result.unwrap())


@router.post("/execute", response_model=ExecuteResponse, response_model_exclude_none=True)
async def execute(  # type: ignore[no-untyped-def]
    request: ExecuteRequest,
    engine: Engine = Depends(get_engine),
    signer: TransactionSigner | None = Depends(get_signer),
):
    """Route, compose and submit a bundle with the service's signing key."""
    if signer is None:
        return error_response(
            Failure(ErrorCode.UNAVAILABLE, "No signing key configured", {"env": SIGNER_KEY_ENV})
        )
    result = await engine.execute(
        request.from_token,
        request.to_token,
        int(request.amount_in),
        signer,
        slippage_bips=request.slippage_bips,
    )
    if not result.is_ok:
        assert result.failure is not None
        logger.warning("execute_failed", code=result.failure.code.value, message=result.failure.message)
        return error_response(result.failure)
    outcome = result.unwrap()
    return ExecuteResponse(
        quote=to_response(outcome.route),
        tx_hash=outcome.result.tx_hash,
        success=outcome.result.success,
        gas_used=outcome.result.gas_used,
        final_output_amount=str(outcome.result.final_output_amount),
    )
