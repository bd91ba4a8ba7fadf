"""Error taxonomy and the Result surface returned by every component."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Generic, TypeVar

T = TypeVar("T")


class ErrorCode(Enum):
    """Stable error identifiers surfaced to callers."""

    UNKNOWN_TOKEN = "UNKNOWN_TOKEN"
    UNAVAILABLE = "UNAVAILABLE"
    NO_ROUTE = "NO_ROUTE"
    QUOTE_FAILED = "QUOTE_FAILED"
    TIMEOUT = "TIMEOUT"
    COMPOSE_ERROR = "COMPOSE_ERROR"
    SLIPPAGE = "SLIPPAGE"
    APPROVAL = "APPROVAL"
    EXECUTION = "EXECUTION"

    @property
    def retryable(self) -> bool:
        """True if the failure is transient and the operation may be retried."""
        return self in (ErrorCode.UNAVAILABLE, ErrorCode.TIMEOUT)

    @property
    def on_chain(self) -> bool:
        """True for failures reported by the bundler contract."""
        return self in (ErrorCode.SLIPPAGE, ErrorCode.APPROVAL, ErrorCode.EXECUTION)


@dataclass(frozen=True)
class Failure:
    """User-visible failure triple."""

    code: ErrorCode
    message: str
    details: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return {"code": self.code.value, "message": self.message, "details": dict(self.details)}


class EngineError(Exception):
    """Exception carrying a stable error code.

    Raised inside components and converted to a Failure at their boundary.
    """

    def __init__(self, code: ErrorCode, message: str, **details: Any) -> None:
        super().__init__(f"{code.value}: {message}")
        self.code = code
        self.message = message
        self.details = details

    def to_failure(self) -> Failure:
        return Failure(self.code, self.message, dict(self.details))


class UpstreamUnavailable(Exception):
    """An RPC provider, indexer or HTTP API could not be reached."""

    def __init__(self, source: str, reason: str, status: int | None = None) -> None:
        super().__init__(f"{source} unavailable: {reason}")
        self.source = source
        self.reason = reason
        self.status = status

    @property
    def rate_limited(self) -> bool:
        if self.status == 429:
            return True
        reason = self.reason.lower()
        return "rate limit" in reason or "too many requests" in reason


class UpstreamRejected(Exception):
    """An upstream API answered but refused the request (4xx other than 429)."""

    def __init__(self, source: str, status: int, body: str = "") -> None:
        super().__init__(f"{source} rejected request ({status}): {body[:200]}")
        self.source = source
        self.status = status
        self.body = body


class CallReverted(Exception):
    """A read-only call or transaction reverted on chain."""

    def __init__(self, reason: str, data: bytes = b"") -> None:
        super().__init__(reason)
        self.reason = reason
        self.data = data


@dataclass(frozen=True)
class Result(Generic[T]):
    """Outcome of a component operation.

    Exactly one of ``value`` and ``failure`` is meaningful, selected by
    ``failure is None``.

    Examples:
        result = Result.ok(42)
        assert result.is_ok and result.unwrap() == 42

        result = Result.fail(ErrorCode.NO_ROUTE, "no candidates")
        assert not result.is_ok
    """

    value: T | None = None
    failure: Failure | None = None

    @property
    def is_ok(self) -> bool:
        return self.failure is None

    @property
    def code(self) -> ErrorCode | None:
        return self.failure.code if self.failure is not None else None

    @classmethod
    def ok(cls, value: T) -> Result[T]:
        return cls(value=value)

    @classmethod
    def fail(cls, code: ErrorCode, message: str, **details: Any) -> Result[T]:
        return cls(failure=Failure(code, message, details))

    @classmethod
    def from_error(cls, error: EngineError) -> Result[T]:
        return cls(failure=error.to_failure())

    def unwrap(self) -> T:
        """Return the value or raise the failure as an EngineError."""
        if self.failure is not None:
            raise EngineError(self.failure.code, self.failure.message, **self.failure.details)
        return self.value  # type: ignore[return-value]


__all__ = [
    "ErrorCode",
    "Failure",
    "EngineError",
    "UpstreamUnavailable",
    "UpstreamRejected",
    "CallReverted",
    "Result",
]
