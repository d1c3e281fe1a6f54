from __future__ import annotations

from enum import Enum
from typing import Any


class ErrorKind(str, Enum):
    """Closed set of failure classes surfaced by the client."""

    NETWORK = "network"
    TIMEOUT = "timeout"
    RATE_LIMIT_EXCEEDED = "rate_limit_exceeded"
    INVALID_SYMBOL = "invalid_symbol"
    API_ERROR = "api_error"
    SERIALIZATION = "serialization"
    UNKNOWN = "unknown"

    @property
    def retryable(self) -> bool:
        return self in _RETRYABLE


_RETRYABLE = frozenset({ErrorKind.NETWORK, ErrorKind.TIMEOUT, ErrorKind.RATE_LIMIT_EXCEEDED})

_FIELDS = (
    "kind",
    "message",
    "retry_after_seconds",
    "symbol",
    "code",
    "timeout_seconds",
    "status_code",
    "method",
    "path",
    "body",
    "cause",
)


class ExchangeError(Exception):
    """
    Single error type for every failed call.

    The variant lives in ``kind``; only the payload fields relevant to that
    kind are set (``retry_after_seconds`` for rate limits, ``symbol`` for
    invalid symbols, ``code`` for API errors, ``timeout_seconds`` for
    timeouts). Instances are immutable once built.
    """

    def __init__(
        self,
        kind: ErrorKind,
        message: str,
        *,
        retry_after_seconds: float | None = None,
        symbol: str | None = None,
        code: int | None = None,
        timeout_seconds: float | None = None,
        status_code: int | None = None,
        method: str | None = None,
        path: str | None = None,
        body: str | None = None,
        cause: BaseException | None = None,
    ):
        super().__init__(message)
        fields = {
            "kind": kind,
            "message": message,
            "retry_after_seconds": retry_after_seconds,
            "symbol": symbol,
            "code": code,
            "timeout_seconds": timeout_seconds,
            "status_code": status_code,
            "method": method,
            "path": path,
            "body": body,
            "cause": cause,
        }
        for name, value in fields.items():
            object.__setattr__(self, name, value)

    def __setattr__(self, name, value):
        # __traceback__/__context__/__cause__ are managed by the interpreter
        if name.startswith("__"):
            super().__setattr__(name, value)
            return
        raise AttributeError(f"{type(self).__name__} is immutable")

    def __reduce__(self):
        # rebuild through __init__; the default path passes only args and then setattr()s
        return _rebuild, (type(self), self._fields())

    def _fields(self) -> dict[str, Any]:
        return {name: getattr(self, name) for name in _FIELDS}

    @property
    def retryable(self) -> bool:
        return self.kind.retryable

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ExchangeError):
            return NotImplemented
        return (
            self.kind,
            self.message,
            self.retry_after_seconds,
            self.symbol,
            self.code,
            self.timeout_seconds,
        ) == (
            other.kind,
            other.message,
            other.retry_after_seconds,
            other.symbol,
            other.code,
            other.timeout_seconds,
        )

    def __hash__(self) -> int:
        return hash((self.kind, self.message, self.code, self.symbol))

    def __repr__(self) -> str:
        return f"ExchangeError(kind={self.kind.value!r}, message={self.message!r})"

    # ---------- constructors, one per variant ----------
    @classmethod
    def network(cls, message: str, **kwargs) -> ExchangeError:
        return cls(ErrorKind.NETWORK, message, **kwargs)

    @classmethod
    def timeout(cls, seconds: float | None, message: str | None = None, **kwargs) -> ExchangeError:
        if message is None:
            message = f"Timed out after {seconds}s" if seconds is not None else "Timed out"
        return cls(ErrorKind.TIMEOUT, message, timeout_seconds=seconds, **kwargs)

    @classmethod
    def rate_limited(cls, retry_after_seconds: float, message: str | None = None, **kwargs) -> ExchangeError:
        return cls(
            ErrorKind.RATE_LIMIT_EXCEEDED,
            message or f"Rate limit exceeded, retry after {retry_after_seconds}s",
            retry_after_seconds=retry_after_seconds,
            **kwargs,
        )

    @classmethod
    def invalid_symbol(cls, symbol: str, message: str | None = None, **kwargs) -> ExchangeError:
        return cls(ErrorKind.INVALID_SYMBOL, message or f"Invalid symbol: {symbol}", symbol=symbol, **kwargs)

    @classmethod
    def api_error(cls, code: int, message: str, **kwargs) -> ExchangeError:
        return cls(ErrorKind.API_ERROR, message, code=code, **kwargs)

    @classmethod
    def serialization(cls, message: str, **kwargs) -> ExchangeError:
        return cls(ErrorKind.SERIALIZATION, message, **kwargs)

    @classmethod
    def unknown(cls, message: str, **kwargs) -> ExchangeError:
        return cls(ErrorKind.UNKNOWN, message, **kwargs)


def _rebuild(cls: type[ExchangeError], fields: dict[str, Any]) -> ExchangeError:
    return cls(**fields)
