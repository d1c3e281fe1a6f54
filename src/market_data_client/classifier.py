"""
Outcome classification.

Turns whatever came back from the transport (a `requests` exception or a
`Response`) into exactly one `ExchangeError`. Error codes follow the
exchange's published error-code list rather than the HTTP status alone:
    -1003  TOO_MANY_REQUESTS   -> rate limited
    -1015  TOO_MANY_ORDERS     -> rate limited
    -1121  INVALID_SYMBOL      -> invalid symbol
    anything else with {"code", "msg"} -> API error, verbatim
"""
from __future__ import annotations

import re
import time
from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import TYPE_CHECKING, Any

import requests
from requests.exceptions import ConnectionError as RequestsConnectionError
from requests.exceptions import (
    InvalidHeader,
    InvalidSchema,
    InvalidURL,
    JSONDecodeError,
    MissingSchema,
    RequestException,
    SSLError,
    Timeout,
)

from .backoff import BackoffPolicy
from .errors import ExchangeError

if TYPE_CHECKING:
    from .dispatcher import RequestSpec

RATE_LIMIT_CODES = frozenset({-1003, -1015})
INVALID_SYMBOL_CODES = frozenset({-1121})
RATE_LIMIT_STATUSES = frozenset({418, 429})

BODY_SNIPPET = 300

_BANNED_UNTIL = re.compile(r"banned until (\d{10,})")
_SYMBOL_IN_MSG = re.compile(r"symbol[\s:'\"=]+([A-Za-z0-9_\-]+)", re.IGNORECASE)


def classify(
    outcome: Any,
    *,
    request: RequestSpec | None = None,
    timeout: float | None = None,
    fallback_retry_after: float | None = None,
) -> ExchangeError:
    """Map any outcome of a call to a single error; never raises."""
    if isinstance(outcome, ExchangeError):
        return outcome
    if isinstance(outcome, BaseException):
        return classify_exception(outcome, request=request, timeout=timeout)
    if isinstance(outcome, requests.Response) or _looks_like_response(outcome):
        return classify_response(outcome, request=request, fallback_retry_after=fallback_retry_after)
    return ExchangeError.unknown(f"Unclassified outcome: {type(outcome).__name__}", **_where(request))


def classify_exception(
    exc: BaseException,
    *,
    request: RequestSpec | None = None,
    timeout: float | None = None,
) -> ExchangeError:
    where = _where(request)
    # Timeout before ConnectionError: ConnectTimeout subclasses both
    if isinstance(exc, Timeout):
        return ExchangeError.timeout(timeout, cause=exc, **where)
    if isinstance(exc, (InvalidURL, MissingSchema, InvalidSchema, InvalidHeader)):
        return ExchangeError.unknown(f"Bad request: {exc}", cause=exc, **where)
    # also a RequestException, but the body arrived
    if isinstance(exc, JSONDecodeError):
        return ExchangeError.serialization(f"Malformed response: {exc}", cause=exc, **where)
    if isinstance(exc, SSLError):
        return ExchangeError.network(f"TLS error: {exc}", cause=exc, **where)
    if isinstance(exc, RequestsConnectionError):
        return ExchangeError.network(f"Connection error: {exc}", cause=exc, **where)
    if isinstance(exc, RequestException):
        return ExchangeError.network(f"Network error: {exc}", cause=exc, **where)
    if isinstance(exc, ValueError):
        return ExchangeError.serialization(f"Malformed response: {exc}", cause=exc, **where)
    return ExchangeError.unknown(f"{type(exc).__name__}: {exc}", cause=exc, **where)


def classify_response(
    response: Any,
    *,
    request: RequestSpec | None = None,
    fallback_retry_after: float | None = None,
) -> ExchangeError:
    status = response.status_code
    text = response.text or ""
    common = dict(status_code=status, body=text[:BODY_SNIPPET], **_where(request))

    if 200 <= status < 300:
        try:
            payload = response.json()
        except ValueError as e:
            return ExchangeError.serialization("Invalid JSON in response", cause=e, **common)
        if is_error_payload(payload):
            return _from_payload(payload, response, request, fallback_retry_after, common)
        return ExchangeError.unknown(f"Unexpected HTTP {status} outcome", **common)

    payload = _error_payload(response)

    if status in RATE_LIMIT_STATUSES:
        retry_after = _retry_after(response, payload, fallback_retry_after)
        message = payload["msg"] if payload else f"Rate limit exceeded (HTTP {status})"
        code = payload["code"] if payload else None
        return ExchangeError.rate_limited(retry_after, message, code=code, **common)

    if payload is not None:
        return _from_payload(payload, response, request, fallback_retry_after, common)

    if status >= 500:
        return ExchangeError.network(f"Server error HTTP {status}", **common)

    msg = text.strip()
    return ExchangeError.unknown(msg[:BODY_SNIPPET] if msg else f"Unexpected HTTP {status}", **common)


def parse_body(response: Any, *, request: RequestSpec | None = None) -> Any:
    """Decode a 2xx body as JSON or raise a SERIALIZATION error."""
    try:
        return response.json()
    except ValueError as e:
        text = response.text or ""
        raise ExchangeError.serialization(
            "Invalid JSON in response",
            status_code=response.status_code,
            body=text[:BODY_SNIPPET],
            cause=e,
            **_where(request),
        ) from e


def is_error_payload(payload: Any) -> bool:
    if not isinstance(payload, dict):
        return False
    code = payload.get("code")
    return isinstance(code, int) and not isinstance(code, bool) and code != 0 and isinstance(payload.get("msg"), str)


# ---------- helpers ----------
def _from_payload(
    payload: dict[str, Any],
    response: Any,
    request: RequestSpec | None,
    fallback_retry_after: float | None,
    common: dict[str, Any],
) -> ExchangeError:
    code = payload["code"]
    msg = payload["msg"]
    if code in RATE_LIMIT_CODES:
        return ExchangeError.rate_limited(_retry_after(response, payload, fallback_retry_after), msg, code=code, **common)
    if code in INVALID_SYMBOL_CODES:
        symbol = _symbol_for(request, msg)
        return ExchangeError.invalid_symbol(symbol, f"Invalid symbol: {symbol}", code=code, **common)
    return ExchangeError.api_error(code, msg, **common)


def _error_payload(response: Any) -> dict[str, Any] | None:
    try:
        payload = response.json()
    except ValueError:
        return None
    return payload if is_error_payload(payload) else None


def _retry_after(response: Any, payload: dict[str, Any] | None, fallback: float | None) -> float:
    headers = getattr(response, "headers", None) or {}
    parsed = _parse_retry_after(headers.get("Retry-After"))
    if parsed is not None:
        return parsed

    if payload:
        m = _BANNED_UNTIL.search(payload.get("msg", ""))
        if m:
            return max(0.0, int(m.group(1)) / 1000.0 - time.time())

    if fallback is not None:
        return fallback
    return BackoffPolicy().delay_for(0)


def _parse_retry_after(value: str | None) -> float | None:
    if value is None:
        return None
    try:
        seconds = float(value)
    except ValueError:
        pass
    else:
        return max(0.0, seconds)

    # HTTP-date form
    try:
        dt = parsedate_to_datetime(value)
    except (TypeError, ValueError):
        return None
    if dt is None:
        return None
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return max(0.0, dt.timestamp() - time.time())


def _symbol_for(request: RequestSpec | None, msg: str) -> str:
    if request is not None and request.symbol:
        return request.symbol
    m = _SYMBOL_IN_MSG.search(msg)
    return m.group(1) if m else ""


def _where(request: RequestSpec | None) -> dict[str, Any]:
    if request is None:
        return {}
    return {"method": request.method, "path": request.path}


def _looks_like_response(obj: Any) -> bool:
    return hasattr(obj, "status_code") and hasattr(obj, "json")
