from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from enum import Enum
from types import MappingProxyType
from typing import Any, Mapping

import requests
from requests.adapters import HTTPAdapter
from requests.exceptions import RequestException

from .backoff import BackoffPolicy
from .classifier import classify, classify_exception, is_error_payload, parse_body
from .config import ClientConfig
from .errors import ErrorKind, ExchangeError
from .rate_limiter import TokenBucket

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RequestSpec:
    """One call: what to send and what it costs against the rate limit."""

    path: str
    params: Mapping[str, Any] = field(default_factory=dict)
    method: str = "GET"
    weight: int = 1
    timeout: float | None = None  # overrides ClientConfig.timeout

    def __post_init__(self) -> None:
        object.__setattr__(self, "method", self.method.upper())
        object.__setattr__(self, "params", MappingProxyType(dict(self.params)))

    @property
    def symbol(self) -> str | None:
        value = self.params.get("symbol")
        return str(value) if value is not None else None


class CallState(str, Enum):
    PENDING = "pending"
    ADMITTED = "admitted"
    IN_FLIGHT = "in_flight"
    RETRYING = "retrying"
    SUCCEEDED = "succeeded"
    FAILED = "failed"


@dataclass
class RetryState:
    max_attempts: int
    attempt: int = 0
    elapsed: float = 0.0
    last_error: ExchangeError | None = None


class Dispatcher:
    """
    Runs a RequestSpec to completion:

        PENDING -> ADMITTED -> IN_FLIGHT -> SUCCEEDED
                                          -> RETRYING -> ADMITTED ...
                                          -> FAILED

    Admission debits the request weight from the shared token bucket on
    every attempt, retries included. Only NETWORK, TIMEOUT and
    RATE_LIMIT_EXCEEDED are retried; on failure the last classified error
    is raised as-is.
    """

    def __init__(
        self,
        config: ClientConfig,
        *,
        session: requests.Session | None = None,
        limiter: TokenBucket | None = None,
        backoff: BackoffPolicy | None = None,
    ):
        config.validate()
        self.config = config
        self.base_url = config.get_base_url()
        self.limiter = limiter or TokenBucket.per_minute(config.requests_per_minute)
        self.backoff = backoff or BackoffPolicy.from_config(config)
        self.session = session or self._new_session(config)

    @staticmethod
    def _new_session(config: ClientConfig) -> requests.Session:
        session = requests.Session()
        adapter = HTTPAdapter(pool_connections=1, pool_maxsize=config.pool_maxsize, max_retries=0)
        session.mount("https://", adapter)
        session.mount("http://", adapter)
        return session

    def close(self) -> None:
        self.session.close()

    def execute(self, spec: RequestSpec, *, deadline: float | None = None) -> Any:
        """
        Perform the call and return the decoded JSON body.

        `deadline` (seconds from now) bounds admission wait, the HTTP call and
        every retry delay together; running out fails the call with TIMEOUT.
        Raises ExchangeError on terminal failure.
        """
        url = f"{self.base_url}{spec.path}"
        started = time.monotonic()
        expires = None if deadline is None else started + deadline
        retries_enabled = self.config.retries_enabled
        retry = RetryState(max_attempts=self.backoff.max_retries + 1 if retries_enabled else 1)

        def remaining() -> float | None:
            return None if expires is None else expires - time.monotonic()

        def fail(error: ExchangeError) -> ExchangeError:
            retry.elapsed = time.monotonic() - started
            retry.last_error = error
            self._transition(spec, retry, CallState.FAILED)
            return error

        def deadline_error() -> ExchangeError:
            return ExchangeError.timeout(deadline, f"Deadline of {deadline}s exceeded", method=spec.method, path=spec.path)

        while True:
            # PENDING -> ADMITTED
            self._transition(spec, retry, CallState.PENDING)
            left = remaining()
            if left is not None and left <= 0:
                raise fail(deadline_error())
            if not self.limiter.acquire(spec.weight, timeout=left):
                logger.error("%s %s could not be admitted before deadline", spec.method, spec.path)
                raise fail(deadline_error())
            self._transition(spec, retry, CallState.ADMITTED)

            # ADMITTED -> IN_FLIGHT
            call_timeout = spec.timeout or self.config.timeout
            left = remaining()
            if left is not None:
                if left <= 0:
                    raise fail(deadline_error())
                call_timeout = min(call_timeout, left)

            self._transition(spec, retry, CallState.IN_FLIGHT)
            try:
                response = self.session.request(spec.method, url, params=dict(spec.params), timeout=call_timeout)
            except RequestException as e:
                error = classify_exception(e, request=spec, timeout=call_timeout)
            else:
                error = self._check_response(spec, response, retry)
                if error is None:
                    try:
                        data = parse_body(response, request=spec)
                    except ExchangeError as e:
                        logger.error("%s %s returned a malformed body", spec.method, spec.path)
                        raise fail(e) from e.cause
                    if not is_error_payload(data):
                        retry.elapsed = time.monotonic() - started
                        self._transition(spec, retry, CallState.SUCCEEDED)
                        return data
                    error = classify(response, request=spec, fallback_retry_after=self.backoff.delay_for(retry.attempt))

            retry.last_error = error

            # the deadline may have run out while in flight
            left = remaining()
            if left is not None and left <= 0:
                logger.error("%s %s deadline exceeded (attempt %d/%d)", spec.method, spec.path, retry.attempt + 1, retry.max_attempts)
                raise fail(deadline_error()) from error

            if not error.retryable:
                logger.error(
                    "%s %s failed: %s %s (attempt %d/%d)",
                    spec.method, spec.path, error.kind.value, error.message, retry.attempt + 1, retry.max_attempts,
                )
                raise fail(error) from error.cause

            logger.warning(
                "%s %s %s (attempt %d/%d): %s",
                spec.method, spec.path, error.kind.value, retry.attempt + 1, retry.max_attempts, error.message,
            )

            if not retries_enabled or not self.backoff.should_retry(retry.attempt):
                raise fail(error) from error.cause

            # IN_FLIGHT -> RETRYING
            self._transition(spec, retry, CallState.RETRYING)
            delay = self.backoff.delay_for(retry.attempt)
            if error.kind is ErrorKind.RATE_LIMIT_EXCEEDED and error.retry_after_seconds is not None:
                delay = max(delay, error.retry_after_seconds)

            left = remaining()
            if left is not None and delay >= left:
                logger.error("%s %s retry delay %.2fs exceeds remaining deadline", spec.method, spec.path, delay)
                raise fail(deadline_error()) from error

            logger.info("%s %s retrying in %.2fs (attempt %d/%d)", spec.method, spec.path, delay, retry.attempt + 2, retry.max_attempts)
            time.sleep(delay)
            retry.attempt += 1

    def _check_response(self, spec: RequestSpec, response: Any, retry: RetryState) -> ExchangeError | None:
        if 200 <= response.status_code < 300:
            return None
        return classify(response, request=spec, fallback_retry_after=self.backoff.delay_for(retry.attempt))

    def _transition(self, spec: RequestSpec, retry: RetryState, state: CallState) -> None:
        logger.debug("%s %s -> %s (attempt %d)", spec.method, spec.path, state.value, retry.attempt)
