import pytest
import requests

from conftest import FakeResponse
from market_data_client.config import ClientConfig
from market_data_client.dispatcher import Dispatcher, RequestSpec
from market_data_client.errors import ErrorKind, ExchangeError
from market_data_client.rate_limiter import TokenBucket

TICKER = RequestSpec(path="/api/v3/ticker/price", params={"symbol": "BTCUSDT"}, weight=2)


def make_dispatcher(monkeypatch, responses, **config_kwargs):
    """Dispatcher whose session replays `responses` (responses or exceptions, last one repeats)."""
    config = ClientConfig(base_url="https://example.com", **config_kwargs)
    dispatcher = Dispatcher(config)
    calls = []

    def fake_request(method, url, params=None, timeout=None):
        calls.append({"method": method, "url": url, "params": params, "timeout": timeout})
        outcome = responses[min(len(calls), len(responses)) - 1]
        if isinstance(outcome, BaseException):
            raise outcome
        return outcome

    monkeypatch.setattr(dispatcher.session, "request", fake_request)
    return dispatcher, calls


def test_success_returns_json(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch, [FakeResponse(json_data={"symbol": "BTCUSDT", "price": "1.0"})]
    )

    out = dispatcher.execute(TICKER)

    assert out == {"symbol": "BTCUSDT", "price": "1.0"}
    assert calls == [
        {
            "method": "GET",
            "url": "https://example.com/api/v3/ticker/price",
            "params": {"symbol": "BTCUSDT"},
            "timeout": 10.0,
        }
    ]
    assert clock.sleeps == []


def test_request_timeout_override(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(monkeypatch, [FakeResponse(json_data={})])
    dispatcher.execute(RequestSpec(path="/api/v3/ping", timeout=2.5))
    assert calls[0]["timeout"] == 2.5


def test_retry_success_after_transient_500(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch,
        [
            FakeResponse(text="server down", status_code=500),
            FakeResponse(text="server down", status_code=500),
            FakeResponse(json_data={"serverTime": 999}),
        ],
    )

    out = dispatcher.execute(RequestSpec(path="/api/v3/time"))

    assert out["serverTime"] == 999
    assert len(calls) == 3
    assert clock.sleeps == [0.5, 1.0]


def test_rate_limit_waits_for_retry_after(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch,
        [
            FakeResponse(text="rate limited", status_code=429, headers={"Retry-After": "5"}),
            FakeResponse(json_data={"symbol": "BTCUSDT", "price": "1.0"}),
        ],
    )

    dispatcher.execute(TICKER)

    assert len(calls) == 2
    assert clock.sleeps == [5.0]


def test_backoff_wins_when_larger_than_retry_after(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch,
        [
            FakeResponse(text="rate limited", status_code=429, headers={"Retry-After": "0.1"}),
            FakeResponse(json_data={}),
        ],
        backoff_base=2.0,
    )
    dispatcher.execute(TICKER)
    assert clock.sleeps == [2.0]


def test_rate_limit_gives_up(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch,
        [FakeResponse(text="rate limited", status_code=429, headers={"Retry-After": "0"})],
    )

    with pytest.raises(ExchangeError) as exc_info:
        dispatcher.execute(TICKER)

    assert exc_info.value.kind is ErrorKind.RATE_LIMIT_EXCEEDED
    assert len(calls) == 4


def test_invalid_symbol_is_not_retried(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch,
        [FakeResponse(json_data={"code": -1121, "msg": "Invalid symbol."}, status_code=400)],
    )

    with pytest.raises(ExchangeError) as exc_info:
        dispatcher.execute(RequestSpec(path="/api/v3/ticker/price", params={"symbol": "FOOBAR"}))

    assert exc_info.value.kind is ErrorKind.INVALID_SYMBOL
    assert exc_info.value.symbol == "FOOBAR"
    assert len(calls) == 1
    assert clock.sleeps == []


def test_network_failures_exhaust_retries(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch,
        [requests.exceptions.ConnectionError("connection refused")],
        max_retries=3,
    )

    with pytest.raises(ExchangeError) as exc_info:
        dispatcher.execute(TICKER)

    error = exc_info.value
    assert error.kind is ErrorKind.NETWORK
    assert isinstance(error.cause, requests.exceptions.ConnectionError)
    assert len(calls) == 4
    assert clock.sleeps == [0.5, 1.0, 2.0]


def test_retries_disabled_makes_one_attempt(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch,
        [requests.exceptions.ReadTimeout("slow")],
        retries_enabled=False,
    )

    with pytest.raises(ExchangeError) as exc_info:
        dispatcher.execute(TICKER)

    assert exc_info.value.kind is ErrorKind.TIMEOUT
    assert exc_info.value.timeout_seconds == 10.0
    assert len(calls) == 1
    assert clock.sleeps == []


def test_malformed_body_is_terminal(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch, [FakeResponse(text="<html>", status_code=200, json_raises=True)]
    )

    with pytest.raises(ExchangeError) as exc_info:
        dispatcher.execute(TICKER)

    assert exc_info.value.kind is ErrorKind.SERIALIZATION
    assert len(calls) == 1


def test_error_payload_on_200_is_classified(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch, [FakeResponse(json_data={"code": -1100, "msg": "Illegal characters."}, status_code=200)]
    )

    with pytest.raises(ExchangeError) as exc_info:
        dispatcher.execute(TICKER)

    assert exc_info.value.kind is ErrorKind.API_ERROR
    assert exc_info.value.code == -1100


def test_each_attempt_pays_its_weight(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch,
        [FakeResponse(text="down", status_code=503), FakeResponse(json_data={})],
    )
    dispatcher.limiter = TokenBucket(capacity=10, refill_rate=0.001)

    dispatcher.execute(TICKER)

    # two attempts at weight 2; refill during 0.5s backoff is negligible
    assert dispatcher.limiter.available == pytest.approx(6.0, abs=0.01)


def test_deadline_bounds_admission(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(monkeypatch, [FakeResponse(json_data={})])
    dispatcher.limiter = TokenBucket(capacity=2, refill_rate=0.1)
    dispatcher.limiter.acquire(2)

    with pytest.raises(ExchangeError) as exc_info:
        dispatcher.execute(TICKER, deadline=1.0)

    assert exc_info.value.kind is ErrorKind.TIMEOUT
    assert calls == []


def test_deadline_bounds_retry_sequence(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(
        monkeypatch,
        [FakeResponse(text="rate limited", status_code=429, headers={"Retry-After": "30"})],
    )

    with pytest.raises(ExchangeError) as exc_info:
        dispatcher.execute(TICKER, deadline=5.0)

    assert exc_info.value.kind is ErrorKind.TIMEOUT
    assert exc_info.value.timeout_seconds == 5.0
    assert len(calls) == 1
    assert clock.sleeps == []


def test_deadline_expiring_in_flight_is_timeout(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(monkeypatch, [])
    dispatcher.limiter = TokenBucket(capacity=10, refill_rate=0.001)

    def slow_request(method, url, params=None, timeout=None):
        calls.append({"method": method, "url": url, "params": params, "timeout": timeout})
        clock.advance(5.0)
        return FakeResponse(text="down", status_code=503)

    monkeypatch.setattr(dispatcher.session, "request", slow_request)

    with pytest.raises(ExchangeError) as exc_info:
        dispatcher.execute(TICKER, deadline=2.0)

    assert exc_info.value.kind is ErrorKind.TIMEOUT
    assert exc_info.value.timeout_seconds == 2.0
    assert len(calls) == 1
    assert clock.sleeps == []
    # tokens spent on the attempt are not refunded
    assert dispatcher.limiter.available == pytest.approx(8.0, abs=0.01)


def test_deadline_caps_http_timeout(monkeypatch, clock):
    dispatcher, calls = make_dispatcher(monkeypatch, [FakeResponse(json_data={})])
    dispatcher.execute(TICKER, deadline=3.0)
    assert calls[0]["timeout"] == pytest.approx(3.0)


def test_request_spec_is_immutable():
    spec = RequestSpec(path="/x", params={"symbol": "BTCUSDT"}, method="get")
    assert spec.method == "GET"
    assert spec.symbol == "BTCUSDT"
    with pytest.raises(TypeError):
        spec.params["symbol"] = "ETHUSDT"
