from __future__ import annotations

import logging
from typing import Any, Callable, TypeVar

import requests

from . import endpoints
from .config import ClientConfig
from .dispatcher import Dispatcher, RequestSpec
from .errors import ExchangeError
from .models import Interval, Kline, OrderBook, SymbolInfo, Ticker, Ticker24h, Trade

logger = logging.getLogger(__name__)

T = TypeVar("T")


class MarketDataClient:
    """Public market-data client: prices, candles, depth, trades, exchange info."""

    def __init__(
        self,
        config: ClientConfig | None = None,
        *,
        session: requests.Session | None = None,
        dispatcher: Dispatcher | None = None,
    ):
        self.config = config or ClientConfig()
        self.dispatcher = dispatcher or Dispatcher(self.config, session=session)

    @classmethod
    def from_env(cls, prefix: str = "BINANCE_") -> MarketDataClient:
        return cls(ClientConfig.from_env(prefix))

    @property
    def session(self) -> requests.Session:
        return self.dispatcher.session

    def close(self) -> None:
        self.dispatcher.close()

    def __enter__(self) -> MarketDataClient:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    # ---------- plumbing ----------
    def _get(
        self,
        path: str,
        params: dict[str, Any] | None = None,
        *,
        weight: int = 1,
        deadline: float | None = None,
    ) -> Any:
        spec = RequestSpec(path=path, params=params or {}, weight=weight)
        return self.dispatcher.execute(spec, deadline=deadline)

    def _decode(self, path: str, data: Any, build: Callable[[Any], T]) -> T:
        try:
            return build(data)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.error("GET %s unexpected payload shape: %s", path, e)
            raise ExchangeError.serialization(
                f"Unexpected payload for {path}: {e}",
                method="GET",
                path=path,
                cause=e,
            ) from e

    # ---------- prices ----------
    def get_ticker_price(self, symbol: str, *, deadline: float | None = None) -> Ticker:
        data = self._get(
            endpoints.TICKER_PRICE, {"symbol": symbol}, weight=endpoints.TICKER_PRICE_WEIGHT, deadline=deadline
        )
        return self._decode(endpoints.TICKER_PRICE, data, Ticker.from_payload)

    def get_all_ticker_prices(self, *, deadline: float | None = None) -> list[Ticker]:
        data = self._get(endpoints.TICKER_PRICE, weight=endpoints.TICKER_PRICE_ALL_WEIGHT, deadline=deadline)
        return self._decode(endpoints.TICKER_PRICE, data, lambda rows: [Ticker.from_payload(r) for r in rows])

    def get_ticker_24h(self, symbol: str, *, deadline: float | None = None) -> Ticker24h:
        data = self._get(endpoints.TICKER_24H, {"symbol": symbol}, weight=endpoints.TICKER_24H_WEIGHT, deadline=deadline)
        return self._decode(endpoints.TICKER_24H, data, Ticker24h.from_payload)

    def get_all_ticker_24h(self, *, deadline: float | None = None) -> list[Ticker24h]:
        data = self._get(endpoints.TICKER_24H, weight=endpoints.TICKER_24H_ALL_WEIGHT, deadline=deadline)
        return self._decode(endpoints.TICKER_24H, data, lambda rows: [Ticker24h.from_payload(r) for r in rows])

    # ---------- candles ----------
    def get_klines(
        self,
        symbol: str,
        interval: Interval | str,
        limit: int = 500,
        *,
        deadline: float | None = None,
    ) -> list[Kline]:
        if limit < 1 or limit > endpoints.MAX_KLINES_LIMIT:
            raise ValueError(f"Limit {limit} must be between 1 and {endpoints.MAX_KLINES_LIMIT}")
        interval = Interval.parse(interval)
        data = self._get(
            endpoints.KLINES,
            {"symbol": symbol, "interval": interval.value, "limit": limit},
            weight=endpoints.KLINES_WEIGHT,
            deadline=deadline,
        )
        return self._decode(endpoints.KLINES, data, lambda rows: [Kline.from_payload(symbol, r) for r in rows])

    def get_klines_range(
        self,
        symbol: str,
        interval: Interval | str,
        start_time: int,
        end_time: int,
        *,
        deadline: float | None = None,
    ) -> list[Kline]:
        """Candles between two epoch-millisecond timestamps."""
        if start_time >= end_time:
            raise ValueError(f"Invalid date range: start={start_time}, end={end_time}")
        interval = Interval.parse(interval)
        data = self._get(
            endpoints.KLINES,
            {"symbol": symbol, "interval": interval.value, "startTime": start_time, "endTime": end_time},
            weight=endpoints.KLINES_WEIGHT,
            deadline=deadline,
        )
        return self._decode(endpoints.KLINES, data, lambda rows: [Kline.from_payload(symbol, r) for r in rows])

    # ---------- depth / trades ----------
    def get_depth(self, symbol: str, limit: int = 100, *, deadline: float | None = None) -> OrderBook:
        weight = endpoints.depth_weight(limit)
        data = self._get(endpoints.DEPTH, {"symbol": symbol, "limit": limit}, weight=weight, deadline=deadline)
        return self._decode(endpoints.DEPTH, data, lambda d: OrderBook.from_payload(symbol, d))

    def get_recent_trades(self, symbol: str, limit: int = 500, *, deadline: float | None = None) -> list[Trade]:
        if limit < 1 or limit > endpoints.MAX_TRADES_LIMIT:
            raise ValueError(f"Limit {limit} must be between 1 and {endpoints.MAX_TRADES_LIMIT}")
        data = self._get(
            endpoints.TRADES, {"symbol": symbol, "limit": limit}, weight=endpoints.TRADES_WEIGHT, deadline=deadline
        )
        return self._decode(endpoints.TRADES, data, lambda rows: [Trade.from_payload(symbol, r) for r in rows])

    # ---------- exchange metadata ----------
    def get_exchange_info(self, *, deadline: float | None = None) -> list[SymbolInfo]:
        data = self._get(endpoints.EXCHANGE_INFO, weight=endpoints.EXCHANGE_INFO_WEIGHT, deadline=deadline)
        return self._decode(
            endpoints.EXCHANGE_INFO, data, lambda d: [SymbolInfo.from_payload(s) for s in d["symbols"]]
        )

    def get_server_time(self, *, deadline: float | None = None) -> int:
        """Exchange time in epoch milliseconds."""
        data = self._get(endpoints.TIME, weight=endpoints.TIME_WEIGHT, deadline=deadline)
        return self._decode(endpoints.TIME, data, lambda d: int(d["serverTime"]))

    def ping(self, *, deadline: float | None = None) -> bool:
        self._get(endpoints.PING, weight=endpoints.PING_WEIGHT, deadline=deadline)
        return True

    def health_check(self) -> bool:
        return self.ping()
